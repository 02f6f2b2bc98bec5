"""
Exponential backoff with jitter, and the transient-error heuristic.

    delay = min(2^n * base + rng() * jitter_factor * 2^n * base, max_delay)

Pure functions: randomness comes from an injected ``rng`` returning a float
in ``[0, 1)`` and the reference instant from the caller, so a zero jitter
factor (or a fixed rng) makes the schedule fully deterministic.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

Rng = Callable[[], float]

# Approximate by nature: message text is not a reliable error classifier.
TRANSIENT_PATTERNS: tuple[str, ...] = (
    r"timeout",
    r"connection refused",
    r"ECONNREFUSED",
    r"ETIMEDOUT",
    r"network",
    r"rate limit",
    r"too many requests",
    r"\b502\b",
    r"\b503\b",
    r"\b504\b",
)

_TRANSIENT = re.compile("|".join(TRANSIENT_PATTERNS), re.IGNORECASE)


@dataclass(frozen=True)
class BackoffPolicy:
    """Backoff parameters; defaults are one minute base, one day cap, 10% jitter."""

    base_delay_ms: int = 60_000
    max_delay_ms: int = 86_400_000
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        if self.base_delay_ms <= 0 or self.max_delay_ms <= 0:
            raise ValueError("Backoff delays must be positive")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError(f"jitter_factor must be within [0, 1], got {self.jitter_factor}")

    @classmethod
    def from_settings(cls, settings) -> BackoffPolicy:
        return cls(
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
            jitter_factor=settings.jitter_factor,
        )


def calculate_delay_ms(
    retry_count: int,
    policy: BackoffPolicy = BackoffPolicy(),
    rng: Rng = random.random,
) -> float:
    """Delay in milliseconds before attempt ``retry_count + 1``."""
    if retry_count < 0:
        raise ValueError(f"retry_count must be non-negative, got {retry_count}")
    # Beyond 2^60 the cap always wins.
    if retry_count > 60:
        return float(policy.max_delay_ms)
    exponential = (2 ** retry_count) * policy.base_delay_ms
    jitter = rng() * policy.jitter_factor * exponential
    return float(min(exponential + jitter, policy.max_delay_ms))


def calculate_next_retry_time(
    retry_count: int,
    now: datetime,
    policy: BackoffPolicy = BackoffPolicy(),
    rng: Rng = random.random,
) -> datetime:
    return now + timedelta(milliseconds=calculate_delay_ms(retry_count, policy, rng))


def is_transient_error(message: str | None) -> bool:
    """Heuristic: does the error text look like a transient failure?"""
    if not message:
        return False
    return _TRANSIENT.search(message) is not None
