"""
In-process retry loop for calls that do not need the durable queue.

    rows = with_retry(lambda: client.fetch_page(cursor), max_retries=3)

The loop is stateless: nothing survives a process restart.  Use
``ErrorQueueService.add_to_queue`` when a retry must outlive the process.
"""

from __future__ import annotations

import random
import time
from typing import Callable, TypeVar

from payroll_kernel.logging_config import get_logger

logger = get_logger("errors.with_retry")

T = TypeVar("T")

# Absolute jitter added to each delay, in milliseconds.
JITTER_MS = 100.0


def retry_delay_ms(
    attempt: int,
    base_delay_ms: float = 1000,
    max_delay_ms: float = 30000,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before retry number ``attempt + 1`` (``attempt`` counts from 0)."""
    return min((2 ** attempt) * base_delay_ms + rng() * JITTER_MS, max_delay_ms)


def with_retry(
    operation: Callable[[], T],
    max_retries: int = 3,
    base_delay_ms: float = 1000,
    max_delay_ms: float = 30000,
    on_retry: Callable[[int, Exception], None] | None = None,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    rng: Callable[[], float] = random.random,
) -> T:
    """
    Call ``operation`` until it succeeds or ``max_retries`` retries are spent.

    ``on_retry(attempt, error)`` is called before each wait with the 1-based
    retry number.  Exceptions outside ``retry_on`` propagate immediately.

    Raises:
        The last exception raised by ``operation`` once retries run out.
    """
    if max_retries < 0:
        raise ValueError(f"max_retries must be non-negative, got {max_retries}")

    attempt = 0
    while True:
        try:
            return operation()
        except retry_on as exc:
            if attempt >= max_retries:
                logger.warning(
                    "with_retry_exhausted",
                    extra={"attempts": attempt + 1, "error": str(exc)},
                )
                raise
            delay = retry_delay_ms(attempt, base_delay_ms, max_delay_ms, rng)
            attempt += 1
            if on_retry is not None:
                on_retry(attempt, exc)
            logger.debug(
                "with_retry_waiting",
                extra={"retry_attempt": attempt, "delay_ms": delay, "error": str(exc)},
            )
            sleep(delay / 1000.0)
