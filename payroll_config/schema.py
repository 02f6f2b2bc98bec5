"""
Runtime settings schema.

Settings are human-authored YAML parsed by ``payroll_config.loader`` into
these frozen dataclasses.  Defaults reproduce the production retry policy:
one minute base delay, one day cap, ten percent jitter, five attempts.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Warning policy names understood by payroll_mapping.domain.types.WarningPolicy
WARNING_POLICIES: frozenset[str] = frozenset({
    "ignore_warnings",
    "warnings_fail_record",
})


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings for the durable store."""

    url: str = "sqlite:///payroll_sync.db"
    echo: bool = False


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class BackoffSettings:
    """Exponential backoff with jitter for queued retries."""

    base_delay_ms: int = 60_000
    max_delay_ms: int = 86_400_000
    jitter_factor: float = 0.1


@dataclass(frozen=True)
class RetrySettings:
    """Error queue and sweep settings."""

    default_max_retries: int = 5
    sweep_limit: int = 50
    sweep_interval_seconds: int = 60
    backoff: BackoffSettings = field(default_factory=BackoffSettings)


@dataclass(frozen=True)
class MappingSettings:
    warning_policy: str = "ignore_warnings"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AppSettings:
    """Complete runtime settings."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    mapping: MappingSettings = field(default_factory=MappingSettings)
