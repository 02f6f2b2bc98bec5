"""
Settings Loader (``payroll_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into typed ``payroll_config.schema``
dataclasses, applying environment overrides last.

Architecture position
---------------------
**Config layer**.  Depends only on ``payroll_kernel.exceptions``; the
mapping rule loader reuses ``load_yaml_file``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Delays, limits and retry counts must be positive; jitter must lie in
  ``[0, 1]``; the warning policy must be a known name.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range or unknown values  -> ``ConfigurationError``.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from payroll_config.schema import (
    WARNING_POLICIES,
    AppSettings,
    BackoffSettings,
    DatabaseSettings,
    LoggingSettings,
    MappingSettings,
    RetrySettings,
)
from payroll_kernel.exceptions import ConfigurationError

ENV_DATABASE_URL = "PAYROLL_DATABASE_URL"
ENV_LOG_LEVEL = "PAYROLL_LOG_LEVEL"


def load_yaml_file(path: Path | str) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _positive_int(data: Mapping[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"'{key}' must be a positive integer, got {value!r}")
    return value


def parse_backoff(data: Mapping[str, Any]) -> BackoffSettings:
    defaults = BackoffSettings()
    jitter = float(data.get("jitter_factor", defaults.jitter_factor))
    if not 0.0 <= jitter <= 1.0:
        raise ConfigurationError(f"'jitter_factor' must be within [0, 1], got {jitter}")
    base = _positive_int(data, "base_delay_ms", defaults.base_delay_ms)
    cap = _positive_int(data, "max_delay_ms", defaults.max_delay_ms)
    if cap < base:
        raise ConfigurationError("'max_delay_ms' must not be smaller than 'base_delay_ms'")
    return BackoffSettings(base_delay_ms=base, max_delay_ms=cap, jitter_factor=jitter)


def parse_retry(data: Mapping[str, Any]) -> RetrySettings:
    defaults = RetrySettings()
    return RetrySettings(
        default_max_retries=_positive_int(
            data, "default_max_retries", defaults.default_max_retries
        ),
        sweep_limit=_positive_int(data, "sweep_limit", defaults.sweep_limit),
        sweep_interval_seconds=_positive_int(
            data, "sweep_interval_seconds", defaults.sweep_interval_seconds
        ),
        backoff=parse_backoff(data.get("backoff") or {}),
    )


def parse_mapping(data: Mapping[str, Any]) -> MappingSettings:
    policy = str(data.get("warning_policy", MappingSettings().warning_policy)).lower()
    if policy not in WARNING_POLICIES:
        raise ConfigurationError(
            f"Unknown warning_policy {policy!r}; expected one of {sorted(WARNING_POLICIES)}"
        )
    return MappingSettings(warning_policy=policy)


def parse_settings(data: Mapping[str, Any]) -> AppSettings:
    """Parse a settings dict (as loaded from YAML) into ``AppSettings``."""
    db = data.get("database") or {}
    log = data.get("logging") or {}
    return AppSettings(
        database=DatabaseSettings(
            url=str(db.get("url", DatabaseSettings().url)),
            echo=bool(db.get("echo", False)),
        ),
        logging=LoggingSettings(level=str(log.get("level", "INFO")).upper()),
        retry=parse_retry(data.get("retry") or {}),
        mapping=parse_mapping(data.get("mapping") or {}),
    )


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppSettings:
    """
    Load settings from an optional YAML file, then apply environment overrides.

    ``PAYROLL_DATABASE_URL`` replaces ``database.url`` and
    ``PAYROLL_LOG_LEVEL`` replaces ``logging.level``.
    """
    env = os.environ if environ is None else environ
    raw: dict[str, Any] = load_yaml_file(path) if path is not None else {}
    try:
        settings = parse_settings(raw)
    except ConfigurationError as exc:
        if path is None:
            raise
        raise ConfigurationError(str(exc), source=str(path)) from exc

    if env.get(ENV_DATABASE_URL):
        settings = replace(
            settings,
            database=replace(settings.database, url=env[ENV_DATABASE_URL]),
        )
    if env.get(ENV_LOG_LEVEL):
        settings = replace(
            settings,
            logging=LoggingSettings(level=env[ENV_LOG_LEVEL].upper()),
        )
    return settings
