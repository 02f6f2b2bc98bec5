"""
payroll_config -- typed runtime settings loaded from YAML.

    settings = load_settings("settings.yaml")
    settings.retry.backoff.base_delay_ms
"""

from payroll_config.loader import load_settings, load_yaml_file, parse_settings
from payroll_config.schema import (
    AppSettings,
    BackoffSettings,
    DatabaseSettings,
    LoggingSettings,
    MappingSettings,
    RetrySettings,
)

__all__ = [
    "AppSettings",
    "BackoffSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "MappingSettings",
    "RetrySettings",
    "load_settings",
    "load_yaml_file",
    "parse_settings",
]
