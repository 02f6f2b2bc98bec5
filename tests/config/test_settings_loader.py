"""
Tests for payroll_config.loader -- settings YAML and environment overrides.
"""

from pathlib import Path

import pytest
import yaml

from payroll_config.loader import (
    ENV_DATABASE_URL,
    ENV_LOG_LEVEL,
    load_settings,
    load_yaml_file,
    parse_settings,
)
from payroll_config.schema import AppSettings, BackoffSettings
from payroll_kernel.exceptions import ConfigurationError

EXAMPLE_SETTINGS = Path(__file__).resolve().parents[2] / "config" / "settings.example.yaml"


class TestDefaults:
    def test_no_file_no_env_gives_defaults(self):
        assert load_settings(environ={}) == AppSettings()

    def test_default_backoff_matches_production_policy(self):
        backoff = AppSettings().retry.backoff
        assert backoff == BackoffSettings(
            base_delay_ms=60_000, max_delay_ms=86_400_000, jitter_factor=0.1,
        )
        assert AppSettings().retry.default_max_retries == 5

    def test_example_file_matches_defaults(self):
        assert load_settings(EXAMPLE_SETTINGS, environ={}) == AppSettings()


class TestParseSettings:
    def test_sections_parsed(self):
        settings = parse_settings({
            "database": {"url": "sqlite://", "echo": True},
            "logging": {"level": "debug"},
            "retry": {
                "default_max_retries": 3,
                "sweep_limit": 10,
                "backoff": {"base_delay_ms": 1000, "max_delay_ms": 5000, "jitter_factor": 0},
            },
            "mapping": {"warning_policy": "WARNINGS_FAIL_RECORD"},
        })

        assert settings.database.url == "sqlite://"
        assert settings.database.echo is True
        assert settings.logging.level == "DEBUG"
        assert settings.retry.default_max_retries == 3
        assert settings.retry.sweep_limit == 10
        assert settings.retry.sweep_interval_seconds == 60
        assert settings.retry.backoff.jitter_factor == 0.0
        assert settings.mapping.warning_policy == "warnings_fail_record"

    @pytest.mark.parametrize("data, fragment", [
        ({"retry": {"backoff": {"jitter_factor": 1.5}}}, "jitter_factor"),
        ({"retry": {"backoff": {"jitter_factor": -0.1}}}, "jitter_factor"),
        ({"retry": {"backoff": {"base_delay_ms": 10_000, "max_delay_ms": 5_000}}}, "max_delay_ms"),
        ({"retry": {"backoff": {"base_delay_ms": 0}}}, "base_delay_ms"),
        ({"retry": {"default_max_retries": -1}}, "default_max_retries"),
        ({"retry": {"sweep_limit": "many"}}, "sweep_limit"),
        ({"retry": {"sweep_interval_seconds": True}}, "sweep_interval_seconds"),
        ({"mapping": {"warning_policy": "panic"}}, "warning_policy"),
    ])
    def test_invalid_values(self, data, fragment):
        with pytest.raises(ConfigurationError, match=fragment):
            parse_settings(data)


class TestLoadSettings:
    def test_env_overrides_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.safe_dump({
            "database": {"url": "sqlite:///from-file.db"},
            "logging": {"level": "INFO"},
        }))
        env = {ENV_DATABASE_URL: "postgresql://db/payroll", ENV_LOG_LEVEL: "warning"}

        settings = load_settings(path, environ=env)

        assert settings.database.url == "postgresql://db/payroll"
        assert settings.logging.level == "WARNING"

    def test_empty_env_values_ignored(self):
        settings = load_settings(environ={ENV_DATABASE_URL: "", ENV_LOG_LEVEL: ""})
        assert settings == AppSettings()

    def test_error_names_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"retry": {"sweep_limit": 0}}))

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(path, environ={})
        assert exc_info.value.source == str(path)
        assert str(path) in str(exc_info.value)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "missing.yaml", environ={})

    def test_empty_yaml_file_is_empty_dict(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml_file(path) == {}
