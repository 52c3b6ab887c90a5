"""Unit tests for configuration loading and validation."""

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from sessionward.common.config import (
    Config,
    FileLoggingConfig,
    LockoutConfig,
    LoggingConfig,
    PasswordConfig,
    RateLimitConfig,
    ThrottleConfig,
    TokenConfig,
    VerificationConfig,
    _get_default_config_dir,
)


class TestLoggingConfig:
    """Tests for LoggingConfig model."""

    def test_default_values(self):
        config = LoggingConfig()
        assert config.level == "INFO"
        assert config.format == "json"
        assert isinstance(config.file, FileLoggingConfig)
        assert config.file.enabled is False

    def test_level_normalization(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_level(self):
        with pytest.raises(ValidationError):
            LoggingConfig(level="VERBOSE")

    def test_invalid_format(self):
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")


class TestAuthConfig:
    """Tests for token, lockout, password and throttle settings."""

    def test_token_defaults(self):
        config = TokenConfig()
        assert config.algorithm == "HS256"
        assert config.access_token_ttl == timedelta(minutes=15)
        assert config.refresh_token_ttl == timedelta(days=7)

    def test_token_algorithm_must_be_hmac(self):
        assert TokenConfig(algorithm="hs512").algorithm == "HS512"
        with pytest.raises(ValidationError):
            TokenConfig(algorithm="RS256")

    def test_lockout_defaults(self):
        config = LockoutConfig()
        assert config.max_failed_attempts == 5
        assert config.lock_duration == timedelta(hours=24)

    def test_lockout_constraints(self):
        with pytest.raises(ValidationError):
            LockoutConfig(max_failed_attempts=0)
        with pytest.raises(ValidationError):
            LockoutConfig(lock_duration_hours=0)

    def test_password_rounds_bounds(self):
        assert PasswordConfig().bcrypt_rounds == 12
        with pytest.raises(ValidationError):
            PasswordConfig(bcrypt_rounds=3)

    def test_throttle_defaults(self):
        config = ThrottleConfig()
        assert config.enabled is True
        assert config.max_attempts == 10
        assert config.window_seconds == 60

    def test_rate_limit_defaults(self):
        config = RateLimitConfig()
        assert config.enabled is True
        assert config.requests_per_minute == 30
        assert config.burst_size is None
        with pytest.raises(ValidationError):
            RateLimitConfig(requests_per_minute=0)
        with pytest.raises(ValidationError):
            RateLimitConfig(burst_size=0)

    def test_verification_defaults(self):
        assert VerificationConfig().token_ttl == timedelta(hours=24)
        assert VerificationConfig(token_expires_hours=0.5).token_ttl == timedelta(minutes=30)
        with pytest.raises(ValidationError):
            VerificationConfig(token_expires_hours=0)


class TestConfig:
    """Tests for the root Config model."""

    def test_default_config(self):
        config = Config()
        assert config.config_dir is None
        assert config.database.database_path == "sessionward.db"
        assert config.lockout.max_failed_attempts == 5

    def test_from_yaml_string(self):
        config = Config.from_yaml_string(
            """
lockout:
  max_failed_attempts: 3
  lock_duration_hours: 1
tokens:
  access_token_expires_minutes: 5
throttle:
  enabled: false
rate_limit:
  requests_per_minute: 120
  burst_size: 10
"""
        )
        assert config.rate_limit.requests_per_minute == 120
        assert config.rate_limit.burst_size == 10
        assert config.lockout.max_failed_attempts == 3
        assert config.lockout.lock_duration == timedelta(hours=1)
        assert config.tokens.access_token_ttl == timedelta(minutes=5)
        assert config.throttle.enabled is False

    def test_from_empty_yaml_string(self):
        assert Config.from_yaml_string("").lockout.max_failed_attempts == 5

    def test_from_yaml_file(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("password:\n  bcrypt_rounds: 10\n", encoding="utf-8")

        assert Config.from_yaml(path).password.bcrypt_rounds == 10

    def test_from_yaml_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            Config.from_yaml(tmp_path / "missing.yaml")

    def test_invalid_yaml_values(self):
        with pytest.raises(ValidationError):
            Config.from_yaml_string("lockout:\n  max_failed_attempts: -1\n")

    def test_database_path_resolution(self, tmp_path: Path):
        config = Config(config_dir=tmp_path)
        assert config.get_database_path() == tmp_path / "sessionward.db"
        assert config.get_log_file_path() == tmp_path / "sessionward.log"

    def test_absolute_database_path(self, tmp_path: Path):
        config = Config.from_yaml_string(f"database:\n  database_path: {tmp_path / 'x.db'}\n")
        assert config.get_database_path() == tmp_path / "x.db"

    def test_resolve_paths_uses_environment(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("SESSIONWARD_CONFIG_DIR", str(tmp_path / "conf"))

        config = Config().resolve_paths()

        assert config.config_dir == tmp_path / "conf"
        assert config.config_dir.is_dir()


class TestDefaultConfigDir:
    def test_env_override(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("SESSIONWARD_CONFIG_DIR", str(tmp_path))
        assert _get_default_config_dir() == tmp_path

    def test_docker(self, monkeypatch):
        monkeypatch.delenv("SESSIONWARD_CONFIG_DIR", raising=False)
        monkeypatch.setenv("SESSIONWARD_DOCKER", "1")
        assert _get_default_config_dir() == Path("/config")

    def test_home(self, monkeypatch):
        monkeypatch.delenv("SESSIONWARD_CONFIG_DIR", raising=False)
        monkeypatch.delenv("SESSIONWARD_DOCKER", raising=False)
        assert _get_default_config_dir() == Path.home() / ".sessionward"
