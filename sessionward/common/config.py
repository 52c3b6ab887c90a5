"""Configuration models using Pydantic for validation."""

import os
from datetime import timedelta
from pathlib import Path
from typing import ClassVar, Dict, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, field_validator
from ruamel.yaml import YAML

logger = structlog.get_logger(__name__)


class FileLoggingConfig(BaseModel):
    """Configuration for file-based logging.

    File logging uses daily rotation with 7-day retention.
    Log files are stored as sessionward.log in config_dir, rotated daily
    with format sessionward.log.YYYY-MM-DD.
    """

    enabled: bool = Field(
        default=False,
        description="Enable file logging (logs to sessionward.log in config_dir)",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(
        default="INFO",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    format: str = Field(
        default="json",
        description="Log format: json or text",
    )
    file: FileLoggingConfig = Field(
        default_factory=FileLoggingConfig,
        description="File logging configuration",
    )
    third_party: Dict[str, str] = Field(
        default_factory=dict,
        description="Log levels for third-party libraries (advanced)",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "text"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid format: {v}. Must be one of {valid_formats}")
        return v_lower


class DatabaseConfig(BaseModel):
    """Configuration for the SQLite credential database."""

    database_path: str = Field(
        default="sessionward.db",
        description="Database file path (relative paths resolve against config_dir)",
    )
    enable_wal_mode: bool = Field(
        default=True,
        description="Enable SQLite Write-Ahead Logging",
    )
    connection_timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Connection timeout in seconds",
    )


class TokenConfig(BaseModel):
    """Configuration for signed access tokens and session lifetimes."""

    algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm (HMAC family only)",
    )
    access_token_expires_minutes: int = Field(
        default=15,
        ge=1,
        le=1440,
        description="Access token lifetime in minutes",
    )
    refresh_token_expires_minutes: int = Field(
        default=7 * 24 * 60,
        ge=1,
        description="Refresh token / session lifetime in minutes (default: 7 days)",
    )

    @field_validator("algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        """Only symmetric HMAC algorithms are supported."""
        valid_algorithms = ["HS256", "HS384", "HS512"]
        v_upper = v.upper()
        if v_upper not in valid_algorithms:
            raise ValueError(f"Invalid algorithm: {v}. Must be one of {valid_algorithms}")
        return v_upper

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.access_token_expires_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.refresh_token_expires_minutes)


class LockoutConfig(BaseModel):
    """Configuration for per-account lockout after repeated failed logins."""

    max_failed_attempts: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Consecutive failed password attempts before the account locks",
    )
    lock_duration_hours: float = Field(
        default=24,
        gt=0,
        description="How long a locked account rejects password attempts",
    )

    @property
    def lock_duration(self) -> timedelta:
        return timedelta(hours=self.lock_duration_hours)


class PasswordConfig(BaseModel):
    """Configuration for password hashing."""

    bcrypt_rounds: int = Field(
        default=12,
        ge=4,
        le=31,
        description="bcrypt work factor (log2 rounds)",
    )


class VerificationConfig(BaseModel):
    """Configuration for email verification of local accounts."""

    token_expires_hours: float = Field(
        default=24,
        gt=0,
        description="Lifetime of an email verification token; unverified accounts are purged after it",
    )

    @property
    def token_ttl(self) -> timedelta:
        return timedelta(hours=self.token_expires_hours)


class RateLimitConfig(BaseModel):
    """Configuration for per-address request rate limiting of the auth endpoints."""

    enabled: bool = Field(
        default=True,
        description="Whether auth endpoint requests are rate limited per network address",
    )
    requests_per_minute: int = Field(
        default=30,
        ge=1,
        le=100000,
        description="Sustained request rate allowed per address",
    )
    burst_size: Optional[int] = Field(
        default=None,
        ge=1,
        description="Requests an idle address may send at once (default: requests_per_minute)",
    )


class ThrottleConfig(BaseModel):
    """Configuration for per-address throttling of failed logins."""

    enabled: bool = Field(
        default=True,
        description="Whether failed logins are throttled per network address",
    )
    max_attempts: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Failed attempts allowed per address within the window",
    )
    window_seconds: int = Field(
        default=60,
        ge=1,
        le=86400,
        description="Sliding window length in seconds",
    )


def _get_default_config_dir() -> Path:
    """
    Get default config directory based on environment.

    Priority:
    1. SESSIONWARD_CONFIG_DIR environment variable
    2. /config if SESSIONWARD_DOCKER=1
    3. $HOME/.sessionward otherwise

    Returns:
        Path to config directory
    """
    env_config_dir = os.environ.get("SESSIONWARD_CONFIG_DIR")
    if env_config_dir:
        return Path(env_config_dir)

    if os.environ.get("SESSIONWARD_DOCKER") == "1":
        return Path("/config")

    return Path.home() / ".sessionward"


class Config(BaseModel):
    """Main configuration class for sessionward.

    Path Resolution:
    - config_dir: Where the credential database and log files are stored

    Environment Variables:
    - SESSIONWARD_CONFIG_DIR: Override config_dir
    - SESSIONWARD_DOCKER=1: Use Docker default (/config)

    The signing secret is deliberately not part of this model; it is read from
    the environment by APISettings and never written to YAML.
    """

    config_dir: Optional[Path] = Field(
        default=None,
        description="Configuration directory (database, logs). Resolved from SESSIONWARD_CONFIG_DIR or defaults.",
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    database: DatabaseConfig = Field(
        default_factory=DatabaseConfig,
        description="Database configuration",
    )
    tokens: TokenConfig = Field(
        default_factory=TokenConfig,
        description="Access token and session lifetime configuration",
    )
    lockout: LockoutConfig = Field(
        default_factory=LockoutConfig,
        description="Account lockout configuration",
    )
    password: PasswordConfig = Field(
        default_factory=PasswordConfig,
        description="Password hashing configuration",
    )
    throttle: ThrottleConfig = Field(
        default_factory=ThrottleConfig,
        description="Failed login throttling configuration",
    )
    rate_limit: RateLimitConfig = Field(
        default_factory=RateLimitConfig,
        description="Auth endpoint request rate limiting configuration",
    )
    verification: VerificationConfig = Field(
        default_factory=VerificationConfig,
        description="Email verification configuration",
    )

    DEFAULT_LOG_FILE: ClassVar[str] = "sessionward.log"

    def resolve_paths(self, create_dirs: bool = True) -> "Config":
        """
        Resolve config_dir from environment or defaults.

        Args:
            create_dirs: If True, create config_dir if it doesn't exist

        Returns:
            Self with resolved paths (for chaining)

        Example:
            >>> config = Config.from_yaml(Path("config.yaml")).resolve_paths()
        """
        if self.config_dir is None:
            object.__setattr__(self, "config_dir", _get_default_config_dir())

        if create_dirs:
            self.config_dir.mkdir(parents=True, exist_ok=True)

        logger.debug("paths_resolved", config_dir=str(self.config_dir))

        return self

    def get_database_path(self) -> Path:
        """
        Get absolute database path, resolved against config_dir.

        Returns:
            Absolute path to database file
        """
        db_path = Path(self.database.database_path)
        if db_path.is_absolute():
            return db_path

        config_dir = self.config_dir or _get_default_config_dir()
        return config_dir / db_path

    def get_log_file_path(self) -> Path:
        """
        Get absolute log file path, resolved against config_dir.

        Returns:
            Absolute path to log file (sessionward.log in config_dir)
        """
        config_dir = self.config_dir or _get_default_config_dir()
        return config_dir / self.DEFAULT_LOG_FILE

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """
        Load configuration from YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Config object with validated configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            pydantic.ValidationError: If configuration is invalid

        Example:
            >>> from pathlib import Path
            >>> config = Config.from_yaml(Path("config.yaml"))
        """
        yaml_loader = YAML(typ="safe")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml_loader.load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_string: str) -> "Config":
        """
        Load configuration from YAML string.

        Args:
            yaml_string: YAML configuration as string

        Returns:
            Config object with validated configuration

        Example:
            >>> yaml_str = "lockout:\\n  max_failed_attempts: 3"
            >>> config = Config.from_yaml_string(yaml_str)
        """
        data = yaml.safe_load(yaml_string)
        return cls.model_validate(data or {})
