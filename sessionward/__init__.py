"""sessionward: credential and session authority.

Local password and external-provider login, short-lived signed access
tokens, per-device refresh sessions with revocation, account lockout and
failed-login throttling.
"""

from pathlib import Path
from typing import Optional

import structlog

from .auth import (
    AccountDisabled,
    AccountLocked,
    AccountNotFound,
    AuthEngine,
    AuthError,
    AuthResponse,
    DuplicateEmail,
    ExternalIdentity,
    InvalidCredentials,
    InvalidToken,
    LockoutGuard,
    LoginThrottle,
    PasswordPolicy,
    ProviderConflict,
    SessionStore,
    TokenSigner,
    TokenSignerConfig,
    TooManyAttempts,
    ValidationFailed,
)
from .common.clock import Clock, SystemClock
from .common.config import Config
from .common.logging_config import setup_logging
from .core.db import AuthRepository, DatabaseError
from .core.models import Account, AuthProvider, LockoutState, SessionRecord

__version__ = "0.1.0"
__all__ = [
    "__version__",
    "configure",
    "get_config",
    "get_repository",
    "shutdown",
    "Config",
    "Clock",
    "SystemClock",
    "setup_logging",
    "AuthRepository",
    "DatabaseError",
    "Account",
    "AuthProvider",
    "LockoutState",
    "SessionRecord",
    "AuthEngine",
    "AuthResponse",
    "ExternalIdentity",
    "LockoutGuard",
    "LoginThrottle",
    "PasswordPolicy",
    "SessionStore",
    "TokenSigner",
    "TokenSignerConfig",
    "AuthError",
    "ValidationFailed",
    "DuplicateEmail",
    "InvalidCredentials",
    "AccountLocked",
    "AccountDisabled",
    "InvalidToken",
    "ProviderConflict",
    "AccountNotFound",
    "TooManyAttempts",
]

# Module-level logger (not configured yet)
logger = structlog.get_logger(__name__)

# Global config and repository state
_config: Optional[Config] = None
_repository: Optional[AuthRepository] = None


async def configure(config_path: Optional[Path] = None, config: Optional[Config] = None) -> None:
    """
    Configure the sessionward package (async).

    Call once at application startup to load configuration, set up logging
    and open the credential database.

    Path Resolution:
    - If config is provided it is used as-is
    - Otherwise config_path is loaded, then config.yaml in the config dir,
      then config.yaml in the working directory, then built-in defaults
    - The database path is resolved against config_dir

    Args:
        config_path: Path to YAML configuration file
        config: Pre-loaded Config object (takes precedence over config_path)

    Example:
        >>> import sessionward
        >>> from pathlib import Path
        >>> await sessionward.configure(config_path=Path("config.yaml"))
    """
    global _config, _repository

    from sessionward.common.config import _get_default_config_dir

    if config is not None:
        _config = config
    elif config_path is not None:
        _config = Config.from_yaml(config_path)
    else:
        default_config_path = _get_default_config_dir() / "config.yaml"
        cwd_config_path = Path.cwd() / "config.yaml"

        if default_config_path.exists():
            _config = Config.from_yaml(default_config_path)
            config_path = default_config_path
        elif cwd_config_path.exists():
            _config = Config.from_yaml(cwd_config_path)
            config_path = cwd_config_path
        elif _config is None:
            _config = Config()

    _config.resolve_paths(create_dirs=True)
    setup_logging(_config.logging, _config.config_dir)

    if _repository is None:
        _repository = await AuthRepository.from_config(_config)

    logger.info(
        "sessionward_configured",
        version=__version__,
        config_path=str(config_path) if config_path else None,
        config_dir=str(_config.config_dir),
        database_path=str(_config.get_database_path()),
    )


def get_config() -> Config:
    """
    Get current configuration, initializing with defaults if needed.

    Example:
        >>> import sessionward
        >>> sessionward.get_config().lockout.max_failed_attempts
        5
    """
    global _config
    if _config is None:
        # Does not open the database; call await configure() for that
        _config = Config()
        setup_logging(_config.logging)
    return _config


async def get_repository() -> AuthRepository:
    """
    Get the repository, opening and migrating the database if needed (async).

    Example:
        >>> import sessionward
        >>> await sessionward.configure()
        >>> repo = await sessionward.get_repository()
        >>> accounts = await repo.list_accounts()
    """
    global _repository, _config

    if _repository is None:
        if _config is None:
            _config = Config()
            setup_logging(_config.logging)
        _config.resolve_paths(create_dirs=True)

        _repository = await AuthRepository.from_config(_config)
        logger.info(
            "repository_auto_initialized",
            database_path=str(_config.get_database_path()),
        )

    return _repository


async def shutdown() -> None:
    """Close the repository opened by configure() or get_repository()."""
    global _repository

    if _repository is not None:
        await _repository.close()
    _repository = None
