"""Structured logging setup (structlog on top of the standard library)."""

import logging
import logging.handlers
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from .config import LoggingConfig

# Event keys whose values must never reach a log sink
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "password_hash",
        "access_token",
        "refresh_token",
        "token",
        "jwt_secret",
        "secret",
        "authorization",
    }
)
REDACTED = "***"

# aiosqlite logs every statement at DEBUG
DEFAULT_THIRD_PARTY_LEVELS = {
    "aiosqlite": "WARNING",
    "uvicorn.access": "WARNING",
}


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor that masks credentials passed as event keys."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def _build_processors(config: LoggingConfig) -> List[Any]:
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    return processors


def _build_handlers(
    config: LoggingConfig, config_dir: Optional[Path], log_level: int
) -> List[logging.Handler]:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    handlers: List[logging.Handler] = [console_handler]

    if config.file.enabled and config_dir is not None:
        log_path = config_dir / "sessionward.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Daily rotation at midnight, seven files kept: sessionward.log.2024-03-01
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=str(log_path),
            when="midnight",
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    return handlers


def setup_logging(config: LoggingConfig, config_dir: Optional[Path] = None) -> None:
    """
    Configure structlog and the standard library root logger.

    Safe to call more than once; each call replaces the root handlers.

    Args:
        config: LoggingConfig object with logging settings
        config_dir: Directory for sessionward.log (if file logging enabled)

    Example:
        >>> from sessionward.common.config import LoggingConfig
        >>> setup_logging(LoggingConfig(level="DEBUG", format="text"))
    """
    log_level = getattr(logging, config.level.upper())

    logging.basicConfig(level=log_level, format="%(message)s", handlers=[], force=True)

    for library, level in {**DEFAULT_THIRD_PARTY_LEVELS, **config.third_party}.items():
        logging.getLogger(library).setLevel(getattr(logging, level.upper()))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    for handler in _build_handlers(config, config_dir, log_level):
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    structlog.configure(
        processors=_build_processors(config),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_context(**kwargs: Any) -> None:
    """
    Bind values included in every subsequent log event of the current context.

    The HTTP layer binds a request id here so every auth event logged while
    serving the request carries it.

    Example:
        >>> bind_context(request_id="abc-123")
        >>> logger.info("login_successful")  # includes request_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
