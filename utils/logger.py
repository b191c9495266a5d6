"""Logging setup shared by the analytics engine and its scripts."""

import logging
import sys
from pathlib import Path
from typing import Any, MutableMapping, Optional, Tuple, Union
from config.settings import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Log files live next to the packages
LOG_DIR = Path(__file__).parent.parent / "logs"


def get_log_level(level_name: str) -> int:
    """Logging constant for a level name, INFO when the name is unknown."""
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def default_log_file() -> str:
    """LOG_FILE, or a file named after the application."""
    return settings.LOG_FILE or f"{settings.APP_NAME.lower().replace(' ', '_')}.log"


def _attach(logger: logging.Logger, handler: logging.Handler, level: int):
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    logger.addHandler(handler)


def setup_logger(
    name: str,
    level: Optional[str] = None,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure and return a logger instance.

    Messages always go to stdout. They are also written to a file under
    `logs/` when `log_file` is given or DEBUG is off, which is how batch
    runs are deployed.

    Args:
        name: Logger name (typically module name)
        level: Log level name (defaults to LOG_LEVEL)
        log_file: File name inside the log directory

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    log_level = get_log_level(level or settings.LOG_LEVEL)
    logger.setLevel(log_level)

    # Configured once per name
    if logger.handlers:
        return logger

    _attach(logger, logging.StreamHandler(sys.stdout), log_level)

    if log_file or not settings.DEBUG:
        LOG_DIR.mkdir(exist_ok=True)
        file_path = LOG_DIR / (log_file or default_log_file())
        _attach(logger, logging.FileHandler(file_path, encoding="utf-8"), log_level)

    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Example:
        >>> from utils.logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Power curve computed")
    """
    return setup_logger(name)


class ContextAdapter(logging.LoggerAdapter):
    """Prefixes every message with its context values, e.g. ``[strava]``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        prefix = " ".join(f"[{value}]" for value in self.extra.values())
        return (f"{prefix} {msg}" if prefix else msg), kwargs


def get_context_logger(name: str, **context: Any) -> ContextAdapter:
    """
    Logger that tags its messages with fixed context.

    Args:
        name: Logger name
        **context: Values shown in brackets before each message
            (e.g. upstream="strava", athlete="athlete 42")
    """
    return ContextAdapter(get_logger(name), context)


def log_exception(
    logger: Union[logging.Logger, logging.LoggerAdapter],
    exc: BaseException,
    context: str = ""
):
    """
    Log an exception with its traceback.

    Args:
        logger: Logger or adapter
        exc: Exception to log
        context: What was being done when it happened
    """
    message = f"{type(exc).__name__}: {exc}"
    if context:
        message = f"{context}: {message}"
    logger.error(message, exc_info=exc)
