"""Logging setup for Fund Ledger.

Records go to stdout and, when ``logging.file`` is configured, to a log
file as well. HTTP client chatter (urllib3 connection pool messages) is
kept at WARNING unless the application itself runs at DEBUG.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Iterable

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every request at DEBUG/INFO
NOISY_LOGGERS = ("urllib3", "requests")


def setup_logging(
    level: str = "INFO",
    log_format: str | None = None,
    log_file: str | Path | None = None,
    quiet_loggers: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Configure the root logger.

    Args:
        level: Logging level name, case-insensitive; unknown names mean INFO
        log_format: Format string (defaults to DEFAULT_FORMAT)
        log_file: Optional file that receives the same records as stdout
        quiet_loggers: Logger names capped at WARNING below DEBUG level

    Example:
        >>> setup_logging(level="DEBUG", log_file="data/fundledger.log")
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(
        level=numeric_level,
        format=log_format or DEFAULT_FORMAT,
        handlers=handlers,
        force=True,
    )

    quiet_level = logging.NOTSET if numeric_level <= logging.DEBUG else logging.WARNING
    for name in quiet_loggers:
        logging.getLogger(name).setLevel(quiet_level)


def setup_logging_from_config(config: Any) -> None:
    """Apply the ``logging`` section of a Config.

    Reads ``logging.level``, ``logging.format`` and ``logging.file``.
    """
    setup_logging(
        level=config.get("logging.level", "INFO"),
        log_format=config.get("logging.format"),
        log_file=config.get("logging.file"),
    )


def get_logger(name: str) -> logging.Logger:
    """Return the module logger (pass ``__name__``)."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: Any,
) -> None:
    """Log ``message`` followed by ``key=value`` pairs.

    Float values are shown with at most four decimals so cash and unit
    figures stay readable.

    Example:
        >>> log_with_context(logger, "info", "Decision confirmed",
        ...                  code="000216", units=12.5, cash=200.0)
        # Logs: "Decision confirmed | code=000216 units=12.5 cash=200.0"
    """
    log_func = getattr(logger, level.lower())

    if not context:
        log_func(message)
        return

    parts = []
    for key, value in context.items():
        if isinstance(value, float):
            value = f"{value:.4f}".rstrip("0").rstrip(".") if value % 1 else f"{value:.1f}"
        parts.append(f"{key}={value}")
    log_func(f"{message} | {' '.join(parts)}")
