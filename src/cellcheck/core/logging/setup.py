from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

from cellcheck import __version__
from cellcheck.core.config import get_int_env

from .json_formatter import JSONFormatter

_LOGGER_NAME = "cellcheck"
_MARKER = "_cellcheck_handler"
# httpx logs every request at INFO, which the poll loops would flood.
_NOISY_LOGGERS = ("httpx", "httpcore")


def _level_from_env() -> int:
    name = os.getenv("CELLCHECK_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _log_dir(state_dir: Path | None) -> Path:
    configured = os.getenv("CELLCHECK_LOG_DIR")
    if configured:
        return Path(configured).expanduser()
    if state_dir is None:
        state_dir = Path(os.getenv("CELLCHECK_STATE_DIR") or Path.home() / ".cellcheck").expanduser()
    return Path(state_dir) / "logs"


def _has_handler(logger: logging.Logger, kind: str) -> bool:
    return any(getattr(handler, _MARKER, None) == kind for handler in logger.handlers)


def _install(logger: logging.Logger, handler: logging.Handler, kind: str, formatter: logging.Formatter) -> None:
    handler.setFormatter(formatter)
    setattr(handler, _MARKER, kind)
    logger.addHandler(handler)


def configure_logging(state_dir: Path | None = None, *, stream: TextIO | None = None) -> logging.Logger:
    """Attach JSON handlers to the ``cellcheck`` logger. Safe to call repeatedly."""
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(_level_from_env())
    logger.propagate = False
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    formatter = JSONFormatter(static_fields={"service": "cellcheck", "version": __version__})

    if not _has_handler(logger, "stream"):
        _install(logger, logging.StreamHandler(stream or sys.stdout), "stream", formatter)

    if os.getenv("CELLCHECK_LOG_TO_FILE", "off").strip().casefold() == "on" and not _has_handler(logger, "file"):
        log_dir = _log_dir(state_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=log_dir / "cellcheck.log",
            maxBytes=get_int_env("CELLCHECK_LOG_MAX_BYTES", 5_000_000, minimum=1024),
            backupCount=get_int_env("CELLCHECK_LOG_BACKUP_COUNT", 5),
            encoding="utf-8",
        )
        _install(logger, file_handler, "file", formatter)

    return logger
