"""Logging setup for agentloop processes and scripts."""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["LOG_FORMAT", "get_log_path", "setup_logging"]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DIR_ENV = "AGENTLOOP_LOG_DIR"

_DEFAULT_LOG_DIR = Path.home() / ".agentloop" / "logs"
_LOG_FILENAME = "agentloop.log"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_LOG_PATH: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    log_to_file: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
) -> Path | None:
    """Configure root logging; returns the log file path when file logging is on.

    Calling it again replaces the handlers installed by the previous call.
    """

    global _LOG_PATH
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers: list[logging.Handler] = []

    log_path: Path | None = None
    if log_to_file:
        target_dir = _resolve_log_dir(log_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        log_path = target_dir / _LOG_FILENAME
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        handlers.append(file_handler)

    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers or [logging.NullHandler()], force=True)
    logging.captureWarnings(True)
    _quiet_external_loggers(level)

    _LOG_PATH = log_path
    return log_path


def get_log_path() -> Path | None:
    """Return the file configured by the last :func:`setup_logging` call."""

    return _LOG_PATH


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    return Path(log_dir or os.environ.get(LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()


def _quiet_external_loggers(root_level: int) -> None:
    quiet_level = max(logging.WARNING, root_level)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
