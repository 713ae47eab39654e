"""Logging setup: rich console output plus a rotating log file."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

__all__ = ["setup_logger", "get_logger", "DEFAULT_LOG_FILE"]

DEFAULT_LOG_FILE = Path("~/.streamchat/logs/streamchat.log").expanduser()
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MAX_LOG_BYTES = 2 * 1024 * 1024
LOG_BACKUP_COUNT = 3

# Chatty at INFO: one line per HTTP connection and per SQL statement.
QUIET_LOGGERS = ("urllib3", "sqlalchemy", "sqlalchemy.engine")

LogTarget = Union[str, Path, bool, None]


def _console_handler(level: int, console: Optional[Console]) -> logging.Handler:
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )
    handler.setLevel(level)
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES,
                                  backupCount=LOG_BACKUP_COUNT, encoding="utf-8")
    # the file keeps turn and tool detail even when the terminal shows warnings only
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def setup_logger(name: str = "streamchat", verbose: bool = False,
                 log_file: LogTarget = None,
                 console: Optional[Console] = None) -> logging.Logger:
    """Configure the ``streamchat`` logger tree.

    The terminal gets WARNING and above, or INFO with ``verbose``. The log
    file (``log_file``: ``None``/``True`` for the default path, ``False`` to
    disable, or a path) always records INFO. Calling this again replaces the
    previous handlers.
    """
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_level = logging.INFO if verbose else logging.WARNING
    logger.addHandler(_console_handler(console_level, console))

    path = resolve_log_path(log_file)
    if path is not None:
        logger.addHandler(_file_handler(path))
        logger.setLevel(logging.INFO)
    else:
        logger.setLevel(console_level)
    logger.propagate = False

    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def resolve_log_path(log_file: LogTarget) -> Optional[Path]:
    if log_file is False:
        return None
    if log_file is None or log_file is True:
        return DEFAULT_LOG_FILE
    return Path(log_file).expanduser()
