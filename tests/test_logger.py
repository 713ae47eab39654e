"""Tests for logger setup."""

import io
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest
from rich.console import Console
from rich.logging import RichHandler

from streamchat.logger import DEFAULT_LOG_FILE, QUIET_LOGGERS, resolve_log_path, setup_logger


@pytest.fixture
def quiet_console():
    return Console(file=io.StringIO(), width=100)


@pytest.fixture
def logger_name(request):
    name = f"streamchat.tests.{request.node.name}"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def test_console_only_when_file_disabled(logger_name, quiet_console):
    logger = setup_logger(logger_name, log_file=False, console=quiet_console)
    assert [type(h) for h in logger.handlers] == [RichHandler]
    assert logger.level == logging.WARNING
    assert not logger.propagate


def test_verbose_lowers_console_level(logger_name, quiet_console):
    logger = setup_logger(logger_name, verbose=True, log_file=False, console=quiet_console)
    assert logger.handlers[0].level == logging.INFO
    logger.info("request 1/5")
    assert "request 1/5" in quiet_console.file.getvalue()


def test_file_records_info_while_console_stays_quiet(logger_name, quiet_console, tmp_path):
    path = tmp_path / "logs" / "chat.log"
    logger = setup_logger(logger_name, log_file=str(path), console=quiet_console)
    logger.info("Turn 1 finalized")
    for handler in logger.handlers:
        handler.flush()

    assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
    assert "Turn 1 finalized" in path.read_text(encoding="utf-8")
    assert quiet_console.file.getvalue() == ""


def test_reconfigure_replaces_handlers(logger_name, quiet_console, tmp_path):
    setup_logger(logger_name, log_file=str(tmp_path / "a.log"), console=quiet_console)
    logger = setup_logger(logger_name, log_file=False, console=quiet_console)
    assert len(logger.handlers) == 1


def test_third_party_loggers_quieted(logger_name, quiet_console):
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG)
    setup_logger(logger_name, log_file=False, console=quiet_console)
    for name in QUIET_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


@pytest.mark.parametrize("target,expected", [
    (None, DEFAULT_LOG_FILE),
    (True, DEFAULT_LOG_FILE),
    (False, None),
    ("~/chat.log", Path("~/chat.log").expanduser()),
])
def test_resolve_log_path(target, expected):
    assert resolve_log_path(target) == expected
