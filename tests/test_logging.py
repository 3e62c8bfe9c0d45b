"""Tests for console logging setup."""

import logging

import pytest
from rich.logging import RichHandler

from cadre.logging import setup_logging


@pytest.fixture(autouse=True)
def restore_logger():
    yield
    logger = logging.getLogger("cadre")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


def test_rich_handler():
    setup_logging("info")

    logger = logging.getLogger("cadre")
    assert logger.level == logging.INFO
    assert isinstance(logger.handlers[0], RichHandler)
    assert logger.propagate is False


def test_plain_handler_replaces_previous():
    setup_logging("DEBUG", rich=True)
    setup_logging("WARNING", rich=False)

    logger = logging.getLogger("cadre")
    assert len(logger.handlers) == 1
    assert not isinstance(logger.handlers[0], RichHandler)
    assert logger.level == logging.WARNING


def test_module_loggers_inherit(capsys):
    setup_logging("WARNING", rich=False)

    logging.getLogger("cadre.tools.registry").warning("Tool '%s' failed", "lookup")

    assert "cadre.tools.registry: Tool 'lookup' failed" in capsys.readouterr().err
