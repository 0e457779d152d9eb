"""
Tests for src/utils/log.py
"""

import logging

import pytest

from src.config.settings import reset_settings
from src.utils import log


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    level = root.level
    handlers = list(root.handlers)
    configured = log._configured
    log._configured = False
    reset_settings()
    yield
    reset_settings()
    root.setLevel(level)
    root.handlers = handlers
    log._configured = configured


def test_init_logger_sets_level():
    root = log.init_logger("debug")

    assert root is logging.getLogger()
    assert root.level == logging.DEBUG


def test_init_logger_defaults_to_settings_level(monkeypatch):
    monkeypatch.setenv("HAAS_LOG_LEVEL", "warning")

    assert log.init_logger().level == logging.WARNING


def test_init_logger_default_is_info(monkeypatch):
    monkeypatch.delenv("HAAS_LOG_LEVEL", raising=False)

    assert log.init_logger().level == logging.INFO


def test_init_logger_attaches_handler_once():
    before = len(logging.getLogger().handlers)

    log.init_logger("INFO")
    log.init_logger("DEBUG")

    assert len(logging.getLogger().handlers) == before + 1


def test_init_logger_unknown_level():
    with pytest.raises(ValueError, match="Unknown log level: LOUD"):
        log.init_logger("loud")
