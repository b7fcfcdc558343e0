"""
Unit tests for chatrelay logging setup.
"""

import logging

import pytest

from chatrelay.config.logging import ColoredFormatter, get_logger, setup_logging
from chatrelay.config.settings import Settings


@pytest.fixture
def restore_package_logger():
    package_logger = logging.getLogger("chatrelay")
    handlers, level, propagate = list(package_logger.handlers), package_logger.level, package_logger.propagate
    yield package_logger
    for handler in package_logger.handlers:
        if handler not in handlers:
            handler.close()
    package_logger.handlers[:] = handlers
    package_logger.setLevel(level)
    package_logger.propagate = propagate


class TestGetLogger:
    def test_module_name_kept(self):
        assert get_logger("chatrelay.tools.weather").name == "chatrelay.tools.weather"

    def test_bare_name_nested(self):
        assert get_logger("weather").name == "chatrelay.weather"

    def test_package_name(self):
        assert get_logger("chatrelay").name == "chatrelay"


class TestColoredFormatter:
    def test_record_is_not_mutated(self):
        record = logging.LogRecord("chatrelay", logging.WARNING, __file__, 1, "careful", None, None)

        line = ColoredFormatter(fmt="%(levelname)s %(message)s").format(record)

        assert "\033[33mWARNING\033[0m careful" == line
        assert record.levelname == "WARNING"


class TestSetupLogging:
    def test_file_handler(self, tmp_path, restore_package_logger):
        log_file = tmp_path / "logs" / "chatrelay.log"

        setup_logging(Settings(_env_file=None, log_level="DEBUG", log_file=log_file))
        get_logger("chatrelay.service").debug("turn complete")
        for handler in restore_package_logger.handlers:
            handler.flush()

        content = log_file.read_text()
        assert "turn complete" in content
        assert "\033[" not in content
        assert restore_package_logger.propagate is False

    def test_repeat_setup_replaces_handlers(self, restore_package_logger):
        settings = Settings(_env_file=None)
        setup_logging(settings)
        setup_logging(settings)

        assert len(restore_package_logger.handlers) == 1
