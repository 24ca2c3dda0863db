"""Tests for logger configuration."""

import io
import logging
import sys

import pytest
from loguru import logger

from jobqueue_rabbitmq.logger import (
    InterceptHandler,
    LoggerSettings,
    configure_logger,
    configure_stdlib_logging_interception,
)


@pytest.fixture
def sink():
    """Capture log output; restore loguru's default handler afterwards."""
    stream = io.StringIO()
    yield stream
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def plain_settings():
    return LoggerSettings(colorize=False, log_level="DEBUG")


class TestLoggerSettings:
    """Test LoggerSettings defaults."""

    def test_defaults(self, monkeypatch):
        """Test default logger settings."""
        monkeypatch.delenv("JOBQUEUE_LOG_LOG_LEVEL", raising=False)
        settings = LoggerSettings()

        assert settings.log_level == "INFO"
        assert settings.level_per_module == {}
        assert settings.serialize is False
        assert set(settings.format) == {"time", "level", "sep", "name", "line", "message"}

    def test_environment_override(self, monkeypatch):
        """Test the level is read from the environment."""
        monkeypatch.setenv("JOBQUEUE_LOG_LOG_LEVEL", "WARNING")

        assert LoggerSettings().log_level == "WARNING"


class TestConfigureLogger:
    """Test configure_logger()."""

    def test_messages_reach_sink(self, sink, plain_settings):
        """Test a configured sink receives formatted messages."""
        configure_logger(plain_settings, sink=sink)

        logger.info("queue declared")

        output = sink.getvalue()
        assert "queue declared" in output
        assert "INFO" in output
        assert "<b>" not in output

    def test_level_filter(self, sink):
        """Test the global level."""
        configure_logger(LoggerSettings(colorize=False, log_level="WARNING"), sink=sink)

        logger.info("hidden")
        logger.warning("shown")

        assert "hidden" not in sink.getvalue()
        assert "shown" in sink.getvalue()

    def test_level_per_module(self, sink):
        """Test a per-module level override."""
        settings = LoggerSettings(
            colorize=False,
            log_level="DEBUG",
            level_per_module={"test_logger": "error"},
        )
        configure_logger(settings, sink=sink)

        logger.warning("suppressed here")
        logger.error("kept")

        assert "suppressed here" not in sink.getvalue()
        assert "kept" in sink.getvalue()

    def test_module_name_in_output(self, sink, plain_settings):
        """Test the short module name is shown."""
        configure_logger(plain_settings, sink=sink)

        logger.debug("where am I")

        assert "test_logger" in sink.getvalue()

    def test_serialized_output(self, sink):
        """Test JSON serialized records."""
        configure_logger(LoggerSettings(colorize=False, serialize=True), sink=sink)

        logger.info("structured")

        assert '"message": "structured"' in sink.getvalue()


class TestInterception:
    """Test routing stdlib logging through loguru."""

    def test_intercept_handler(self, sink, plain_settings):
        """Test a stdlib record is emitted through loguru."""
        configure_logger(plain_settings, sink=sink)
        std_logger = logging.getLogger("tests.intercept")
        std_logger.handlers = [InterceptHandler()]
        std_logger.setLevel(logging.DEBUG)
        std_logger.propagate = False

        std_logger.warning("from stdlib")

        assert "from stdlib" in sink.getvalue()
        assert "WARNING" in sink.getvalue()

    def test_configure_interception(self, sink, plain_settings):
        """Test aio-pika loggers are redirected."""
        configure_logger(plain_settings, sink=sink)

        configure_stdlib_logging_interception(level=logging.DEBUG)

        for name in ("aio_pika", "aiormq"):
            std_logger = logging.getLogger(name)
            assert isinstance(std_logger.handlers[0], InterceptHandler)
            assert std_logger.level == logging.DEBUG
            assert std_logger.propagate is False

        logging.getLogger("aio_pika.connection").info("connection opened")
        assert "connection opened" in sink.getvalue()
