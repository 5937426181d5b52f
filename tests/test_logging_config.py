"""
Tests for structured JSON logging configuration.

This module tests:
- JSONFormatter (JSON log output)
- setup_logging() (logging configuration)
- log_with_context() (structured repository fields)

Tests follow AAA (Arrange, Act, Assert) pattern.
"""

import io
import json
import logging

import pytest

from repokit.core.logging_config import (
    JSONFormatter,
    get_logger,
    log_with_context,
    setup_logging,
)


@pytest.fixture
def json_stream():
    """Logger writing JSON lines to an in-memory stream."""
    logger = logging.getLogger("repokit.test_json")
    logger.setLevel(logging.DEBUG)
    logger.handlers = []
    logger.propagate = False

    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)

    yield logger, stream

    logger.handlers = []


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


class TestJSONFormatter:
    """Tests for JSON log formatter."""

    def test_json_formatter_basic_message(self, json_stream):
        """
        Test JSONFormatter outputs valid JSON.

        Arrange: Logger with JSONFormatter
        Act: Log a message
        Assert: Output is valid JSON with required fields
        """
        # Arrange
        logger, stream = json_stream

        # Act
        logger.info("Repository ready")

        # Assert
        log_data = json.loads(stream.getvalue().strip())
        assert log_data["level"] == "INFO"
        assert log_data["message"] == "Repository ready"
        assert log_data["logger"] == "repokit.test_json"
        assert "timestamp" in log_data

    def test_json_formatter_with_extra_fields(self, json_stream):
        """
        Test JSONFormatter includes extra fields.

        Arrange: Logger with JSONFormatter
        Act: Log message with repository context in extra
        Assert: Extra fields included, None values dropped
        """
        # Arrange
        logger, stream = json_stream

        # Act
        logger.debug(
            "Query executed",
            extra={"entity": "Task", "rows": 3, "latency_ms": 0.5, "operation": None},
        )

        # Assert
        log_data = json.loads(stream.getvalue().strip())
        assert log_data["entity"] == "Task"
        assert log_data["rows"] == 3
        assert log_data["latency_ms"] == 0.5
        assert "operation" not in log_data

    def test_json_formatter_with_exception(self, json_stream):
        """
        Test JSONFormatter includes exception info.

        Arrange: Logger with JSONFormatter
        Act: Log inside an exception handler with exc_info
        Assert: Exception traceback included in JSON
        """
        logger, stream = json_stream

        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("Save failed", exc_info=True)

        log_data = json.loads(stream.getvalue().strip())
        assert "ValueError: boom" in log_data["exception"]

    def test_non_serializable_extra_uses_str(self, json_stream):
        logger, stream = json_stream

        logger.info("Object logged", extra={"entity_type": object})

        log_data = json.loads(stream.getvalue().strip())
        assert "object" in log_data["entity_type"]


class TestLogWithContext:
    """Tests for log_with_context helper."""

    def test_includes_only_provided_fields(self, json_stream):
        """
        Arrange: Logger with JSONFormatter
        Act: Log with entity, rows and a custom field
        Assert: Provided fields present, omitted ones absent
        """
        logger, stream = json_stream

        log_with_context(logger, "info", "Deleted rows", entity="Task", rows=2, config_name="default", batch=1)

        log_data = json.loads(stream.getvalue().strip())
        assert log_data["level"] == "INFO"
        assert log_data["entity"] == "Task"
        assert log_data["rows"] == 2
        assert log_data["config_name"] == "default"
        assert log_data["batch"] == 1
        assert "latency_ms" not in log_data
        assert "operation" not in log_data

    def test_level_is_case_insensitive(self, json_stream):
        logger, stream = json_stream

        log_with_context(logger, "WARNING", "Ignoring sort field", operation="find all")

        assert json.loads(stream.getvalue().strip())["level"] == "WARNING"


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_setup_logging_installs_single_handler(self, restore_root_logger):
        """
        Arrange: Root logger with an extra handler
        Act: Call setup_logging twice
        Assert: Exactly one handler using JSONFormatter at the given level
        """
        root = restore_root_logger
        root.addHandler(logging.NullHandler())

        setup_logging(level="DEBUG")
        setup_logging(level="DEBUG")

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert root.level == logging.DEBUG

    def test_setup_logging_plain_format(self, restore_root_logger):
        setup_logging(level="WARNING", json_format=False)

        formatter = restore_root_logger.handlers[0].formatter
        assert not isinstance(formatter, JSONFormatter)
        assert restore_root_logger.level == logging.WARNING

    def test_setup_logging_quiets_sqlalchemy(self, restore_root_logger):
        setup_logging(level="DEBUG")

        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_get_logger_returns_named_logger(self):
        assert get_logger("repokit.repositories").name == "repokit.repositories"
