"""Tests for structured logging configuration."""

import json
import logging
import sys

from basal_loop.logging_config import (
    JsonFormatter,
    TextFormatter,
    correlation_id_ctx,
    correlation_scope,
    get_logger,
    setup_logging,
)


def make_record(level: int = logging.INFO, msg: str = "Test", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test.logger",
        level=level,
        pathname="/app/test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    if extra:
        record.extra_fields = extra
    return record


class TestJsonFormatter:
    """Tests for JSON log formatting."""

    def test_json_format_basic(self):
        formatter = JsonFormatter(service_name="test-service")

        parsed = json.loads(formatter.format(make_record(msg="Pulse dispatched")))

        assert parsed["level"] == "INFO"
        assert parsed["service"] == "test-service"
        assert parsed["message"] == "Pulse dispatched"
        assert parsed["logger"] == "test.logger"
        assert "timestamp" in parsed
        assert "correlation_id" not in parsed

    def test_timestamp_is_record_creation_time(self):
        record = make_record()
        record.created = 0.0

        parsed = json.loads(JsonFormatter().format(record))

        assert parsed["timestamp"].startswith("1970-01-01T00:00:00")

    def test_extra_fields_included(self):
        parsed = json.loads(
            JsonFormatter().format(make_record(units=0.05, accumulator_units=0.01))
        )

        assert parsed["units"] == 0.05
        assert parsed["accumulator_units"] == 0.01

    def test_correlation_id_included(self):
        token = correlation_id_ctx.set("tick-abc123")
        try:
            parsed = json.loads(JsonFormatter().format(make_record()))
        finally:
            correlation_id_ctx.reset(token)

        assert parsed["correlation_id"] == "tick-abc123"

    def test_error_includes_location(self):
        record = make_record(level=logging.ERROR)
        record.funcName = "tick"

        parsed = json.loads(JsonFormatter().format(record))

        assert parsed["location"] == {"file": "/app/test.py", "line": 42, "function": "tick"}

    def test_exception_included(self):
        try:
            raise ValueError("pump unreachable")
        except ValueError:
            exc_info = sys.exc_info()
        record = make_record(level=logging.ERROR)
        record.exc_info = exc_info

        parsed = json.loads(JsonFormatter().format(record))

        assert "ValueError" in parsed["exception"]


class TestTextFormatter:
    """Tests for text log formatting."""

    def test_text_format_with_extra_fields(self):
        output = TextFormatter(service_name="test-service").format(
            make_record(msg="Zero temp basal requested", previous_rate=1.5)
        )

        assert "test-service" in output
        assert "[-]" in output
        assert output.endswith("Zero temp basal requested previous_rate=1.5")

    def test_text_format_with_correlation_id(self):
        token = correlation_id_ctx.set("req-42")
        try:
            output = TextFormatter().format(make_record())
        finally:
            correlation_id_ctx.reset(token)

        assert "[req-42]" in output


class TestCorrelationScope:
    """Tests for per-unit-of-work correlation IDs."""

    def test_scope_binds_and_restores(self):
        assert correlation_id_ctx.get() is None

        with correlation_scope("tick") as correlation_id:
            assert correlation_id.startswith("tick-")
            assert correlation_id_ctx.get() == correlation_id

        assert correlation_id_ctx.get() is None

    def test_scopes_are_unique(self):
        with correlation_scope("tick") as first:
            pass
        with correlation_scope("tick") as second:
            pass
        assert first != second


class TestStructuredLogger:
    """Tests for the StructuredLogger wrapper."""

    def test_logger_info(self, caplog):
        logger = get_logger("test.logger")

        with caplog.at_level(logging.INFO):
            logger.info("SMB-basal manager started", pump_step=0.05)

        assert "SMB-basal manager started" in caplog.text
        assert caplog.records[-1].extra_fields == {"pump_step": 0.05}

    def test_record_attributed_to_caller(self, caplog):
        logger = get_logger("test.logger")

        with caplog.at_level(logging.WARNING):
            logger.warning("Loop suggestion is stale")

        assert caplog.records[-1].funcName == "test_record_attributed_to_caller"

    def test_logger_exception(self, caplog):
        logger = get_logger("test.logger")

        with caplog.at_level(logging.ERROR):
            try:
                raise RuntimeError("boom")
            except RuntimeError:
                logger.exception("Failed to store pump history events")

        assert caplog.records[-1].exc_info is not None


class TestSetupLogging:
    """Tests for logging setup function."""

    def test_setup_json_logging(self):
        setup_logging(log_format="json", log_level="DEBUG")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_setup_text_logging(self):
        setup_logging(log_format="text", log_level="INFO")

        root = logging.getLogger()
        assert isinstance(root.handlers[0].formatter, TextFormatter)

    def test_third_party_loggers_quieted(self):
        setup_logging(log_format="json", log_level="DEBUG")

        assert logging.getLogger("apscheduler").level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
