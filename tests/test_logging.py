"""Tests for the structured logging system (inventory_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from inventory_kernel.exceptions import InsufficientInventoryError
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "inventory_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("transaction_persisted", extra={"sequence": 7, "cartons_in": 40})

        record = _parse_log(stream)
        assert record["sequence"] == 7
        assert record["cartons_in"] == 40

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", report_id="rep-1")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["report_id"] == "rep-1"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_inventory_exception_code_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InsufficientInventoryError(3, 5, sku_code="SKU-001", batch_lot="LOT-A")
        except InsufficientInventoryError:
            get_logger("test").error("ship_rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INSUFFICIENT_INVENTORY"
        assert record["exc_type"] == "InsufficientInventoryError"
        assert record["exc_available"] == 3
        assert record["exc_requested"] == 5
        assert record["exc_sku_code"] == "SKU-001"

    def test_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_uuid", extra={"report_id": uid})

        assert _parse_log(stream)["report_id"] == str(uid)

    def test_debug_is_filtered_at_default_level(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]

    def test_configure_is_idempotent(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        other, other_stream = _make_handler()
        configure_logging(handler=other)
        get_logger("test").info("once")

        assert len(_parse_all_logs(stream)) == 1
        assert other_stream.getvalue() == ""


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", report_id="r")
        assert LogContext.get_all() == {"correlation_id": "x", "report_id": "r"}

    def test_clear(self):
        LogContext.set(actor_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_value(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner"):
            assert LogContext.get_all()["correlation_id"] == "inner"
        assert LogContext.get_all()["correlation_id"] == "outer"

    def test_bind_restores_none(self):
        with LogContext.bind(report_id="temp"):
            assert LogContext.get_all()["report_id"] == "temp"
        assert "report_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(colour="blue", warehouse_id="wh-1", actor_id="a"):
            assert LogContext.get_all() == {"actor_id": "a"}
