"""Tests for the structured logging system (ledger_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import PeriodClosedError
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture
def fresh_logging():
    """Unconfigured logging for one test; the suite configuration is restored after."""
    reset_logging()
    yield
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _stream_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _records(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().strip().split("\n") if line]


class TestStructuredFormatter:

    def test_one_json_object_per_line(self, fresh_logging):
        handler, stream = _stream_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"entry_number": 7})
        logger.debug("hidden at info level")

        records = _records(stream)
        assert [r["message"] for r in records] == ["first", "second"]
        assert records[1]["entry_number"] == 7
        assert records[0]["logger"] == "ledger_kernel.test"
        assert {"ts", "level", "logger", "message"} <= set(records[0])

    def test_context_fields(self, fresh_logging):
        handler, stream = _stream_handler()
        configure_logging(handler=handler)
        with LogContext.bind(correlation_id="req-1", operation="post"):
            get_logger("test").info("inside")
        get_logger("test").info("outside")

        inside, outside = _records(stream)
        assert inside["correlation_id"] == "req-1"
        assert inside["operation"] == "post"
        assert "correlation_id" not in outside

    def test_ledger_error_fields_extracted(self, fresh_logging):
        handler, stream = _stream_handler()
        configure_logging(handler=handler)
        try:
            raise PeriodClosedError("2025-02", "2025-02-14")
        except PeriodClosedError:
            get_logger("test").error("post_failed", exc_info=True)

        record = _records(stream)[0]
        assert record["exc_code"] == "PERIOD_CLOSED"
        assert record["exc_period_code"] == "2025-02"
        assert record["exc_effective_date"] == "2025-02-14"
        assert "traceback" in record

    def test_uuid_and_decimal_serialized(self, fresh_logging):
        handler, stream = _stream_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("typed", extra={"entry_id": uid, "amount": Decimal("1.50")})

        record = _records(stream)[0]
        assert record["entry_id"] == str(uid)
        assert record["amount"] == "1.50"

    def test_configure_is_idempotent(self, fresh_logging):
        configure_logging(handler=_stream_handler()[0])
        configure_logging(handler=_stream_handler()[0])
        # pytest attaches its own capture handlers alongside ours
        structured = [
            h for h in logging.getLogger("ledger_kernel").handlers
            if isinstance(h.formatter, StructuredFormatter)
        ]
        assert len(structured) == 1


class TestLogContext:

    def test_bind_restores_previous_value(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner", period_id="p-1"):
            assert LogContext.get_all() == {"actor_id": "inner", "period_id": "p-1"}
        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_bind_restores_after_exception(self):
        with pytest.raises(PeriodClosedError):
            with LogContext.bind(operation="close"):
                raise PeriodClosedError("2025-01", "2025-01-15")
        assert LogContext.get_all() == {}

    def test_unknown_fields_ignored_by_bind(self):
        with LogContext.bind(tenant="acme"):
            assert LogContext.get_all() == {}


class TestLedgerEvents:

    def test_posting_lifecycle_events(self, engine, make_draft, captured_logs):
        draft = make_draft("700.00", tax_items=[("L1", "parts", "700.00")])
        engine.post(draft)

        records = captured_logs()
        messages = [r["message"] for r in records]
        assert messages.index("posting_started") < messages.index("posting_completed")
        completed = next(r for r in records if r["message"] == "posting_completed")
        assert completed["entry_id"] == str(draft.entry_id)
        assert completed["operation"] == "post"
        assert completed["tax_line_count"] == 4
        assert "duration_ms" in completed

    def test_rejection_logged_with_error_code(
        self, engine, make_draft, period_manager, controller, captured_logs
    ):
        period_manager.close_period("2025-02", controller)
        with pytest.raises(PeriodClosedError):
            engine.post(make_draft("10.00", transaction_date=date(2025, 2, 14)))

        rejected = next(r for r in captured_logs() if r["message"] == "posting_rejected")
        assert rejected["error_code"] == "PERIOD_CLOSED"
        assert rejected["level"] == "WARNING"

