"""Tests for the structured logging system (valuation_kernel/logging_config.py)."""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from valuation_kernel.domain.inventory import AgeGroup
from valuation_kernel.exceptions import ExchangeRateNotFoundError
from valuation_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state around each test, then restore the suite setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        [record] = _parse_all_logs(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "valuation_kernel.test"
        assert "ts" in record

    def test_extra_values_serialized(self):
        """Decimals, dates, UUIDs and enums are rendered as JSON strings."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        run = uuid4()

        get_logger("test").info("layer", extra={
            "rate": Decimal("10.4512"),
            "on": date(2024, 1, 2),
            "at": datetime(2024, 1, 2, 10, tzinfo=timezone.utc),
            "run": run,
            "group": AgeGroup.OLD,
            "quantity": 3,
        })

        [record] = _parse_all_logs(stream)
        assert record["rate"] == "10.4512"
        assert record["on"] == "2024-01-02"
        assert record["at"] == "2024-01-02T10:00:00+00:00"
        assert record["run"] == str(run)
        assert record["group"] == "old"
        assert record["quantity"] == 3

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(company_id="acme", run_id="r1")

        get_logger("test").info("with_context")

        [record] = _parse_all_logs(stream)
        assert record["company_id"] == "acme"
        assert record["run_id"] == "r1"

    def test_exception_fields(self):
        """Typed exceptions contribute their code and attributes."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        try:
            raise ExchangeRateNotFoundError("USD", "SEK", "2024-01-01")
        except ExchangeRateNotFoundError:
            get_logger("test").exception("rate_missing")

        [record] = _parse_all_logs(stream)
        assert record["level"] == "ERROR"
        assert record["exc_type"] == "ExchangeRateNotFoundError"
        assert record["exc_code"] == "EXCHANGE_RATE_NOT_FOUND"
        assert "traceback" in record


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Run-scoped context fields."""

    def test_bind_restores_previous_values(self):
        LogContext.set(company_id="outer")

        with LogContext.bind(company_id="inner", sku_key="1-2"):
            assert LogContext.get_all() == {"company_id": "inner", "sku_key": "1-2"}

        assert LogContext.get_all() == {"company_id": "outer"}

    def test_none_values_ignored(self):
        with LogContext.bind(run_id=None):
            assert LogContext.get_all() == {}

    def test_clear(self):
        LogContext.set(run_id="r1", company_id="acme")
        LogContext.clear()

        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="warehouse"):
            LogContext.set(warehouse="north")

        with pytest.raises(TypeError):
            with LogContext.bind(warehouse="north"):
                pass

        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Initialization behaviour."""

    def test_idempotent(self):
        """A second configure call adds no handler."""
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=logging.StreamHandler(StringIO()))

        assert logging.getLogger("valuation_kernel").handlers == [handler]

    def test_level_applied(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)

        get_logger("test").info("quiet")
        get_logger("test").warning("loud")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["loud"]

    def test_not_propagated_to_root(self):
        configure_logging(handler=_make_handler()[0])

        assert logging.getLogger("valuation_kernel").propagate is False
