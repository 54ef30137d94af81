"""
Pytest fixtures for the valuation test suite.

Provides:
- Structured log capture (``captured_logs``)
- Deterministic clock pinned to the valuation instant used by the examples
- In-memory SQLite rate database
- Factories for ledger entries and stock records

No external services are needed: the rate API is replaced by
``tests.fakes.FakeRateProvider`` and the feeds by in-memory providers.
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO

import pytest

from valuation_config import get_active_config
from valuation_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from valuation_kernel.domain.clock import DeterministicClock
from valuation_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

from tests.fakes import make_delivery, make_stock, make_stock_change

VALUATION_INSTANT = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture valuation_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            run_valuation()
            logs = captured_logs()
            assert any(r["message"] == "valuation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("valuation_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Clock and configuration
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Clock pinned to 2025-01-01 12:00 UTC."""
    return DeterministicClock(VALUATION_INSTANT)


@pytest.fixture
def valuation_config():
    """Packaged defaults with a small worker pool."""
    return get_active_config(overrides={"valuation": {"max_workers": 2}})


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def rate_session_factory():
    """Fresh in-memory SQLite database with the rate table."""
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def delivery():
    """Factory for delivery ledger entries (see tests.fakes.make_delivery)."""
    return make_delivery


@pytest.fixture
def stock_change():
    """Factory for stock-change ledger entries."""
    return make_stock_change


@pytest.fixture
def stock():
    """Factory for stock snapshot records."""
    return make_stock
