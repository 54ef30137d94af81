"""
Tests for the inventory value objects and the clock.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from valuation_kernel.domain.clock import DeterministicClock, SystemClock
from valuation_kernel.domain.inventory import (
    InventoryLayer,
    LandedCost,
    SkuKey,
    SourceKind,
    ValuationSource,
)
from valuation_kernel.domain.values import Money

from tests.fakes import make_delivery


class TestSkuKey:
    """The canonical join key."""

    @pytest.mark.parametrize("key,text", [
        (SkuKey(12, "3"), "12-3"),
        (SkuKey(12, None), "12-null"),
        (SkuKey(12, ""), "12-null"),
    ])
    def test_rendering(self, key, text):
        """Missing size numbers render as ``null``."""
        assert str(key) == text

    def test_parse_round_trip(self):
        """Rendered keys parse back."""
        assert SkuKey.parse("12-3") == SkuKey(12, "3")
        assert SkuKey.parse("12-null") == SkuKey(12, None)

    @pytest.mark.parametrize("text", ["", "abc", "-3", "12"])
    def test_parse_malformed(self, text):
        """Malformed keys are rejected."""
        with pytest.raises(ValueError):
            SkuKey.parse(text)

    def test_hashable(self):
        """Keys are usable as dict keys."""
        assert {SkuKey(1, "2"): "x"}[SkuKey(1, "2")] == "x"


class TestLedgerEntry:
    """Receipt invariants."""

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_quantity_must_be_positive(self, quantity):
        """Receipts always add stock."""
        with pytest.raises(ValueError):
            make_delivery(quantity, 10)

    def test_timestamp_must_be_aware(self):
        """Naive timestamps are rejected."""
        with pytest.raises(ValueError):
            make_delivery(1, 10, on=datetime(2024, 1, 1, 10, 0))

    def test_order_key_breaks_ties_by_id(self):
        """Same-instant receipts order by entry id."""
        a = make_delivery(1, 10, entry_id="b")
        b = make_delivery(1, 10, entry_id="a")

        assert sorted([a, b], key=lambda e: e.order_key) == [b, a]

    def test_landed_cost_total(self):
        """The landed cost is product + customs + shipping."""
        landed = LandedCost(
            product=Money.of("100", "EUR"),
            customs=Money.of("5", "EUR"),
            shipping=Money.of("15", "EUR"),
        )

        assert landed.total == Money.of("120", "EUR")


class TestInventoryLayer:
    """Layer invariants and value."""

    def layer(self, remaining, original=5):
        return InventoryLayer(
            entry_id="d1",
            source=SourceKind.DELIVERY,
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
            original_quantity=original,
            remaining_quantity=remaining,
            unit_cost_original=Money.of("10.01", "EUR"),
            unit_cost_base=Money.of("114.68", "SEK"),
            exchange_rate=Decimal("11.4567"),
            rate_is_fallback=False,
            age_in_days=366,
        )

    def test_layer_value(self):
        """Value is the rounded base unit cost times remaining quantity."""
        assert self.layer(3).layer_value == Money.of("344.04", "SEK")

    @pytest.mark.parametrize("remaining", [0, 6, -1])
    def test_remaining_bounds(self, remaining):
        """Remaining quantity lies in (0, original]."""
        with pytest.raises(ValueError):
            self.layer(remaining)

    def test_source_mapping(self):
        """Receipt kinds map onto valuation sources by value."""
        assert ValuationSource.from_source_kind(SourceKind.DELIVERY) == ValuationSource.DELIVERY
        assert ValuationSource.from_source_kind(SourceKind.STOCK_CHANGE) == ValuationSource.STOCK_CHANGE


class TestClock:
    """Injected time."""

    def test_deterministic_clock(self):
        """The fixed clock only moves when told to."""
        start = datetime(2025, 1, 1, 23, 30, tzinfo=timezone.utc)
        clock = DeterministicClock(start)

        assert clock.now() == clock.now() == start
        clock.advance_days(1)
        assert clock.now() == start + timedelta(days=1)
        assert clock.today().isoformat() == "2025-01-02"

    def test_today_is_utc(self):
        """today() is the UTC date even for offset-aware instants."""
        plus_two = timezone(timedelta(hours=2))
        clock = DeterministicClock(datetime(2025, 1, 2, 1, 0, tzinfo=plus_two))

        assert clock.today().isoformat() == "2025-01-01"

    def test_system_clock_is_aware(self):
        """The production clock returns UTC-aware instants."""
        assert SystemClock().now().tzinfo is not None
