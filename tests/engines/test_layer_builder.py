"""
Tests for the FIFO layer builder.

Covers:
- Worked examples (two deliveries, foreign stock changes, no ledger)
- Source priority (deliveries shadow stock changes)
- Oldest-first consumption and tie-breaking
- Unknown quantity and the quantity invariant
- Currency conversion and fallback flagging
- Input validation
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from valuation_engines.valuation.layers import build_layers, primary_source_of
from valuation_kernel.domain.inventory import SkuKey, SourceKind, ValuationSource
from valuation_kernel.domain.values import Money

from tests.fakes import StaticRates, make_delivery, make_stock_change

AS_OF = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
SKU = SkuKey(1, "2")


def build(warehouse=0, store=0, deliveries=(), stock_changes=(), rates=None, base="SEK"):
    return build_layers(
        sku_key=SKU,
        warehouse_quantity=warehouse,
        store_quantity=store,
        deliveries=list(deliveries),
        stock_changes=list(stock_changes),
        rates=rates or StaticRates(),
        as_of=AS_OF,
        base_currency=base,
    )


class TestWorkedExamples:
    """The reference scenarios every implementation must reproduce."""

    def test_two_deliveries_partially_sold(self):
        """10 @ 100 and 10 @ 120 with 12 on hand leaves 2 + 10 worth 1,400."""
        result = build(
            warehouse=12,
            deliveries=[
                make_delivery(10, 100, on="2024-01-01"),
                make_delivery(10, 120, on="2024-06-01"),
            ],
        )

        assert result.total_received == 20
        assert result.sold_quantity == 8
        assert [layer.remaining_quantity for layer in result.layers] == [2, 10]
        assert result.total_value == Money.of("1400.00", "SEK")
        assert result.unknown_quantity == 0
        assert result.primary_source is ValuationSource.DELIVERY

    def test_foreign_stock_change_converted_at_historical_rate(self):
        """5 @ 50 USD at rate 9.0 is worth 2,250 SEK from stock changes."""
        rates = StaticRates({"USD": "9.0"})
        result = build(
            warehouse=5,
            stock_changes=[make_stock_change(5, 50, on="2024-03-01", currency="USD")],
            rates=rates,
        )

        assert result.total_value == Money.of("2250.00", "SEK")
        assert result.primary_source is ValuationSource.STOCK_CHANGE
        assert result.chosen_source is SourceKind.STOCK_CHANGE
        assert rates.calls == [("USD", date(2024, 3, 1))]

    def test_no_ledger_entries_all_unknown(self):
        """On-hand with no receipts is unknown, unpriced, with no layers."""
        result = build(warehouse=3)

        assert result.unknown_quantity == 3
        assert result.layers == ()
        assert result.total_value == Money.zero("SEK")
        assert result.primary_source is ValuationSource.UNKNOWN
        assert result.quantity_by_source[ValuationSource.UNKNOWN] == 3


class TestSourcePriority:
    """Deliveries are authoritative whenever any exist."""

    def test_stock_changes_ignored_when_deliveries_exist(self):
        """A single delivery shadows every stock change for the SKU."""
        result = build(
            warehouse=8,
            deliveries=[make_delivery(3, 100, on="2024-05-01")],
            stock_changes=[make_stock_change(10, 10, on="2023-01-01")],
        )

        assert result.chosen_source is SourceKind.DELIVERY
        assert result.total_received == 3
        assert [layer.source for layer in result.layers] == [SourceKind.DELIVERY]
        assert result.unknown_quantity == 5
        assert {c.entry_id for c in result.consumptions} == {result.layers[0].entry_id}

    def test_stock_changes_used_without_deliveries(self):
        """Stock changes are the cost source only when no delivery exists."""
        result = build(warehouse=4, stock_changes=[make_stock_change(4, 75)])

        assert result.chosen_source is SourceKind.STOCK_CHANGE
        assert result.quantity_by_source[ValuationSource.STOCK_CHANGE] == 4
        assert result.quantity_by_source[ValuationSource.DELIVERY] == 0


class TestConsumptionOrder:
    """Sold quantity is drawn from the oldest receipts first."""

    def test_unsorted_input_is_walked_oldest_first(self):
        """Entries arrive in any order; layers come out chronological."""
        newest = make_delivery(5, 300, on="2024-09-01")
        oldest = make_delivery(5, 100, on="2024-01-01")
        middle = make_delivery(5, 200, on="2024-05-01")

        result = build(warehouse=7, deliveries=[newest, oldest, middle])

        assert [c.entry_id for c in result.consumptions] == [
            oldest.entry_id, middle.entry_id, newest.entry_id,
        ]
        assert [c.consumed_quantity for c in result.consumptions] == [5, 3, 0]
        assert [layer.entry_id for layer in result.layers] == [middle.entry_id, newest.entry_id]
        assert [layer.remaining_quantity for layer in result.layers] == [2, 5]

    def test_same_timestamp_ordered_by_entry_id(self):
        """Entry id breaks ties between receipts at the same instant."""
        b = make_delivery(2, 200, on="2024-02-01", entry_id="b")
        a = make_delivery(2, 100, on="2024-02-01", entry_id="a")

        result = build(warehouse=2, deliveries=[b, a])

        assert [layer.entry_id for layer in result.layers] == ["b"]
        assert result.consumptions[0].entry_id == "a"

    def test_fully_consumed_entries_produce_no_layer(self):
        """A receipt sold out completely only shows up in consumptions."""
        result = build(
            warehouse=1,
            deliveries=[make_delivery(4, 10, on="2024-01-01"), make_delivery(1, 20, on="2024-02-01")],
        )

        assert len(result.layers) == 1
        assert result.consumptions[0].remaining_quantity == 0
        assert sum(c.original_quantity for c in result.consumptions) == result.total_received

    def test_on_hand_above_received_keeps_every_receipt(self):
        """Nothing is consumed when more is on hand than was ever received."""
        result = build(warehouse=6, store=4, deliveries=[make_delivery(7, 10)])

        assert result.sold_quantity == 0
        assert result.layers[0].remaining_quantity == 7
        assert result.unknown_quantity == 3
        assert result.total_on_hand == 10


class TestLayerPricing:
    """Unit cost conversion, rounding and ages."""

    def test_base_currency_never_consults_rates(self):
        """SEK receipts are priced at rate 1 without a lookup."""
        rates = StaticRates()
        result = build(warehouse=1, deliveries=[make_delivery(1, "99.995")], rates=rates)

        assert rates.calls == []
        assert result.layers[0].exchange_rate == Decimal("1")
        assert result.layers[0].unit_cost_base == Money.of("100.00", "SEK")

    def test_unit_cost_rounded_before_multiplying(self):
        """layer_value is remaining x the already rounded base unit cost."""
        rates = StaticRates({"EUR": "11.4567"})
        result = build(warehouse=3, deliveries=[make_delivery(3, "10.01", currency="EUR")], rates=rates)

        layer = result.layers[0]
        assert layer.unit_cost_base == Money.of("114.68", "SEK")
        assert layer.layer_value == Money.of("344.04", "SEK")
        assert layer.unit_cost_original == Money.of("10.01", "EUR")

    def test_rate_looked_up_on_entry_date(self):
        """Each receipt is converted at the rate of its own timestamp date."""
        rates = StaticRates({"USD": "10"})
        build(
            warehouse=2,
            deliveries=[
                make_delivery(1, 5, on="2024-01-15", currency="USD"),
                make_delivery(1, 5, on="2024-02-20", currency="USD"),
            ],
            rates=rates,
        )

        assert rates.calls == [("USD", date(2024, 1, 15)), ("USD", date(2024, 2, 20))]

    def test_fallback_rate_flagged_on_layer(self):
        """A fallback quote marks the layer and is counted on the result."""
        rates = StaticRates(fallback={"CAD"})
        result = build(warehouse=2, deliveries=[make_delivery(2, 40, currency="CAD")], rates=rates)

        assert result.layers[0].rate_is_fallback is True
        assert result.layers[0].unit_cost_base == Money.of("40.00", "SEK")
        assert result.fallback_layer_count == 1
        assert result.currencies == frozenset({"CAD"})

    def test_age_measured_from_entry_timestamp(self):
        """Age is whole days between the receipt and the valuation instant."""
        result = build(
            warehouse=2,
            deliveries=[make_delivery(1, 10, on="2024-01-01"), make_delivery(1, 10, on="2024-06-01")],
        )

        assert [layer.age_in_days for layer in result.layers] == [366, 214]
        assert result.max_age_in_days == 366
        assert result.age_quantity_days == 580

    def test_future_receipt_has_age_zero(self):
        """A receipt stamped after the valuation instant is zero days old."""
        result = build(warehouse=1, deliveries=[make_delivery(1, 10, on="2025-03-01")])

        assert result.layers[0].age_in_days == 0


class TestInvariants:
    """Quantity bookkeeping and input validation."""

    @pytest.mark.parametrize("warehouse, store", [(0, 5), (5, 0), (3, 9), (20, 0)])
    def test_remaining_plus_unknown_equals_on_hand(self, warehouse, store):
        """sum(remaining) + unknown == warehouse + store."""
        result = build(
            warehouse=warehouse,
            store=store,
            deliveries=[make_delivery(4, 10, on="2024-01-01"), make_delivery(6, 12, on="2024-04-01")],
        )

        layered = sum(layer.remaining_quantity for layer in result.layers)
        assert layered + result.unknown_quantity == warehouse + store
        assert result.costed_quantity == layered

    def test_negative_quantity_rejected(self):
        """Negative location quantities never reach the builder."""
        with pytest.raises(ValueError, match="non-negative"):
            build(warehouse=-1)

    def test_zero_on_hand_consumes_everything(self):
        """With nothing on hand every receipt counts as sold."""
        result = build(deliveries=[make_delivery(3, 10)])

        assert result.layers == ()
        assert result.sold_quantity == 3
        assert result.unknown_quantity == 0


class TestPrimarySource:
    """Choosing the dominant cost basis."""

    def test_tie_goes_to_delivery(self):
        """Equal delivery and stock-change quantities favour delivery."""
        assert primary_source_of({
            ValuationSource.DELIVERY: 3,
            ValuationSource.STOCK_CHANGE: 3,
            ValuationSource.UNKNOWN: 9,
        }) is ValuationSource.DELIVERY

    def test_stock_change_wins_when_larger(self):
        """The larger surviving quantity decides."""
        assert primary_source_of({
            ValuationSource.DELIVERY: 1,
            ValuationSource.STOCK_CHANGE: 2,
        }) is ValuationSource.STOCK_CHANGE

    def test_unknown_only_when_nothing_costed(self):
        """Unknown is primary only if neither ledger covers anything."""
        assert primary_source_of({ValuationSource.UNKNOWN: 4}) is ValuationSource.UNKNOWN
