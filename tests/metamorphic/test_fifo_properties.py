"""
Property-based tests of the FIFO layer builder.

Properties checked over generated receipt histories:
- Quantity conservation: layered + unknown == on hand
- Only the oldest surviving layer can be partially consumed
- Receipt order in the input does not matter
- Scaling every unit cost scales the value exactly
- More stock on hand never means less value
"""

import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from valuation_engines.valuation.layers import build_layers
from valuation_kernel.domain.inventory import SkuKey

from tests.fakes import StaticRates, make_delivery

AS_OF = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
SKU = SkuKey(1, "2")

FIFO_SETTINGS = settings(
    max_examples=150,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)


@composite
def receipt_histories(draw):
    """A list of deliveries for one SKU with distinct ids and any order."""
    count = draw(st.integers(min_value=0, max_value=12))
    receipts = []
    for n in range(count):
        quantity = draw(st.integers(min_value=1, max_value=40))
        cents = draw(st.integers(min_value=1, max_value=500_000))
        days_back = draw(st.integers(min_value=0, max_value=900))
        receipts.append(make_delivery(
            quantity,
            Decimal(cents) / 100,
            on=AS_OF - timedelta(days=days_back, hours=2),
            entry_id=f"e{n:03d}",
        ))
    return receipts


def build(receipts, on_hand, store=0):
    return build_layers(
        sku_key=SKU,
        warehouse_quantity=on_hand,
        store_quantity=store,
        deliveries=receipts,
        stock_changes=[],
        rates=StaticRates(),
        as_of=AS_OF,
        base_currency="SEK",
    )


class TestFifoProperties:
    """Invariants that hold for every receipt history."""

    @FIFO_SETTINGS
    @given(receipts=receipt_histories(), on_hand=st.integers(min_value=0, max_value=400))
    def test_quantity_conserved(self, receipts, on_hand):
        """Every unit on hand is either layered or unknown, never both."""
        result = build(receipts, on_hand)

        layered = sum(layer.remaining_quantity for layer in result.layers)
        assert layered + result.unknown_quantity == on_hand
        assert layered == min(on_hand, sum(r.quantity for r in receipts))
        assert sum(c.original_quantity for c in result.consumptions) == result.total_received

    @FIFO_SETTINGS
    @given(receipts=receipt_histories(), on_hand=st.integers(min_value=0, max_value=400))
    def test_only_oldest_layer_partial(self, receipts, on_hand):
        """Surviving layers are the newest receipts; only the first is cut."""
        result = build(receipts, on_hand)
        ordered = sorted(receipts, key=lambda e: e.order_key)

        survivors = [layer.entry_id for layer in result.layers]
        assert survivors == [e.entry_id for e in ordered[len(ordered) - len(survivors):]]
        for layer in result.layers[1:]:
            assert layer.remaining_quantity == layer.original_quantity
        assert all(a.timestamp <= b.timestamp for a, b in zip(result.layers, result.layers[1:]))

    @FIFO_SETTINGS
    @given(
        receipts=receipt_histories(),
        on_hand=st.integers(min_value=0, max_value=400),
        seed=st.integers(min_value=0, max_value=2**32 - 1),
    )
    def test_input_order_irrelevant(self, receipts, on_hand, seed):
        """Shuffling the ledger gives identical layers."""
        shuffled = list(receipts)
        random.Random(seed).shuffle(shuffled)

        assert build(shuffled, on_hand).layers == build(receipts, on_hand).layers

    @FIFO_SETTINGS
    @given(
        receipts=receipt_histories(),
        on_hand=st.integers(min_value=0, max_value=400),
        factor=st.integers(min_value=2, max_value=9),
    )
    def test_cost_scaling(self, receipts, on_hand, factor):
        """Base-currency costs at 2 dp scale without rounding drift."""
        scaled = [
            make_delivery(
                r.quantity,
                r.unit_cost.amount * factor,
                on=r.timestamp,
                entry_id=r.entry_id,
            )
            for r in receipts
        ]

        assert build(scaled, on_hand).total_value == build(receipts, on_hand).total_value * factor

    @FIFO_SETTINGS
    @given(
        receipts=receipt_histories(),
        on_hand=st.integers(min_value=0, max_value=400),
        extra=st.integers(min_value=1, max_value=50),
    )
    def test_value_monotonic_in_stock(self, receipts, on_hand, extra):
        """Holding more units never lowers the value."""
        assert build(receipts, on_hand + extra).total_value >= build(receipts, on_hand).total_value

    @FIFO_SETTINGS
    @given(
        receipts=receipt_histories(),
        warehouse=st.integers(min_value=0, max_value=200),
        store=st.integers(min_value=0, max_value=200),
    )
    def test_location_split_irrelevant(self, receipts, warehouse, store):
        """Only total on hand drives consumption, not where units sit."""
        split = build(receipts, warehouse, store)
        together = build(receipts, warehouse + store, 0)

        assert split.layers == together.layers
        assert split.unknown_quantity == together.unknown_quantity
