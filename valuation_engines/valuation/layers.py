"""
valuation_engines.valuation.layers -- FIFO layer builder for one SKU.

Responsibility:
    Reconcile the quantity received (per the chosen ledger) against the
    quantity on hand, walk the receipts oldest-first consuming the sold
    quantity, and price every surviving slice at its own historical landed
    unit cost converted to the base currency.

Architecture position:
    Engines -- pure calculation layer.  The only collaborator is the rate
    lookup passed in by the caller; the engine never reads the clock.

Invariants enforced:
    - Source priority: when any delivery exists for the SKU, stock changes
      are ignored entirely.
    - Layers are ordered by (timestamp, entry_id) and never reordered.
    - sum(layer.remaining_quantity) + unknown_quantity == on-hand.
    - sum(consumption.original_quantity) == total_received.
    - unit_cost_base and layer_value are rounded to currency precision;
      nothing else is rounded here.

Failure modes:
    - ValueError for negative location quantities (the service clamps them
      and reports a data-quality issue before calling in).
    - LayerInvariantError if the quantity invariant does not hold.
    - ExchangeRateNotFoundError propagates from the rate lookup when the
      resolver runs under the ``error`` fallback policy.

Audit relevance:
    ``consumptions`` records every walked entry, consumed or not, so the
    sold quantity can be traced back to the receipts it was drawn from.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol

from valuation_engines.aging import calculate_age_days
from valuation_engines.tracer import traced_engine
from valuation_kernel.domain.inventory import (
    InventoryLayer,
    LayerConsumption,
    LedgerEntry,
    SkuKey,
    SourceKind,
    ValuationSource,
)
from valuation_kernel.domain.values import Money, RateQuote, sum_money
from valuation_kernel.exceptions import LayerInvariantError
from valuation_kernel.logging_config import get_logger

logger = get_logger("engines.valuation.layers")

_ONE = Decimal("1")


class RateLookup(Protocol):
    """What the layer builder needs from the exchange-rate resolver."""

    def quote(self, currency: str, on_date: date) -> RateQuote: ...


@dataclass(frozen=True)
class LayerBuildResult:
    """
    Outcome of valuing one SKU.

    Contract:
        ``layers`` hold only slices with remaining quantity; untraceable
        stock is reported as ``unknown_quantity`` and never priced.
    """

    sku_key: SkuKey
    base_currency: str
    warehouse_quantity: int
    store_quantity: int
    total_received: int
    sold_quantity: int
    unknown_quantity: int
    chosen_source: SourceKind | None
    primary_source: ValuationSource
    layers: tuple[InventoryLayer, ...] = ()
    consumptions: tuple[LayerConsumption, ...] = ()
    quantity_by_source: Mapping[ValuationSource, int] = field(default_factory=dict)

    @property
    def total_on_hand(self) -> int:
        return self.warehouse_quantity + self.store_quantity

    @property
    def costed_quantity(self) -> int:
        return sum(layer.remaining_quantity for layer in self.layers)

    @property
    def total_value(self) -> Money:
        return sum_money((layer.layer_value for layer in self.layers), self.base_currency).round()

    @property
    def age_quantity_days(self) -> int:
        """Sum of age x remaining quantity over all layers (exact)."""
        return sum(layer.age_in_days * layer.remaining_quantity for layer in self.layers)

    @property
    def max_age_in_days(self) -> int:
        return max((layer.age_in_days for layer in self.layers), default=0)

    @property
    def fallback_layer_count(self) -> int:
        return sum(1 for layer in self.layers if layer.rate_is_fallback)

    @property
    def currencies(self) -> frozenset[str]:
        return frozenset(layer.unit_cost_original.currency.code for layer in self.layers)


def primary_source_of(quantity_by_source: Mapping[ValuationSource, int]) -> ValuationSource:
    """Source covering the most surviving quantity; ties go to delivery."""
    delivery = quantity_by_source.get(ValuationSource.DELIVERY, 0)
    stock_change = quantity_by_source.get(ValuationSource.STOCK_CHANGE, 0)
    if delivery == 0 and stock_change == 0:
        return ValuationSource.UNKNOWN
    if delivery >= stock_change:
        return ValuationSource.DELIVERY
    return ValuationSource.STOCK_CHANGE


def _price_in_base(
    entry: LedgerEntry,
    rates: RateLookup,
    base_currency: str,
) -> tuple[Money, Decimal, bool]:
    if entry.unit_cost.currency.code == base_currency:
        return entry.unit_cost.round(), _ONE, False
    quote = rates.quote(entry.unit_cost.currency.code, entry.timestamp.date())
    unit_cost_base = entry.unit_cost.convert(quote.rate, base_currency).round()
    return unit_cost_base, quote.rate, quote.is_fallback


@traced_engine(
    "fifo_layers",
    "1.0",
    fingerprint_fields=(
        "sku_key",
        "warehouse_quantity",
        "store_quantity",
        "deliveries",
        "stock_changes",
        "as_of",
        "base_currency",
    ),
)
def build_layers(
    *,
    sku_key: SkuKey,
    warehouse_quantity: int,
    store_quantity: int,
    deliveries: Sequence[LedgerEntry],
    stock_changes: Sequence[LedgerEntry],
    rates: RateLookup,
    as_of: datetime,
    base_currency: str,
) -> LayerBuildResult:
    """
    Build the FIFO layers for one SKU.

    Args:
        sku_key: The SKU being valued (for tracing and the result).
        warehouse_quantity: On-hand in the warehouse, >= 0.
        store_quantity: On-hand in the secondary sales channel, >= 0.
        deliveries: Delivery receipts for this SKU, any order.
        stock_changes: Stock-change receipts for this SKU, any order.
        rates: Historical rate lookup for non-base currencies.
        as_of: Valuation instant; layer ages are measured against it.
        base_currency: ISO code all layer values are expressed in.

    Returns:
        LayerBuildResult with layers oldest-first.
    """
    if warehouse_quantity < 0 or store_quantity < 0:
        raise ValueError(
            f"Location quantities must be non-negative for {sku_key}: "
            f"warehouse={warehouse_quantity}, store={store_quantity}"
        )

    if deliveries:
        chosen_source: SourceKind | None = SourceKind.DELIVERY
        chosen = deliveries
    elif stock_changes:
        chosen_source = SourceKind.STOCK_CHANGE
        chosen = stock_changes
    else:
        chosen_source = None
        chosen = ()

    ordered = sorted(chosen, key=lambda e: e.order_key)
    total_on_hand = warehouse_quantity + store_quantity
    total_received = sum(e.quantity for e in ordered)
    sold_quantity = max(0, total_received - total_on_hand)

    remaining_to_consume = sold_quantity
    layers: list[InventoryLayer] = []
    consumptions: list[LayerConsumption] = []

    for entry in ordered:
        consumed = min(remaining_to_consume, entry.quantity)
        remaining_to_consume -= consumed
        remaining = entry.quantity - consumed
        consumptions.append(LayerConsumption(
            entry_id=entry.entry_id,
            original_quantity=entry.quantity,
            consumed_quantity=consumed,
            remaining_quantity=remaining,
        ))
        if remaining <= 0:
            continue

        unit_cost_base, rate, is_fallback = _price_in_base(entry, rates, base_currency)
        layers.append(InventoryLayer(
            entry_id=entry.entry_id,
            source=entry.source_kind,
            timestamp=entry.timestamp,
            original_quantity=entry.quantity,
            remaining_quantity=remaining,
            unit_cost_original=entry.unit_cost,
            unit_cost_base=unit_cost_base,
            exchange_rate=rate,
            rate_is_fallback=is_fallback,
            age_in_days=calculate_age_days(entry.timestamp, as_of),
            supplier=entry.supplier,
            purchase_order_id=entry.purchase_order_id,
            delivery_id=entry.delivery_id,
            stock_change_id=entry.stock_change_id,
        ))

    layered = sum(layer.remaining_quantity for layer in layers)
    unknown_quantity = max(0, total_on_hand - layered)

    if layered + unknown_quantity != total_on_hand:
        logger.error("layer_invariant_violated", extra={
            "sku_key": str(sku_key),
            "on_hand": total_on_hand,
            "layered": layered,
            "unknown": unknown_quantity,
        })
        raise LayerInvariantError(str(sku_key), total_on_hand, layered, unknown_quantity)

    quantity_by_source = {
        ValuationSource.DELIVERY: 0,
        ValuationSource.STOCK_CHANGE: 0,
        ValuationSource.UNKNOWN: unknown_quantity,
    }
    if chosen_source is not None:
        quantity_by_source[ValuationSource.from_source_kind(chosen_source)] = layered

    if unknown_quantity:
        logger.debug("sku_unknown_quantity", extra={
            "sku_key": str(sku_key),
            "unknown_quantity": unknown_quantity,
            "total_received": total_received,
            "on_hand": total_on_hand,
        })

    return LayerBuildResult(
        sku_key=sku_key,
        base_currency=base_currency,
        warehouse_quantity=warehouse_quantity,
        store_quantity=store_quantity,
        total_received=total_received,
        sold_quantity=sold_quantity,
        unknown_quantity=unknown_quantity,
        chosen_source=chosen_source,
        primary_source=primary_source_of(quantity_by_source),
        layers=tuple(layers),
        consumptions=tuple(consumptions),
        quantity_by_source=quantity_by_source,
    )
