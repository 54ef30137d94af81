"""
valuation_engines.valuation.aggregation -- Size / variant / product / portfolio roll-ups.

Responsibility:
    Turn per-SKU layer results into the nested valuation tree and the
    portfolio summary.  Every level above a size is built by combining
    its children's ``ValuationTotals``; no level recomputes anything from
    layers on its own.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Round-trip: a parent's value, quantity, age-quantity sum, bucket and
      location totals equal the sums over its children.
    - Weighted average age uses costed quantity only and is carried as an
      exact integer day-quantity sum; rounding happens only for display.
    - Location, source and age-group enums are handled exhaustively.

Failure modes:
    - ValueError when children of one parent are in different currencies.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import assert_never

from valuation_config.schema import AgeThresholds
from valuation_engines.aging import DEFAULT_THRESHOLDS, classify_age
from valuation_engines.tracer import traced_engine
from valuation_engines.valuation.layers import LayerBuildResult
from valuation_kernel.domain.inventory import (
    AgeGroup,
    InventoryLayer,
    Location,
    ProductDescriptor,
    SkuKey,
    SourceKind,
    ValuationSource,
)
from valuation_kernel.domain.values import Money, sum_money
from valuation_kernel.logging_config import get_logger

logger = get_logger("engines.valuation.aggregation")

UNASSIGNED_PRODUCT = "UNASSIGNED"


def _zero_counts(enum_type) -> dict:
    return {member: 0 for member in enum_type}


def _zero_values(enum_type, currency: str) -> dict:
    return {member: Money.zero(currency) for member in enum_type}


def _whole(values: Mapping) -> dict:
    return {member: value.round_whole() for member, value in values.items()}


def _half_up(numerator: int, denominator: int) -> int:
    if denominator == 0:
        return 0
    return int((Decimal(numerator) / Decimal(denominator)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def location_quantity(location: Location, warehouse: int, store: int) -> int:
    match location:
        case Location.WAREHOUSE:
            return warehouse
        case Location.STORE:
            return store
        case _:
            assert_never(location)


def valuation_source_of(kind: SourceKind) -> ValuationSource:
    match kind:
        case SourceKind.DELIVERY:
            return ValuationSource.DELIVERY
        case SourceKind.STOCK_CHANGE:
            return ValuationSource.STOCK_CHANGE
        case _:
            assert_never(kind)


@dataclass(frozen=True)
class ValuationTotals:
    """
    Additive totals shared by every level of the tree.

    Contract:
        Built once per size from its layers (``from_layers``) and then only
        ever combined (``combine``).  Derived averages are properties.
    """

    currency: str
    total_quantity: int = 0
    costed_quantity: int = 0
    unknown_quantity: int = 0
    total_value: Money | None = None
    age_quantity_days: int = 0
    max_age_in_days: int = 0
    fallback_layer_count: int = 0
    currencies: frozenset[str] = frozenset()
    value_by_age_group: Mapping[AgeGroup, Money] = field(default_factory=dict)
    items_by_age_group: Mapping[AgeGroup, int] = field(default_factory=dict)
    quantity_by_source: Mapping[ValuationSource, int] = field(default_factory=dict)
    value_by_source: Mapping[ValuationSource, Money] = field(default_factory=dict)
    stock_by_location: Mapping[Location, int] = field(default_factory=dict)
    value_by_location: Mapping[Location, Money] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.total_value is None:
            object.__setattr__(self, "total_value", Money.zero(self.currency))
        for name, enum_type, zero in (
            ("value_by_age_group", AgeGroup, Money.zero(self.currency)),
            ("items_by_age_group", AgeGroup, 0),
            ("quantity_by_source", ValuationSource, 0),
            ("value_by_source", ValuationSource, Money.zero(self.currency)),
            ("stock_by_location", Location, 0),
            ("value_by_location", Location, Money.zero(self.currency)),
        ):
            given = getattr(self, name)
            object.__setattr__(self, name, {m: given.get(m, zero) for m in enum_type})

    @property
    def average_age_in_days(self) -> int:
        """Costed-quantity weighted age, rounded half-up for display."""
        return _half_up(self.age_quantity_days, self.costed_quantity)

    @property
    def average_cost(self) -> Money:
        """Value per unit on hand, unknown-cost units included."""
        if self.total_quantity == 0:
            return Money.zero(self.currency)
        return (self.total_value / self.total_quantity).round()

    @property
    def weighted_average_cost(self) -> Money:
        """Value per costed unit."""
        if self.costed_quantity == 0:
            return Money.zero(self.currency)
        return (self.total_value / self.costed_quantity).round()

    @classmethod
    def from_layers(
        cls,
        *,
        currency: str,
        layers: Sequence[InventoryLayer],
        warehouse_quantity: int,
        store_quantity: int,
        quantity_by_source: Mapping[ValuationSource, int],
        thresholds: AgeThresholds = DEFAULT_THRESHOLDS,
    ) -> ValuationTotals:
        total_quantity = warehouse_quantity + store_quantity
        costed = sum(layer.remaining_quantity for layer in layers)
        total_value = sum_money((layer.layer_value for layer in layers), currency).round()

        value_by_age = _zero_values(AgeGroup, currency)
        items_by_age = _zero_counts(AgeGroup)
        value_by_source = _zero_values(ValuationSource, currency)
        for layer in layers:
            group = classify_age(layer.age_in_days, thresholds)
            value_by_age[group] = value_by_age[group] + layer.layer_value
            items_by_age[group] += layer.remaining_quantity
            source = valuation_source_of(layer.source)
            value_by_source[source] = value_by_source[source] + layer.layer_value

        stock_by_location = {
            loc: location_quantity(loc, warehouse_quantity, store_quantity)
            for loc in Location
        }
        value_by_location = {}
        for loc, qty in stock_by_location.items():
            if total_quantity == 0:
                value_by_location[loc] = Money.zero(currency)
            else:
                value_by_location[loc] = (total_value * qty / total_quantity).round()

        return cls(
            currency=currency,
            total_quantity=total_quantity,
            costed_quantity=costed,
            unknown_quantity=quantity_by_source.get(ValuationSource.UNKNOWN, 0),
            total_value=total_value,
            age_quantity_days=sum(layer.age_in_days * layer.remaining_quantity for layer in layers),
            max_age_in_days=max((layer.age_in_days for layer in layers), default=0),
            fallback_layer_count=sum(1 for layer in layers if layer.rate_is_fallback),
            currencies=frozenset(layer.unit_cost_original.currency.code for layer in layers),
            value_by_age_group=value_by_age,
            items_by_age_group=items_by_age,
            quantity_by_source=dict(quantity_by_source),
            value_by_source=value_by_source,
            stock_by_location=stock_by_location,
            value_by_location=value_by_location,
        )

    @classmethod
    def combine(cls, children: Iterable[ValuationTotals], currency: str) -> ValuationTotals:
        """Sum child totals into a parent's totals."""
        children = list(children)
        for child in children:
            if child.currency != currency:
                raise ValueError(
                    f"Cannot combine totals in {child.currency} into {currency}"
                )

        def add_counts(attr: str, enum_type) -> dict:
            out = _zero_counts(enum_type)
            for child in children:
                for member, qty in getattr(child, attr).items():
                    out[member] += qty
            return out

        def add_values(attr: str, enum_type) -> dict:
            out = _zero_values(enum_type, currency)
            for child in children:
                for member, value in getattr(child, attr).items():
                    out[member] = out[member] + value
            return {member: value.round() for member, value in out.items()}

        return cls(
            currency=currency,
            total_quantity=sum(c.total_quantity for c in children),
            costed_quantity=sum(c.costed_quantity for c in children),
            unknown_quantity=sum(c.unknown_quantity for c in children),
            total_value=sum_money((c.total_value for c in children), currency).round(),
            age_quantity_days=sum(c.age_quantity_days for c in children),
            max_age_in_days=max((c.max_age_in_days for c in children), default=0),
            fallback_layer_count=sum(c.fallback_layer_count for c in children),
            currencies=frozenset().union(*(c.currencies for c in children)),
            value_by_age_group=add_values("value_by_age_group", AgeGroup),
            items_by_age_group=add_counts("items_by_age_group", AgeGroup),
            quantity_by_source=add_counts("quantity_by_source", ValuationSource),
            value_by_source=add_values("value_by_source", ValuationSource),
            stock_by_location=add_counts("stock_by_location", Location),
            value_by_location=add_values("value_by_location", Location),
        )


@dataclass(frozen=True)
class SizeValuation:
    """Valuation of one SKU (variant + size)."""

    sku_key: SkuKey
    ean: str | None
    descriptor: ProductDescriptor
    result: LayerBuildResult
    totals: ValuationTotals
    channel_only: bool = False

    @property
    def layers(self) -> tuple[InventoryLayer, ...]:
        return self.result.layers

    @property
    def current_stock(self) -> int:
        return self.totals.total_quantity

    @property
    def total_value(self) -> Money:
        return self.totals.total_value

    @property
    def primary_source(self) -> ValuationSource:
        return self.result.primary_source

    @property
    def product_number(self) -> str:
        return self.descriptor.product_number or UNASSIGNED_PRODUCT

    @property
    def oldest_purchase_date(self) -> datetime | None:
        return self.layers[0].timestamp if self.layers else None

    @property
    def newest_purchase_date(self) -> datetime | None:
        return self.layers[-1].timestamp if self.layers else None


@dataclass(frozen=True)
class VariantValuation:
    variant_id: int
    variant_number: str | None
    variant_name: str | None
    sizes: tuple[SizeValuation, ...]
    totals: ValuationTotals

    @property
    def total_value(self) -> Money:
        return self.totals.total_value


@dataclass(frozen=True)
class ProductValuation:
    product_number: str
    product_name: str | None
    product_id: int | None
    variants: tuple[VariantValuation, ...]
    totals: ValuationTotals

    @property
    def total_value(self) -> Money:
        return self.totals.total_value


@dataclass(frozen=True)
class PortfolioSummary:
    """
    Portfolio roll-up.

    ``total_value`` and the value breakdowns are whole-unit figures;
    ``totals`` keeps the exact 2 dp sums they were rounded from.
    """

    totals: ValuationTotals
    total_value: Money
    product_count: int
    calculated_at: datetime
    value_by_age_group: Mapping[AgeGroup, Money] = field(default_factory=dict)
    value_by_source: Mapping[ValuationSource, Money] = field(default_factory=dict)
    value_by_location: Mapping[Location, Money] = field(default_factory=dict)

    @property
    def total_items(self) -> int:
        return self.totals.total_quantity

    @property
    def unknown_cost_items(self) -> int:
        return self.totals.quantity_by_source[ValuationSource.UNKNOWN]


def value_size(
    *,
    result: LayerBuildResult,
    ean: str | None,
    descriptor: ProductDescriptor,
    thresholds: AgeThresholds = DEFAULT_THRESHOLDS,
    channel_only: bool = False,
) -> SizeValuation:
    """Wrap one layer result into a SizeValuation with its totals."""
    totals = ValuationTotals.from_layers(
        currency=result.base_currency,
        layers=result.layers,
        warehouse_quantity=result.warehouse_quantity,
        store_quantity=result.store_quantity,
        quantity_by_source=result.quantity_by_source,
        thresholds=thresholds,
    )
    return SizeValuation(
        sku_key=result.sku_key,
        ean=ean,
        descriptor=descriptor,
        result=result,
        totals=totals,
        channel_only=channel_only,
    )


def _size_order(size: SizeValuation) -> tuple:
    number = size.sku_key.size_number
    return (number is None, number or "", size.sku_key.variant_id)


def _first_present(values: Iterable):
    for value in values:
        if value is not None:
            return value
    return None


def build_product_tree(
    sizes: Sequence[SizeValuation],
    base_currency: str,
) -> tuple[ProductValuation, ...]:
    """
    Group sizes into variants and products and roll their totals up.

    Products are sorted by product number, variants by variant number
    (then id), sizes by size number.
    """
    by_product: dict[str, dict[int, list[SizeValuation]]] = defaultdict(lambda: defaultdict(list))
    for size in sizes:
        by_product[size.product_number][size.sku_key.variant_id].append(size)

    products: list[ProductValuation] = []
    for product_number in sorted(by_product):
        variants: list[VariantValuation] = []
        for variant_id, variant_sizes in by_product[product_number].items():
            ordered = tuple(sorted(variant_sizes, key=_size_order))
            variants.append(VariantValuation(
                variant_id=variant_id,
                variant_number=_first_present(s.descriptor.variant_number for s in ordered),
                variant_name=_first_present(s.descriptor.variant_name for s in ordered),
                sizes=ordered,
                totals=ValuationTotals.combine((s.totals for s in ordered), base_currency),
            ))
        variants.sort(key=lambda v: (v.variant_number or "", v.variant_id))

        all_sizes = [s for v in variants for s in v.sizes]
        products.append(ProductValuation(
            product_number=product_number,
            product_name=_first_present(s.descriptor.product_name for s in all_sizes),
            product_id=_first_present(s.descriptor.product_id for s in all_sizes),
            variants=tuple(variants),
            totals=ValuationTotals.combine((v.totals for v in variants), base_currency),
        ))
    return tuple(products)


@traced_engine("valuation_summary", "1.0", fingerprint_fields=("base_currency", "calculated_at"))
def summarize(
    *,
    products: Sequence[ProductValuation],
    base_currency: str,
    calculated_at: datetime,
) -> PortfolioSummary:
    """Portfolio summary over an already built product tree."""
    totals = ValuationTotals.combine((p.totals for p in products), base_currency)
    summary = PortfolioSummary(
        totals=totals,
        total_value=totals.total_value.round_whole(),
        product_count=len(products),
        calculated_at=calculated_at,
        value_by_age_group=_whole(totals.value_by_age_group),
        value_by_source=_whole(totals.value_by_source),
        value_by_location=_whole(totals.value_by_location),
    )
    logger.info("valuation_summarized", extra={
        "product_count": summary.product_count,
        "total_items": summary.total_items,
        "total_value": str(summary.total_value.amount),
        "unknown_cost_items": summary.unknown_cost_items,
        "fallback_layers": totals.fallback_layer_count,
    })
    return summary
