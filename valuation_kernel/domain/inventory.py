"""
Inventory -- Stock snapshot, ledger receipt and FIFO layer value objects.

Responsibility:
    Defines the read-only inputs of a valuation run (StockRecord,
    ChannelStockRecord, LedgerEntry) and the immutable derived records the
    layer builder produces (InventoryLayer, LayerConsumption), together
    with the closed enumerations every engine switches on.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - LedgerEntry.quantity > 0 and LedgerEntry.timestamp is timezone-aware.
    - InventoryLayer.remaining_quantity is in (0, original_quantity].
    - SkuKey renders as ``"{variant_id}-{size_number or 'null'}"``; the
      rendering is the canonical join key across all feeds.

Failure modes:
    - ValueError from LedgerEntry / InventoryLayer construction when the
      invariants above are violated.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from valuation_kernel.domain.values import Money
from valuation_kernel.logging_config import get_logger

logger = get_logger("domain.inventory")


class SourceKind(str, Enum):
    """Where a receipt event came from."""

    DELIVERY = "delivery"
    STOCK_CHANGE = "stockChange"


class ValuationSource(str, Enum):
    """Cost basis of valued stock; UNKNOWN means no traceable receipt."""

    DELIVERY = "delivery"
    STOCK_CHANGE = "stockChange"
    UNKNOWN = "unknown"

    @classmethod
    def from_source_kind(cls, kind: SourceKind) -> ValuationSource:
        return cls(kind.value)


class AgeGroup(str, Enum):
    FRESH = "fresh"
    AGING = "aging"
    OLD = "old"


class Location(str, Enum):
    WAREHOUSE = "warehouse"
    STORE = "store"


@dataclass(frozen=True, slots=True)
class SkuKey:
    """Canonical (variant, size) identity joining ledgers to stock."""

    variant_id: int
    size_number: str | None = None

    def __str__(self) -> str:
        return f"{self.variant_id}-{self.size_number if self.size_number else 'null'}"

    @classmethod
    def parse(cls, value: str) -> SkuKey:
        """Parse the rendered ``"{variant}-{size}"`` form back into a key."""
        variant, sep, size = value.partition("-")
        if not sep or not variant:
            raise ValueError(f"Malformed size key: {value!r}")
        return cls(
            variant_id=int(variant),
            size_number=None if size in ("", "null") else size,
        )

    def sort_key(self) -> tuple[int, str]:
        return (self.variant_id, self.size_number or "")


@dataclass(frozen=True, slots=True)
class ProductDescriptor:
    """Descriptive product / variant / size fields carried by feeds."""

    product_number: str | None = None
    product_name: str | None = None
    product_id: int | None = None
    variant_name: str | None = None
    variant_number: str | None = None
    size: str | None = None


@dataclass(frozen=True, slots=True)
class StockRecord:
    """One row of the on-hand snapshot (immutable)."""

    sku_key: SkuKey
    ean: str | None
    warehouse_quantity: int
    descriptor: ProductDescriptor = ProductDescriptor()


@dataclass(frozen=True, slots=True)
class ChannelStockRecord:
    """Secondary sales-channel on-hand, keyed by barcode only."""

    ean: str
    quantity: int


@dataclass(frozen=True, slots=True)
class LandedCost:
    """Per-unit landed cost breakdown of a delivery line."""

    product: Money
    customs: Money
    shipping: Money

    @property
    def total(self) -> Money:
        return self.product + self.customs + self.shipping


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """
    A receipt event that can act as a FIFO cost source.

    Contract:
        ``unit_cost`` is the landed unit cost in the original currency.
        Deliveries carry supplier and landed-cost breakdown; stock changes
        carry only a unit cost.

    Guarantees:
        - quantity > 0
        - timestamp is timezone-aware
    """

    entry_id: str
    source_kind: SourceKind
    sku_key: SkuKey
    ean: str | None
    timestamp: datetime
    quantity: int
    unit_cost: Money
    supplier: str | None = None
    landed_cost: LandedCost | None = None
    purchase_order_id: str | None = None
    delivery_id: str | None = None
    stock_change_id: str | None = None
    descriptor: ProductDescriptor = ProductDescriptor()

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            logger.error("ledger_entry_invalid_quantity", extra={
                "entry_id": self.entry_id,
                "quantity": self.quantity,
            })
            raise ValueError(
                f"Ledger entry quantity must be positive, got {self.quantity}"
            )
        if self.timestamp.tzinfo is None or self.timestamp.utcoffset() is None:
            raise ValueError(
                f"Ledger entry {self.entry_id} timestamp must be timezone-aware"
            )

    @property
    def order_key(self) -> tuple[datetime, str]:
        """FIFO ordering: oldest first, entry id breaks timestamp ties."""
        return (self.timestamp, self.entry_id)


@dataclass(frozen=True, slots=True)
class LayerConsumption:
    """Walk record for one ledger entry during allocation."""

    entry_id: str
    original_quantity: int
    consumed_quantity: int
    remaining_quantity: int


@dataclass(frozen=True, slots=True)
class InventoryLayer:
    """
    One surviving slice of a ledger entry, priced in the base currency.

    ``unit_cost_base`` is already rounded to currency precision;
    ``layer_value`` is derived and rounded the same way.
    """

    entry_id: str
    source: SourceKind
    timestamp: datetime
    original_quantity: int
    remaining_quantity: int
    unit_cost_original: Money
    unit_cost_base: Money
    exchange_rate: Decimal
    rate_is_fallback: bool
    age_in_days: int
    supplier: str | None = None
    purchase_order_id: str | None = None
    delivery_id: str | None = None
    stock_change_id: str | None = None

    def __post_init__(self) -> None:
        if not 0 < self.remaining_quantity <= self.original_quantity:
            raise ValueError(
                f"Layer {self.entry_id} remaining {self.remaining_quantity} "
                f"outside (0, {self.original_quantity}]"
            )

    @property
    def layer_value(self) -> Money:
        return (self.unit_cost_base * self.remaining_quantity).round()
