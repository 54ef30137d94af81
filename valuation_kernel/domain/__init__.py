"""
Pure domain layer.

Value objects and records with NO dependencies on the ORM, the database,
the network or the system clock (SystemClock aside).  All domain objects
are immutable.
"""

from valuation_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from valuation_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from valuation_kernel.domain.inventory import (
    AgeGroup,
    ChannelStockRecord,
    InventoryLayer,
    LandedCost,
    LayerConsumption,
    LedgerEntry,
    Location,
    ProductDescriptor,
    SkuKey,
    SourceKind,
    StockRecord,
    ValuationSource,
)
from valuation_kernel.domain.values import Currency, Money, RateQuote, sum_money

__all__ = [
    # Time
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # Money
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "Money",
    "RateQuote",
    "sum_money",
    # Inventory
    "AgeGroup",
    "ChannelStockRecord",
    "InventoryLayer",
    "LandedCost",
    "LayerConsumption",
    "LedgerEntry",
    "Location",
    "ProductDescriptor",
    "SkuKey",
    "SourceKind",
    "StockRecord",
    "ValuationSource",
]
