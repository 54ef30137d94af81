"""
valuation_ingestion -- Feed provider protocols and their implementations.

Normalizes raw delivery, stock-change, snapshot and channel records into
kernel domain records, reads exported feed files, and fetches historical
exchange rates from the Riksbank.

Architecture:
    valuation_ingestion/ is a top-level package. Nothing in kernel/ or
    engines/ imports from ingestion.
"""

from valuation_ingestion.providers import (
    ChannelInventoryProvider,
    DeliveryLedgerProvider,
    EmptyChannelInventoryProvider,
    RateProvider,
    StockChangeLedgerProvider,
    StockSnapshotProvider,
)

__all__ = [
    "StockSnapshotProvider",
    "DeliveryLedgerProvider",
    "StockChangeLedgerProvider",
    "ChannelInventoryProvider",
    "RateProvider",
    "EmptyChannelInventoryProvider",
]
