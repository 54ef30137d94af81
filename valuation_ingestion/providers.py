"""
Provider protocols -- the feeds a valuation run consumes.

Every provider is an external collaborator.  The valuation service depends
only on these protocols; concrete implementations are file exports
(``valuation_ingestion.file_providers``), the Riksbank client
(``valuation_ingestion.riksbank``) and test fakes.

Failure contract:
    Implementations raise ``ProviderError`` subclasses (or let transport
    errors escape); the service decides whether a failure is fatal (stock
    snapshot) or degrades the feed to empty (ledgers, channel).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable

from valuation_kernel.domain.inventory import ChannelStockRecord, LedgerEntry, StockRecord


@runtime_checkable
class StockSnapshotProvider(Protocol):
    """Current warehouse on-hand per SKU (mandatory feed)."""

    def fetch_on_hand(self, company_id: str) -> list[StockRecord]: ...


@runtime_checkable
class DeliveryLedgerProvider(Protocol):
    """Purchase-order delivery receipts (primary cost source)."""

    def fetch_deliveries(self, company_id: str) -> list[LedgerEntry]: ...


@runtime_checkable
class StockChangeLedgerProvider(Protocol):
    """Stock-adjustment receipts (fallback cost source)."""

    def fetch_stock_changes(self, company_id: str) -> list[LedgerEntry]: ...


@runtime_checkable
class ChannelInventoryProvider(Protocol):
    """Secondary sales-channel on-hand, keyed by EAN."""

    def fetch_channel_stock(self, company_id: str) -> list[ChannelStockRecord]: ...


@runtime_checkable
class RateProvider(Protocol):
    """Daily rate observations: base units per one unit of ``currency``."""

    def fetch_observations(
        self,
        currency: str,
        from_date: date,
        to_date: date,
    ) -> list[tuple[date, Decimal]]: ...


class EmptyChannelInventoryProvider:
    """Channel provider for companies without a secondary sales channel."""

    def fetch_channel_stock(self, company_id: str) -> list[ChannelStockRecord]:
        return []
