"""
valuation_engines.valuation.matching -- Ledger indexing by size key and barcode.

Responsibility:
    Group delivery and stock-change entries per SKU key (the canonical
    join) and per EAN (used only for units that exist solely in the
    secondary sales channel).

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - An entry is indexed under exactly one SKU key; EAN indexing is
      secondary and skips entries without a barcode.
    - Source kind decides the bucket; a stock change never lands in the
      delivery list.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from valuation_kernel.domain.inventory import LedgerEntry, SkuKey, SourceKind
from valuation_kernel.logging_config import get_logger

logger = get_logger("engines.valuation.matching")


@dataclass
class MatchedEntries:
    """Deliveries and stock changes matched to one key."""

    deliveries: list[LedgerEntry] = field(default_factory=list)
    stock_changes: list[LedgerEntry] = field(default_factory=list)

    def add(self, entry: LedgerEntry) -> None:
        if entry.source_kind is SourceKind.DELIVERY:
            self.deliveries.append(entry)
        else:
            self.stock_changes.append(entry)

    def __bool__(self) -> bool:
        return bool(self.deliveries or self.stock_changes)

    def newest(self) -> LedgerEntry | None:
        """Most recent entry across both sources."""
        entries = self.deliveries + self.stock_changes
        if not entries:
            return None
        return max(entries, key=lambda e: e.order_key)


class LedgerIndex:
    """Read-only lookup of ledger entries by SKU key and by EAN."""

    def __init__(self, entries: Iterable[LedgerEntry]):
        self._by_sku: dict[SkuKey, MatchedEntries] = defaultdict(MatchedEntries)
        self._by_ean: dict[str, MatchedEntries] = defaultdict(MatchedEntries)
        count = 0
        for entry in entries:
            count += 1
            self._by_sku[entry.sku_key].add(entry)
            if entry.ean:
                self._by_ean[entry.ean].add(entry)
        logger.debug("ledger_indexed", extra={
            "entries": count,
            "sku_keys": len(self._by_sku),
            "eans": len(self._by_ean),
        })

    @classmethod
    def from_ledgers(
        cls,
        deliveries: Iterable[LedgerEntry],
        stock_changes: Iterable[LedgerEntry],
    ) -> LedgerIndex:
        return cls([*deliveries, *stock_changes])

    def for_sku(self, sku_key: SkuKey) -> MatchedEntries:
        return self._by_sku.get(sku_key) or MatchedEntries()

    def for_ean(self, ean: str) -> MatchedEntries:
        return self._by_ean.get(ean) or MatchedEntries()

    @property
    def currencies(self) -> frozenset[str]:
        """Every currency appearing in any indexed entry."""
        return frozenset(
            entry.unit_cost.currency.code
            for matched in self._by_sku.values()
            for entry in (*matched.deliveries, *matched.stock_changes)
        )
