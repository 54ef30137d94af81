"""
valuation_engines.valuation.reconciler -- Values units seen only in the sales channel.

Responsibility:
    Some barcodes are on hand in the secondary sales channel but have no
    row in the warehouse snapshot.  They are valued with the same FIFO
    layer builder, against ledger entries matched by EAN, with the channel
    quantity as store stock and zero warehouse stock.

Architecture position:
    Engines -- pure calculation layer.  Reuses ``build_layers``; the rate
    lookup is passed through from the caller.

Invariants enforced:
    - EAN joining happens here and nowhere else.
    - A channel EAN with no ledger entries at all is excluded, not valued
      as unknown, because there is nothing to name or group it by.
    - Descriptors and the SKU key come from the newest matched entry;
      entries without a product number group under ``UNASSIGNED``.
    - Receipts are never valued twice: an EAN whose entries belong to a
      snapshot SKU key, or span several SKU keys, is returned as a
      conflict instead of being valued.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from valuation_config.schema import AgeThresholds
from valuation_engines.aging import DEFAULT_THRESHOLDS
from valuation_engines.valuation.aggregation import SizeValuation, value_size
from valuation_engines.valuation.layers import RateLookup, build_layers
from valuation_engines.valuation.matching import LedgerIndex
from valuation_kernel.domain.inventory import ChannelStockRecord, SkuKey
from valuation_kernel.logging_config import get_logger

logger = get_logger("engines.valuation.reconciler")

CONFLICT_SNAPSHOT_SKU = "sku_key_in_snapshot"
CONFLICT_MULTIPLE_SKUS = "multiple_sku_keys"


@dataclass(frozen=True)
class ChannelConflict:
    """A channel EAN whose receipts cannot be attributed to one new size."""

    ean: str
    quantity: int
    reason: str
    sku_keys: tuple[SkuKey, ...]


@dataclass
class ChannelReconciliation:
    sizes: list[SizeValuation] = field(default_factory=list)
    conflicts: list[ChannelConflict] = field(default_factory=list)


def channel_quantities(records: Sequence[ChannelStockRecord]) -> dict[str, int]:
    """Sum channel quantities per EAN, preserving first-seen order."""
    totals: dict[str, int] = {}
    for record in records:
        if not record.ean:
            continue
        totals[record.ean] = totals.get(record.ean, 0) + record.quantity
    return totals


def reconcile_channel_only(
    *,
    channel_stock: Sequence[ChannelStockRecord],
    snapshot_eans: Collection[str],
    index: LedgerIndex,
    rates: RateLookup,
    as_of: datetime,
    base_currency: str,
    snapshot_sku_keys: Collection[SkuKey] = (),
    thresholds: AgeThresholds = DEFAULT_THRESHOLDS,
) -> ChannelReconciliation:
    """
    Value every channel EAN with stock and no warehouse snapshot row.

    Returns:
        ChannelReconciliation holding the SizeValuations flagged
        ``channel_only`` in channel feed order, and the EANs left unvalued
        because their receipts are already valued or ambiguous.
    """
    outcome = ChannelReconciliation()
    excluded = 0

    for ean, quantity in channel_quantities(channel_stock).items():
        if quantity <= 0 or ean in snapshot_eans:
            continue

        matched = index.for_ean(ean)
        newest = matched.newest()
        if newest is None:
            excluded += 1
            logger.info("channel_only_unit_excluded", extra={
                "ean": ean,
                "quantity": quantity,
                "reason": "no_ledger_entries",
            })
            continue

        keys = tuple(dict.fromkeys(
            e.sku_key for e in sorted(matched.deliveries + matched.stock_changes, key=lambda e: e.order_key)
        ))
        if len(keys) > 1:
            reason = CONFLICT_MULTIPLE_SKUS
        elif keys[0] in snapshot_sku_keys:
            reason = CONFLICT_SNAPSHOT_SKU
        else:
            reason = None
        if reason is not None:
            outcome.conflicts.append(ChannelConflict(ean, quantity, reason, keys))
            logger.warning("channel_only_unit_conflict", extra={
                "ean": ean,
                "quantity": quantity,
                "reason": reason,
                "sku_keys": [str(k) for k in keys],
            })
            continue

        result = build_layers(
            sku_key=newest.sku_key,
            warehouse_quantity=0,
            store_quantity=quantity,
            deliveries=matched.deliveries,
            stock_changes=matched.stock_changes,
            rates=rates,
            as_of=as_of,
            base_currency=base_currency,
        )
        outcome.sizes.append(value_size(
            result=result,
            ean=ean,
            descriptor=newest.descriptor,
            thresholds=thresholds,
            channel_only=True,
        ))

    logger.info("channel_only_reconciled", extra={
        "valued": len(outcome.sizes),
        "excluded": excluded,
        "conflicts": len(outcome.conflicts),
    })
    return outcome
