"""
valuation_services.valuation_service -- FIFO inventory valuation runs.

Responsibility:
    Orchestrate one valuation: fetch the stock snapshot, both receipt
    ledgers and the sales-channel stock concurrently, index the ledgers,
    build FIFO layers per SKU in parallel, value channel-only units, roll
    everything up, and flush newly learned exchange rates.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes the provider protocols (valuation_ingestion.providers), the
    pure engines (valuation_engines.valuation) and the
    ExchangeRateResolver.  Holds no state between runs apart from the
    resolver's rate cache.

Invariants enforced:
    - ``as_of`` is read from the injected clock once per run.
    - SKUs with zero total on-hand produce no record.
    - Negative on-hand is clamped to zero for the calculation and always
      reported as a data-quality issue; nothing else is corrected.
    - Per-SKU results are returned in snapshot order regardless of which
      worker finished first.

Failure modes:
    - StockSnapshotUnavailableError when the stock snapshot cannot be
      fetched (the run cannot start without it).
    - Ledger or channel feed failures (provider, transport or parse errors)
      degrade that feed to empty and are listed in
      ``ValuationReport.degraded_sources``.
    - Channel EANs whose receipts already belong to a snapshot size, or to
      several sizes, are reported as data-quality issues and not valued.
    - ExchangeRateNotFoundError and LayerInvariantError propagate.

Audit relevance:
    Every run gets a ``run_id`` bound into the log context together with
    the company id; start, degradation, data-quality and completion events
    are logged with it.

Usage:
    service = InventoryValuationService(
        stock=feeds.stock,
        deliveries=feeds.deliveries,
        stock_changes=feeds.stock_changes,
        channel=feeds.channel,
        resolver=resolver,
        clock=SystemClock(),
        config=get_active_config(),
    )
    report = service.calculate_valuation("acme")
    print(report.summary.total_value)
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar
from uuid import uuid4

from valuation_config.schema import ValuationConfig
from valuation_engines.valuation.aggregation import (
    UNASSIGNED_PRODUCT,
    PortfolioSummary,
    ProductValuation,
    SizeValuation,
    build_product_tree,
    summarize,
    value_size,
)
from valuation_engines.valuation.layers import build_layers
from valuation_engines.valuation.matching import LedgerIndex
from valuation_engines.valuation.reconciler import (
    CONFLICT_MULTIPLE_SKUS,
    ChannelConflict,
    channel_quantities,
    reconcile_channel_only,
)
from valuation_ingestion.providers import (
    ChannelInventoryProvider,
    DeliveryLedgerProvider,
    EmptyChannelInventoryProvider,
    StockChangeLedgerProvider,
    StockSnapshotProvider,
)
from valuation_kernel.domain.clock import Clock, SystemClock
from valuation_kernel.domain.inventory import ChannelStockRecord, LedgerEntry, SkuKey, StockRecord
from valuation_kernel.exceptions import LedgerError, ProviderError, StockSnapshotUnavailableError
from valuation_kernel.logging_config import LogContext, get_logger
from valuation_services.exchange_rate_service import ExchangeRateResolver

logger = get_logger("services.valuation")

T = TypeVar("T")

ISSUE_NEGATIVE_ON_HAND = "negative_on_hand"
ISSUE_DUPLICATE_SIZE_KEY = "duplicate_size_key"
ISSUE_SHARED_EAN = "shared_ean"
ISSUE_CHANNEL_CONFLICT = "channel_ean_conflict"

FEED_DELIVERIES = "deliveries"
FEED_STOCK_CHANGES = "stock_changes"
FEED_CHANNEL = "channel_stock"


@dataclass(frozen=True)
class DataQualityIssue:
    """An inconsistency found in the feeds. Reported, never auto-corrected."""

    kind: str
    message: str
    sku_key: str | None = None
    ean: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ValuationReport:
    """The valuation tree, its summary and everything learned on the way."""

    company_id: str
    run_id: str
    as_of: datetime
    base_currency: str
    products: tuple[ProductValuation, ...]
    summary: PortfolioSummary
    data_quality_issues: tuple[DataQualityIssue, ...] = ()
    degraded_sources: tuple[str, ...] = ()

    def find_product(self, product_number: str) -> ProductValuation | None:
        for product in self.products:
            if product.product_number == product_number:
                return product
        return None

    def iter_sizes(self):
        for product in self.products:
            for variant in product.variants:
                yield from variant.sizes


@dataclass(frozen=True)
class _SkuWork:
    record: StockRecord
    warehouse_quantity: int
    store_quantity: int


@dataclass
class _Feeds:
    stock: list[StockRecord]
    deliveries: list[LedgerEntry]
    stock_changes: list[LedgerEntry]
    channel: list[ChannelStockRecord]
    degraded: list[str] = field(default_factory=list)


class InventoryValuationService:
    """
    Runs FIFO valuations for one company at a time.

    Args:
        stock: Warehouse on-hand snapshot (mandatory feed).
        deliveries: Purchase-order delivery ledger.
        stock_changes: Stock-adjustment ledger.
        resolver: Historical exchange-rate resolver (shared rate cache).
        channel: Secondary sales-channel stock; empty when omitted.
        clock: Source of the valuation instant.
        config: Base currency, age thresholds and worker count.
    """

    def __init__(
        self,
        *,
        stock: StockSnapshotProvider,
        deliveries: DeliveryLedgerProvider,
        stock_changes: StockChangeLedgerProvider,
        resolver: ExchangeRateResolver,
        channel: ChannelInventoryProvider | None = None,
        clock: Clock | None = None,
        config: ValuationConfig | None = None,
    ):
        self._stock = stock
        self._deliveries = deliveries
        self._stock_changes = stock_changes
        self._channel = channel or EmptyChannelInventoryProvider()
        self._resolver = resolver
        self._clock = clock or SystemClock()
        self._config = config or ValuationConfig()

    @property
    def base_currency(self) -> str:
        return self._config.base_currency

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def calculate_valuation(
        self,
        company_id: str,
        product_number: str | None = None,
    ) -> ValuationReport:
        """
        Value the company's current inventory.

        Args:
            company_id: Company whose feeds are read.
            product_number: Restrict the returned tree (and the summary
                computed over it) to one product.

        Returns:
            ValuationReport with products sorted by product number.

        Raises:
            StockSnapshotUnavailableError: If the stock snapshot fails.
        """
        run_id = str(uuid4())
        with LogContext.bind(company_id=company_id, run_id=run_id):
            start = time.monotonic()
            as_of = self._clock.now()
            logger.info("valuation_started", extra={
                "as_of": as_of,
                "product_number": product_number,
                "base_currency": self.base_currency,
            })

            feeds = self._fetch_feeds(company_id)
            issues: list[DataQualityIssue] = []
            work = self._plan(feeds, issues)
            if product_number is not None:
                work = [w for w in work if _product_of(w.record) == product_number]

            index = LedgerIndex.from_ledgers(feeds.deliveries, feeds.stock_changes)
            self._resolver.preload(
                index.currencies,
                max_workers=self._config.valuation.max_workers,
            )

            sizes = self._value_skus(work, index, as_of, company_id, run_id)

            snapshot_eans = {r.ean for r in feeds.stock if r.ean}
            reconciled = reconcile_channel_only(
                channel_stock=feeds.channel,
                snapshot_eans=snapshot_eans,
                snapshot_sku_keys={r.sku_key for r in feeds.stock},
                index=index,
                rates=self._resolver,
                as_of=as_of,
                base_currency=self.base_currency,
                thresholds=self._config.age_thresholds,
            )
            issues.extend(_channel_conflict_issue(c) for c in reconciled.conflicts)
            channel_sizes = reconciled.sizes
            if product_number is not None:
                channel_sizes = [s for s in channel_sizes if s.product_number == product_number]
            sizes.extend(channel_sizes)

            products = build_product_tree(sizes, self.base_currency)
            summary = summarize(
                products=products,
                base_currency=self.base_currency,
                calculated_at=as_of,
            )
            flushed = self._resolver.flush()

            report = ValuationReport(
                company_id=company_id,
                run_id=run_id,
                as_of=as_of,
                base_currency=self.base_currency,
                products=products,
                summary=summary,
                data_quality_issues=tuple(issues),
                degraded_sources=tuple(feeds.degraded),
            )
            logger.info("valuation_completed", extra={
                "product_count": summary.product_count,
                "size_count": len(sizes),
                "channel_only_count": len(channel_sizes),
                "total_value": str(summary.total_value.amount),
                "data_quality_issues": len(issues),
                "degraded_sources": list(feeds.degraded),
                "rates_flushed": flushed,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
            })
            return report

    # ------------------------------------------------------------------
    # Feeds
    # ------------------------------------------------------------------

    def _fetch_feeds(self, company_id: str) -> _Feeds:
        with ThreadPoolExecutor(max_workers=4, thread_name_prefix="valuation-feed") as pool:
            stock_f = pool.submit(self._stock.fetch_on_hand, company_id)
            deliveries_f = pool.submit(self._deliveries.fetch_deliveries, company_id)
            changes_f = pool.submit(self._stock_changes.fetch_stock_changes, company_id)
            channel_f = pool.submit(self._channel.fetch_channel_stock, company_id)

            try:
                stock = list(stock_f.result())
            except (ProviderError, LedgerError, ValueError, OSError) as exc:
                logger.error("stock_snapshot_unavailable", extra={"error": str(exc)})
                raise StockSnapshotUnavailableError(company_id, str(exc)) from exc

            degraded: list[str] = []
            deliveries = _degradable(FEED_DELIVERIES, deliveries_f, degraded)
            stock_changes = _degradable(FEED_STOCK_CHANGES, changes_f, degraded)
            channel = _degradable(FEED_CHANNEL, channel_f, degraded)

        logger.info("feeds_fetched", extra={
            "stock_records": len(stock),
            "deliveries": len(deliveries),
            "stock_changes": len(stock_changes),
            "channel_records": len(channel),
        })
        return _Feeds(stock, deliveries, stock_changes, channel, degraded)

    # ------------------------------------------------------------------
    # Planning and data quality
    # ------------------------------------------------------------------

    def _plan(self, feeds: _Feeds, issues: list[DataQualityIssue]) -> list[_SkuWork]:
        store_by_ean = channel_quantities(feeds.channel)
        for ean, qty in store_by_ean.items():
            if qty < 0:
                issues.append(_issue(
                    ISSUE_NEGATIVE_ON_HAND,
                    f"Channel quantity {qty} for EAN {ean} clamped to 0",
                    ean=ean,
                    details={"location": "store", "quantity": qty},
                ))

        keys_by_ean: dict[str, list[SkuKey]] = {}
        seen: dict[SkuKey, StockRecord] = {}
        unique: list[StockRecord] = []
        for record in feeds.stock:
            if record.sku_key in seen:
                issues.append(_issue(
                    ISSUE_DUPLICATE_SIZE_KEY,
                    f"Size key {record.sku_key} appears more than once; first row kept",
                    sku_key=str(record.sku_key),
                    ean=record.ean,
                    details={
                        "kept_quantity": seen[record.sku_key].warehouse_quantity,
                        "ignored_quantity": record.warehouse_quantity,
                    },
                ))
                continue
            seen[record.sku_key] = record
            unique.append(record)
            if record.ean:
                keys_by_ean.setdefault(record.ean, []).append(record.sku_key)

        for ean, keys in keys_by_ean.items():
            if len(keys) > 1:
                issues.append(_issue(
                    ISSUE_SHARED_EAN,
                    f"EAN {ean} is shared by {len(keys)} size keys; channel stock "
                    f"attributed to {keys[0]}",
                    ean=ean,
                    details={"sku_keys": [str(k) for k in keys]},
                ))

        work: list[_SkuWork] = []
        claimed_eans: set[str] = set()
        for record in unique:
            warehouse = record.warehouse_quantity
            if warehouse < 0:
                issues.append(_issue(
                    ISSUE_NEGATIVE_ON_HAND,
                    f"Warehouse quantity {warehouse} for {record.sku_key} clamped to 0",
                    sku_key=str(record.sku_key),
                    ean=record.ean,
                    details={"location": "warehouse", "quantity": warehouse},
                ))
                warehouse = 0

            store = 0
            if record.ean and record.ean not in claimed_eans:
                claimed_eans.add(record.ean)
                store = max(0, store_by_ean.get(record.ean, 0))

            if warehouse + store > 0:
                work.append(_SkuWork(record, warehouse, store))
        return work

    # ------------------------------------------------------------------
    # Per-SKU valuation
    # ------------------------------------------------------------------

    def _value_skus(
        self,
        work: Sequence[_SkuWork],
        index: LedgerIndex,
        as_of: datetime,
        company_id: str,
        run_id: str,
    ) -> list[SizeValuation]:
        if not work:
            return []

        def value_one(item: _SkuWork) -> SizeValuation:
            with LogContext.bind(company_id=company_id, run_id=run_id, sku_key=str(item.record.sku_key)):
                matched = index.for_sku(item.record.sku_key)
                result = build_layers(
                    sku_key=item.record.sku_key,
                    warehouse_quantity=item.warehouse_quantity,
                    store_quantity=item.store_quantity,
                    deliveries=matched.deliveries,
                    stock_changes=matched.stock_changes,
                    rates=self._resolver,
                    as_of=as_of,
                    base_currency=self.base_currency,
                )
                return value_size(
                    result=result,
                    ean=item.record.ean,
                    descriptor=item.record.descriptor,
                    thresholds=self._config.age_thresholds,
                )

        workers = min(self._config.valuation.max_workers, len(work))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="valuation-sku") as pool:
            return list(pool.map(value_one, work))


def _product_of(record: StockRecord) -> str:
    return record.descriptor.product_number or UNASSIGNED_PRODUCT


def _issue(kind: str, message: str, **kwargs: Any) -> DataQualityIssue:
    issue = DataQualityIssue(kind=kind, message=message, **kwargs)
    logger.warning("data_quality_issue", extra={
        "kind": kind,
        "issue": message,
        "sku_key": issue.sku_key,
        "ean": issue.ean,
    })
    return issue


def _channel_conflict_issue(conflict: ChannelConflict) -> DataQualityIssue:
    keys = ", ".join(str(k) for k in conflict.sku_keys)
    if conflict.reason == CONFLICT_MULTIPLE_SKUS:
        message = (
            f"Channel EAN {conflict.ean} matches receipts of several size keys ({keys}); "
            f"{conflict.quantity} units not valued"
        )
    else:
        message = (
            f"Channel EAN {conflict.ean} matches receipts of snapshot size key {keys}; "
            f"{conflict.quantity} units not valued twice"
        )
    return _issue(
        ISSUE_CHANNEL_CONFLICT,
        message,
        sku_key=str(conflict.sku_keys[0]),
        ean=conflict.ean,
        details={
            "reason": conflict.reason,
            "quantity": conflict.quantity,
            "sku_keys": [str(k) for k in conflict.sku_keys],
        },
    )


def _degradable(name: str, future: Future[list[T]], degraded: list[str]) -> list[T]:
    # requests exceptions derive from OSError
    try:
        return list(future.result())
    except (ProviderError, LedgerError, OSError, ValueError) as exc:
        logger.warning("feed_degraded", extra={
            "feed": name,
            "error_code": getattr(exc, "code", type(exc).__name__),
            "error": str(exc),
        })
        degraded.append(name)
        return []
