"""
Ledger record transformation -- raw feed records into domain records.

Responsibility:
    Normalize purchase-order delivery lines and stock-change lines into
    ``LedgerEntry`` objects, and snapshot / channel rows into
    ``StockRecord`` / ``ChannelStockRecord``.  Unusable receipt lines are
    skipped with a log record; they never reach the engines.

Raw shapes (JSON exports; CSV exports use dotted column names):

    delivery:
        {"id", "createdAt", "purchaseOrder": {"id"}, "supplier": {"name"},
         "lines": [{"quantity", "product": {"id", "name"},
                    "productVariant": {"id", "name", "variantNumber"},
                    "productSize": {"id", "SKU", "EAN", "sizeNumber", "size"},
                    "unitCost": {"value"}, "customsValue": {"value"},
                    "landedCost": {"value", "currency": {"code"}}}]}

    stock change line:
        {"id", "deliveredQuantity", "unitCost": {"value", "currency": {"code"}},
         "stockChange": {"id", "createdAt"},
         "productSize": {"id", "SKU", "EAN", "sizeNumber", "size",
                         "productVariant": {"id", "name", "variantNumber",
                                            "product": {"id", "name"}}}}

    stock snapshot row:
        {"variantId", "sizeNumber", "EAN", "quantity", "productNumber",
         "productName", "productId", "variantName", "variantNumber", "size"}

    channel row:
        {"EAN", "quantity"}

Failure modes:
    - InvalidLedgerEntryError for a line that has a size id but carries
      malformed values (unparseable number, timestamp or currency).  The
      single-line transforms raise it; ``transform_delivery`` and
      ``transform_stock_changes`` log the line and skip it so one bad line
      never costs the rest of the ledger.
    - Malformed snapshot or channel rows raise InvalidLedgerEntryError too.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from collections.abc import Iterable, Iterator
from typing import Any

from valuation_kernel.domain.inventory import (
    ChannelStockRecord,
    LandedCost,
    LedgerEntry,
    ProductDescriptor,
    SkuKey,
    SourceKind,
    StockRecord,
)
from valuation_kernel.domain.values import Money
from valuation_kernel.exceptions import InvalidLedgerEntryError
from valuation_kernel.logging_config import get_logger

logger = get_logger("ingestion.transform")

_SIZE_SUFFIX = re.compile(r"[A-Z]{2}$")


def _get(record: Any, path: str, default: Any = None) -> Any:
    """Follow a dotted path through nested dicts."""
    current = record
    for key in path.split("."):
        if not isinstance(current, dict):
            return default
        current = current.get(key)
        if current is None:
            return default
    return current


def _decimal(value: Any, field: str, entry_id: str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidLedgerEntryError(entry_id, f"{field} is not a number: {value!r}") from exc


def _optional_int(value: Any, field: str = "", entry_id: str = "") -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError, OverflowError) as exc:
        raise InvalidLedgerEntryError(entry_id, f"{field} is not an integer: {value!r}") from exc


def _int(value: Any, field: str = "", entry_id: str = "") -> int:
    parsed = _optional_int(value, field, entry_id)
    return 0 if parsed is None else parsed


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_timestamp(value: Any, entry_id: str = "") -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError as exc:
            raise InvalidLedgerEntryError(entry_id, f"bad timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def product_number_from_sku(sku: str | None) -> str | None:
    """Strip the two-letter uppercase size suffix: ``"AW12-WXS"`` -> ``"AW12-W"``."""
    if not sku:
        return None
    return _SIZE_SUFFIX.sub("", sku) or None


def _money(amount: Decimal, currency: str, entry_id: str) -> Money:
    try:
        return Money.of(amount, currency)
    except ValueError as exc:
        raise InvalidLedgerEntryError(entry_id, str(exc)) from exc


def transform_delivery_line(
    delivery: dict[str, Any],
    line: dict[str, Any],
    base_currency: str,
) -> LedgerEntry | None:
    """
    One delivery line -> one delivery LedgerEntry.

    Returns None (and logs) for a line without a product size id or
    without a positive quantity.
    """
    delivery_id = _optional_str(_get(delivery, "id"))
    size_id = _optional_str(_get(line, "productSize.id"))
    if size_id is None:
        logger.warning("delivery_line_skipped", extra={
            "delivery_id": delivery_id,
            "reason": "missing_product_size",
        })
        return None

    entry_id = f"{size_id}_{delivery_id}"
    quantity = _int(_get(line, "quantity"), "quantity", entry_id)
    if quantity <= 0:
        logger.warning("delivery_line_skipped", extra={
            "entry_id": entry_id,
            "reason": "non_positive_quantity",
            "quantity": quantity,
        })
        return None

    currency = _optional_str(_get(line, "landedCost.currency.code")) or base_currency
    unit = _decimal(_get(line, "unitCost.value", 0), "unitCost", entry_id)
    customs = _decimal(_get(line, "customsValue.value", 0), "customsValue", entry_id)
    landed = _decimal(_get(line, "landedCost.value", unit), "landedCost", entry_id)
    shipping = max(Decimal("0"), landed - unit - customs)

    landed_cost = LandedCost(
        product=_money(unit, currency, entry_id),
        customs=_money(customs, currency, entry_id),
        shipping=_money(shipping, currency, entry_id),
    )

    variant_id = _optional_int(_get(line, "productVariant.id"), "productVariant.id", entry_id)
    if variant_id is None:
        raise InvalidLedgerEntryError(entry_id, "missing productVariant.id")

    return LedgerEntry(
        entry_id=entry_id,
        source_kind=SourceKind.DELIVERY,
        sku_key=SkuKey(variant_id, _optional_str(_get(line, "productSize.sizeNumber"))),
        ean=_optional_str(_get(line, "productSize.EAN")),
        timestamp=parse_timestamp(_get(delivery, "createdAt"), entry_id),
        quantity=quantity,
        unit_cost=_money(landed, currency, entry_id),
        supplier=_optional_str(_get(delivery, "supplier.name")),
        landed_cost=landed_cost,
        purchase_order_id=_optional_str(_get(delivery, "purchaseOrder.id")),
        delivery_id=delivery_id,
        descriptor=ProductDescriptor(
            product_number=product_number_from_sku(_optional_str(_get(line, "productSize.SKU"))),
            product_name=_optional_str(_get(line, "product.name")),
            product_id=_optional_int(_get(line, "product.id"), "product.id", entry_id),
            variant_name=_optional_str(_get(line, "productVariant.name")),
            variant_number=_optional_str(_get(line, "productVariant.variantNumber")),
            size=_optional_str(_get(line, "productSize.size")),
        ),
    )


def _rejected(event: str, exc: InvalidLedgerEntryError) -> None:
    logger.warning(event, extra={
        "entry_id": exc.entry_id,
        "reason": exc.reason,
        "error_code": exc.code,
    })


def transform_delivery(delivery: dict[str, Any], base_currency: str) -> Iterator[LedgerEntry]:
    """All usable lines of one delivery; malformed lines are logged and skipped."""
    for line in delivery.get("lines") or ():
        try:
            entry = transform_delivery_line(delivery, line, base_currency)
        except InvalidLedgerEntryError as exc:
            _rejected("delivery_line_rejected", exc)
            continue
        if entry is not None:
            yield entry


def transform_stock_change_line(
    line: dict[str, Any],
    base_currency: str,
) -> LedgerEntry | None:
    """
    One stock-change line -> one stock-change LedgerEntry.

    Returns None for lines with no product size id, a delivered quantity
    <= 0, or no unit cost.
    """
    size_id = _optional_str(_get(line, "productSize.id"))
    change_id = _optional_str(_get(line, "stockChange.id"))
    line_id = _optional_str(_get(line, "id"))
    quantity = _int(_get(line, "deliveredQuantity"), "deliveredQuantity", line_id or "")
    raw_cost = _get(line, "unitCost.value")

    reason = None
    if size_id is None:
        reason = "missing_product_size"
    elif quantity <= 0:
        reason = "non_positive_quantity"
    elif raw_cost is None or raw_cost == "":
        reason = "missing_unit_cost"
    if reason is not None:
        logger.debug("stock_change_line_skipped", extra={
            "stock_change_id": change_id,
            "line_id": line_id,
            "reason": reason,
        })
        return None

    entry_id = f"{size_id}_{change_id}_{line_id}"
    unit_cost = _decimal(raw_cost, "unitCost", entry_id)
    if unit_cost == 0:
        logger.debug("stock_change_line_skipped", extra={
            "entry_id": entry_id,
            "reason": "missing_unit_cost",
        })
        return None
    currency = _optional_str(_get(line, "unitCost.currency.code")) or base_currency

    variant_id = _optional_int(
        _get(line, "productSize.productVariant.id"), "productSize.productVariant.id", entry_id,
    )
    if variant_id is None:
        raise InvalidLedgerEntryError(entry_id, "missing productSize.productVariant.id")

    return LedgerEntry(
        entry_id=entry_id,
        source_kind=SourceKind.STOCK_CHANGE,
        sku_key=SkuKey(variant_id, _optional_str(_get(line, "productSize.sizeNumber"))),
        ean=_optional_str(_get(line, "productSize.EAN")),
        timestamp=parse_timestamp(_get(line, "stockChange.createdAt"), entry_id),
        quantity=quantity,
        unit_cost=_money(unit_cost, currency, entry_id),
        stock_change_id=change_id,
        descriptor=ProductDescriptor(
            product_number=product_number_from_sku(_optional_str(_get(line, "productSize.SKU"))),
            product_name=_optional_str(_get(line, "productSize.productVariant.product.name")),
            product_id=_optional_int(
                _get(line, "productSize.productVariant.product.id"), "product.id", entry_id,
            ),
            variant_name=_optional_str(_get(line, "productSize.productVariant.name")),
            variant_number=_optional_str(_get(line, "productSize.productVariant.variantNumber")),
            size=_optional_str(_get(line, "productSize.size")),
        ),
    )


def transform_stock_changes(lines: Iterable[dict[str, Any]], base_currency: str) -> Iterator[LedgerEntry]:
    """All usable stock-change lines; malformed lines are logged and skipped."""
    for line in lines:
        try:
            entry = transform_stock_change_line(line, base_currency)
        except InvalidLedgerEntryError as exc:
            _rejected("stock_change_line_rejected", exc)
            continue
        if entry is not None:
            yield entry


def transform_stock_record(row: dict[str, Any]) -> StockRecord:
    """One snapshot row -> StockRecord. Negative quantities are kept as-is."""
    variant_id = _optional_int(_get(row, "variantId"), "variantId", "stock row")
    if variant_id is None:
        raise ValueError(f"Stock snapshot row without variantId: {row!r}")
    return StockRecord(
        sku_key=SkuKey(variant_id, _optional_str(_get(row, "sizeNumber"))),
        ean=_optional_str(_get(row, "EAN")),
        warehouse_quantity=_int(_get(row, "quantity"), "quantity", f"stock row {variant_id}"),
        descriptor=ProductDescriptor(
            product_number=_optional_str(_get(row, "productNumber")),
            product_name=_optional_str(_get(row, "productName")),
            product_id=_optional_int(_get(row, "productId"), "productId", f"stock row {variant_id}"),
            variant_name=_optional_str(_get(row, "variantName")),
            variant_number=_optional_str(_get(row, "variantNumber")),
            size=_optional_str(_get(row, "size")),
        ),
    )


def transform_channel_record(row: dict[str, Any]) -> ChannelStockRecord | None:
    """One channel row -> ChannelStockRecord; rows without a barcode are dropped."""
    ean = _optional_str(_get(row, "EAN"))
    if ean is None:
        return None
    quantity = _int(_get(row, "quantity"), "quantity", f"channel row {ean}")
    return ChannelStockRecord(ean=ean, quantity=quantity)
