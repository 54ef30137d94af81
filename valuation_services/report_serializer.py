"""
valuation_services.report_serializer -- JSON-ready shape of a valuation report.

The size-level shape is consumed by the dashboard and by the bookkeeping
reconciliation report, so its keys are stable camelCase names.  Money is
rendered as a decimal string (precision preserved), dates and datetimes
as ISO-8601 strings, enums by value.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from valuation_engines.valuation.aggregation import (
    PortfolioSummary,
    ProductValuation,
    SizeValuation,
    ValuationTotals,
    VariantValuation,
)
from valuation_kernel.domain.inventory import InventoryLayer
from valuation_kernel.domain.values import Money
from valuation_services.valuation_service import DataQualityIssue, ValuationReport


def _money(value: Money) -> str:
    return str(value.amount)


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _enum_map(mapping: Mapping[Enum, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for member, value in mapping.items():
        out[member.value] = _money(value) if isinstance(value, Money) else value
    return out


def layer_to_dict(layer: InventoryLayer) -> dict[str, Any]:
    return {
        "purchaseOrderId": layer.purchase_order_id,
        "purchaseOrderDeliveryId": layer.delivery_id,
        "stockChangeId": layer.stock_change_id,
        "deliveryDate": _iso(layer.timestamp),
        "unitCost": _money(layer.unit_cost_base),
        "quantity": layer.original_quantity,
        "remainingQuantity": layer.remaining_quantity,
        "layerValue": _money(layer.layer_value),
        "ageInDays": layer.age_in_days,
        "supplierName": layer.supplier,
        "source": layer.source.value,
        "originalUnitCost": _money(layer.unit_cost_original),
        "originalCurrency": layer.unit_cost_original.currency.code,
        "exchangeRate": str(layer.exchange_rate),
        "rateIsFallback": layer.rate_is_fallback,
    }


def size_to_dict(size: SizeValuation) -> dict[str, Any]:
    totals = size.totals
    return {
        "EAN": size.ean,
        "size": size.descriptor.size,
        "sizeNumber": size.sku_key.size_number,
        "skuKey": str(size.sku_key),
        "currentStock": size.current_stock,
        "totalValue": _money(size.total_value),
        "weightedAverageCost": _money(totals.weighted_average_cost),
        "inventoryLayers": [layer_to_dict(layer) for layer in size.layers],
        "oldestPurchaseDate": _iso(size.oldest_purchase_date),
        "newestPurchaseDate": _iso(size.newest_purchase_date),
        "averageAgeInDays": totals.average_age_in_days,
        "maxAgeInDays": totals.max_age_in_days,
        "primarySource": size.primary_source.value,
        "quantityBySource": _enum_map(totals.quantity_by_source),
        "stockByLocation": _enum_map(totals.stock_by_location),
        "valueByLocation": _enum_map(totals.value_by_location),
        "channelOnly": size.channel_only,
    }


def _rollup(totals: ValuationTotals) -> dict[str, Any]:
    return {
        "totalStock": totals.total_quantity,
        "totalValue": _money(totals.total_value),
        "averageCost": _money(totals.average_cost),
        "averageAgeInDays": totals.average_age_in_days,
        "maxAgeInDays": totals.max_age_in_days,
    }


def variant_to_dict(variant: VariantValuation) -> dict[str, Any]:
    return {
        "variantId": variant.variant_id,
        "variantNumber": variant.variant_number,
        "variantName": variant.variant_name,
        **_rollup(variant.totals),
        "sizes": [size_to_dict(size) for size in variant.sizes],
    }


def product_to_dict(product: ProductValuation) -> dict[str, Any]:
    return {
        "productNumber": product.product_number,
        "productName": product.product_name,
        "productId": product.product_id,
        **_rollup(product.totals),
        "variants": [variant_to_dict(variant) for variant in product.variants],
    }


def summary_to_dict(summary: PortfolioSummary) -> dict[str, Any]:
    totals = summary.totals
    return {
        "totalValue": _money(summary.total_value),
        "totalValueExact": _money(totals.total_value),
        "totalItems": summary.total_items,
        "averageCost": _money(totals.average_cost),
        "averageAgeInDays": totals.average_age_in_days,
        "valueByAgeGroup": _enum_map(summary.value_by_age_group),
        "itemsByAgeGroup": _enum_map(totals.items_by_age_group),
        "unknownCostItems": summary.unknown_cost_items,
        "itemsBySource": _enum_map(totals.quantity_by_source),
        "valueBySource": _enum_map(summary.value_by_source),
        "totalValueByLocation": _enum_map(summary.value_by_location),
        "totalStockByLocation": _enum_map(totals.stock_by_location),
        "fallbackLayers": totals.fallback_layer_count,
        "currencies": sorted(totals.currencies),
        "productCount": summary.product_count,
        "calculatedAt": _iso(summary.calculated_at),
    }


def issue_to_dict(issue: DataQualityIssue) -> dict[str, Any]:
    return {
        "kind": issue.kind,
        "message": issue.message,
        "skuKey": issue.sku_key,
        "EAN": issue.ean,
        "details": {k: (str(v) if isinstance(v, Decimal) else v) for k, v in issue.details.items()},
    }


def report_to_dict(report: ValuationReport) -> dict[str, Any]:
    """Render a ValuationReport as plain JSON-serializable data."""
    return {
        "companyId": report.company_id,
        "runId": report.run_id,
        "asOf": _iso(report.as_of),
        "baseCurrency": report.base_currency,
        "products": [product_to_dict(product) for product in report.products],
        "summary": summary_to_dict(report.summary),
        "dataQualityIssues": [issue_to_dict(issue) for issue in report.data_quality_issues],
        "degradedSources": list(report.degraded_sources),
    }
