#!/usr/bin/env python3
"""
Explain the FIFO layers of one product, size by size.

Prints, for every size of the product, the on-hand split, how much of
each receipt was consumed by sales, the surviving layers with their
historical rates, and any unknown-cost quantity.  Useful when a product's
value looks wrong on the dashboard.

Usage:
    python3 scripts/check_product_fifo.py --company <id> --data-dir <path> --product <number>
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from _common import add_common_arguments, build_resolver, build_service, load_config


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Show how FIFO layers were built for one product.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--company", required=True, help="Company id (sub-directory of --data-dir).")
    parser.add_argument("--data-dir", required=True, type=Path, help="Root directory of feed exports.")
    parser.add_argument("--product", required=True, help="Product number to explain.")
    add_common_arguments(parser)
    return parser.parse_args()


def _print_size(size) -> None:
    result = size.result
    origin = " (channel only)" if size.channel_only else ""
    print(f"  Size {size.descriptor.size or '-'} [{size.sku_key}] EAN {size.ean or '-'}{origin}")
    print(
        f"    on hand {result.total_on_hand} "
        f"(warehouse {result.warehouse_quantity}, store {result.store_quantity}), "
        f"received {result.total_received}, sold {result.sold_quantity}, "
        f"source {result.chosen_source.value if result.chosen_source else 'none'}"
    )
    for c in result.consumptions:
        print(
            f"    receipt {c.entry_id}: {c.original_quantity} in, "
            f"{c.consumed_quantity} consumed, {c.remaining_quantity} left"
        )
    for layer in size.layers:
        flag = " FALLBACK RATE" if layer.rate_is_fallback else ""
        print(
            f"    layer {layer.timestamp.date()} {layer.remaining_quantity}/{layer.original_quantity} "
            f"@ {layer.unit_cost_original} x {layer.exchange_rate} = {layer.unit_cost_base} "
            f"-> {layer.layer_value} ({layer.age_in_days} d){flag}"
        )
    if result.unknown_quantity:
        print(f"    unknown cost: {result.unknown_quantity} units")
    print(f"    value {size.total_value}, weighted average cost {size.totals.weighted_average_cost}")


def main() -> int:
    args = _parse_args()

    from valuation_kernel.exceptions import ValuationKernelError

    try:
        config = load_config(args)
        resolver = build_resolver(config, args)
        service = build_service(config, resolver, args.data_dir)
        report = service.calculate_valuation(args.company, product_number=args.product)
    except ValuationKernelError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    product = report.find_product(args.product)
    if product is None:
        print(f"No stock on hand for product {args.product!r}.")
        return 0

    print(f"{product.product_number} {product.product_name or ''}".rstrip())
    print(f"Total {product.totals.total_quantity} units, value {product.total_value}")
    for variant in product.variants:
        print(f"Variant {variant.variant_number or variant.variant_id} {variant.variant_name or ''}".rstrip())
        for size in variant.sizes:
            _print_size(size)
    for issue in report.data_quality_issues:
        print(f"[{issue.kind}] {issue.message}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
