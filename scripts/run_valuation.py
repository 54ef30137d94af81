#!/usr/bin/env python3
"""
Run a FIFO inventory valuation over exported feeds and print the result.

Feeds are read from ``<data-dir>/<company>/``: ``stock``, ``deliveries``,
``stock_changes`` and (optionally) ``channel_stock`` as .json, .jsonl or
.csv files.

Usage:
    python3 scripts/run_valuation.py --company <id> --data-dir <path> [options]

Examples:
    # Summary table for the whole company
    python3 scripts/run_valuation.py --company acme --data-dir exports/

    # Full JSON report for one product, cache-only rates
    python3 scripts/run_valuation.py --company acme --data-dir exports/ \\
        --product AW12-W --json --offline
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from _common import add_common_arguments, build_resolver, build_service, load_config


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Value current inventory with FIFO cost layers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--company", required=True, help="Company id (sub-directory of --data-dir).")
    parser.add_argument("--data-dir", required=True, type=Path, help="Root directory of feed exports.")
    parser.add_argument("--product", default=None, help="Restrict the report to one product number.")
    parser.add_argument("--json", action="store_true", help="Print the full report as JSON.")
    parser.add_argument("--output", type=Path, default=None, help="Write the JSON report to this file.")
    add_common_arguments(parser)
    return parser.parse_args()


def _print_summary(report) -> None:
    summary = report.summary
    totals = summary.totals
    print(f"Company:        {report.company_id}")
    print(f"As of:          {report.as_of.isoformat()}")
    print(f"Products:       {summary.product_count}")
    print(f"Items on hand:  {summary.total_items}")
    print(f"Total value:    {summary.total_value}")
    print(f"Average cost:   {totals.average_cost}")
    print(f"Average age:    {totals.average_age_in_days} days")
    print(f"Unknown cost:   {summary.unknown_cost_items} items")
    print(f"Fallback rates: {totals.fallback_layer_count} layers")
    print()
    print("By age group:")
    for group, value in totals.value_by_age_group.items():
        print(f"  {group.value:<8} {totals.items_by_age_group[group]:>8}  {value}")
    print("By source:")
    for source, qty in totals.quantity_by_source.items():
        print(f"  {source.value:<12} {qty:>8}  {totals.value_by_source[source]}")
    if report.degraded_sources:
        print(f"Degraded feeds: {', '.join(report.degraded_sources)}")
    if report.data_quality_issues:
        print(f"Data-quality issues ({len(report.data_quality_issues)}):")
        for issue in report.data_quality_issues[:20]:
            print(f"  [{issue.kind}] {issue.message}")
        if len(report.data_quality_issues) > 20:
            print(f"  ... and {len(report.data_quality_issues) - 20} more.")


def main() -> int:
    args = _parse_args()
    if not (args.data_dir / args.company).is_dir():
        print(f"ERROR: No export directory {args.data_dir / args.company}", file=sys.stderr)
        return 1

    from valuation_kernel.exceptions import ValuationKernelError
    from valuation_services import report_to_dict

    try:
        config = load_config(args)
        resolver = build_resolver(config, args)
        service = build_service(config, resolver, args.data_dir)
        report = service.calculate_valuation(args.company, product_number=args.product)
    except ValuationKernelError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    if args.json or args.output:
        payload = json.dumps(report_to_dict(report), indent=2, ensure_ascii=False)
        if args.output:
            args.output.write_text(payload, encoding="utf-8")
            print(f"Report written to {args.output}")
        else:
            print(payload)
    else:
        _print_summary(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
