#!/usr/bin/env python3
"""
Warm the exchange-rate cache from the Riksbank observations API.

For every configured currency series the cache is topped up from the day
after its latest stored date (or the configured epoch) through today, and
the new observations are written to the rate database.

Usage:
    python3 scripts/populate_exchange_rates.py [--currency USD ...] [options]

Examples:
    # All configured series into the configured database
    python3 scripts/populate_exchange_rates.py

    # Only EUR, into a specific SQLite file
    python3 scripts/populate_exchange_rates.py --currency EUR --db-url sqlite:///rates.db
"""

from __future__ import annotations

import argparse
import sys

from _common import add_common_arguments, build_resolver, load_config


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fetch missing daily exchange rates into the rate cache.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--currency",
        action="append",
        default=None,
        help="Currency to refresh (repeatable). Default: every configured series.",
    )
    add_common_arguments(parser)
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    if args.offline:
        print("ERROR: --offline makes no sense when populating the cache.", file=sys.stderr)
        return 1

    from valuation_kernel.exceptions import ValuationKernelError

    try:
        config = load_config(args)
        currencies = [c.upper() for c in (args.currency or config.exchange_rates.series)]
        unknown = [c for c in currencies if c not in config.exchange_rates.series]
        if unknown:
            print(f"ERROR: No rate series configured for {unknown}", file=sys.stderr)
            return 1

        resolver = build_resolver(config, args)
        before = {c: resolver.load(c) for c in currencies}
        after = resolver.preload(currencies, refresh=True, max_workers=config.valuation.max_workers)
        written = resolver.flush()
    except ValuationKernelError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    for code in currencies:
        print(f"  {code}: {before[code]} -> {after.get(code, before[code])} cached dates")
    print(f"Wrote {written} new observations.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
