"""
Shared wiring for the valuation scripts.

Builds the rate resolver (SQLAlchemy cache + Riksbank client) and the
valuation service over a directory of exported feeds.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from valuation_config import ValuationConfig, get_active_config  # noqa: E402
from valuation_ingestion.file_providers import file_feeds_for_directory  # noqa: E402
from valuation_ingestion.riksbank import RiksbankRateClient  # noqa: E402
from valuation_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url  # noqa: E402
from valuation_kernel.domain.clock import SystemClock  # noqa: E402
from valuation_kernel.logging_config import configure_logging  # noqa: E402
from valuation_services import (  # noqa: E402
    ExchangeRateResolver,
    InventoryValuationService,
    SqlAlchemyRateRepository,
)


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML file merged over the packaged defaults.",
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="Rate cache database URL (default: database.url from config).",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Never call the rate API; resolve from the cache only.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Emit DEBUG logs (engine traces included) to stderr.",
    )


def load_config(args: argparse.Namespace) -> ValuationConfig:
    configure_logging(level=logging.DEBUG if args.verbose else logging.WARNING)
    return get_active_config(args.config)


def build_resolver(config: ValuationConfig, args: argparse.Namespace) -> ExchangeRateResolver:
    init_engine_from_url(args.db_url or config.database_url)
    create_tables()
    provider = None if args.offline else RiksbankRateClient.from_settings(config.exchange_rates)
    return ExchangeRateResolver(
        SqlAlchemyRateRepository(get_session_factory()),
        provider,
        clock=SystemClock(),
        settings=config.exchange_rates,
        base_currency=config.base_currency,
    )


def build_service(
    config: ValuationConfig,
    resolver: ExchangeRateResolver,
    data_dir: Path,
) -> InventoryValuationService:
    feeds = file_feeds_for_directory(data_dir, config.base_currency)
    return InventoryValuationService(
        stock=feeds.stock,
        deliveries=feeds.deliveries,
        stock_changes=feeds.stock_changes,
        channel=feeds.channel,
        resolver=resolver,
        clock=SystemClock(),
        config=config,
    )
