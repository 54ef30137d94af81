"""
Tests for InventoryValuationService.

Runs whole valuations over in-memory feeds and checks:
- The product tree and portfolio totals
- Channel stock, channel-only units and the product filter
- Data-quality reporting (negative on-hand, duplicate keys, shared EANs)
- Feed degradation and the mandatory stock snapshot
- Rate fallback, rate write-back and run determinism
"""

from datetime import date
from decimal import Decimal

import pytest
import requests

from valuation_kernel.domain.inventory import Location, SkuKey, ValuationSource
from valuation_kernel.domain.values import Money
from valuation_kernel.exceptions import (
    InvalidLedgerEntryError,
    ProviderUnavailableError,
    StockSnapshotUnavailableError,
)
from valuation_services.exchange_rate_service import ExchangeRateResolver
from valuation_services.rate_repository import InMemoryRateRepository, RateObservation
from valuation_services.valuation_service import (
    FEED_CHANNEL,
    FEED_DELIVERIES,
    ISSUE_CHANNEL_CONFLICT,
    ISSUE_DUPLICATE_SIZE_KEY,
    ISSUE_NEGATIVE_ON_HAND,
    ISSUE_SHARED_EAN,
    InventoryValuationService,
)

from tests.fakes import (
    FakeRateProvider,
    InMemoryChannelProvider,
    InMemoryLedgerProvider,
    InMemoryStockProvider,
    make_delivery,
    make_stock,
    make_stock_change,
)

E1 = "7350000000011"
E2 = "7350000000028"
E3 = "7350000000035"


def sek(amount) -> Money:
    return Money.of(str(amount), "SEK")


class ServiceHarness:
    """Builds a service over in-memory feeds for one test."""

    def __init__(self, clock, config, *, stock=(), deliveries=(), stock_changes=(),
                 channel=None, rates=(), stock_error=None, **ledger_errors):
        self.repo = InMemoryRateRepository(rates)
        self.provider = FakeRateProvider()
        self.resolver = ExchangeRateResolver(
            self.repo,
            self.provider,
            clock=clock,
            settings=config.exchange_rates,
            base_currency=config.base_currency,
        )
        ledger = InMemoryLedgerProvider(deliveries, stock_changes, **ledger_errors)
        self.service = InventoryValuationService(
            stock=InMemoryStockProvider(stock, error=stock_error),
            deliveries=ledger,
            stock_changes=ledger,
            channel=InMemoryChannelProvider(channel) if channel is not None else None,
            resolver=self.resolver,
            clock=clock,
            config=config,
        )

    def run(self, product_number=None):
        return self.service.calculate_valuation("acme", product_number)


@pytest.fixture
def portfolio(deterministic_clock, valuation_config):
    """
    Two products, three sizes:

    AW12-W / variant 1 / size 2: 10 on hand, 8 @ 100 SEK then 5 @ 10 USD (10.50)
    AW12-W / variant 1 / size 3: 3 on hand, no ledger entries
    SS13-T / variant 2 / size 1: 5 on hand, stock change 5 @ 50 SEK
    """
    return dict(
        clock=deterministic_clock,
        config=valuation_config,
        stock=[
            make_stock(10, variant_id=1, size_number="2", ean=E1),
            make_stock(3, variant_id=1, size_number="3", ean=E2, size="L"),
            make_stock(5, variant_id=2, size_number="1", ean=E3, product_number="SS13-T"),
        ],
        deliveries=[
            make_delivery(8, 100, on="2024-01-01", ean=E1),
            make_delivery(5, 10, on="2024-06-03", currency="USD", ean=E1),
        ],
        stock_changes=[
            make_stock_change(5, 50, on="2024-09-01", variant_id=2, size_number="1",
                              ean=E3, product_number="SS13-T"),
        ],
        rates=[RateObservation("USD", date(2024, 6, 3), Decimal("10.50"))],
    )


class TestPortfolioValuation:
    """End-to-end valuation of a small portfolio."""

    def test_total_value_and_counts(self, portfolio):
        """Sold units come off the oldest layer; unknown units carry no value."""
        report = ServiceHarness(**portfolio).run()

        # size 2: 5 @ 100 + 5 @ 105 = 1025; size 3: unknown; SS13-T: 250
        assert report.summary.total_value == sek(1275)
        assert report.summary.total_items == 18
        assert report.summary.unknown_cost_items == 3
        assert report.summary.product_count == 2

    def test_products_sorted_with_variants_and_sizes(self, portfolio):
        """The tree is sorted by product number, then size number."""
        report = ServiceHarness(**portfolio).run()

        assert [p.product_number for p in report.products] == ["AW12-W", "SS13-T"]
        coat = report.find_product("AW12-W")
        assert [s.sku_key for s in coat.variants[0].sizes] == [SkuKey(1, "2"), SkuKey(1, "3")]
        assert coat.total_value == sek(1025)

    def test_layers_priced_in_base_currency(self, portfolio):
        """The USD delivery is converted at its own delivery-date rate."""
        report = ServiceHarness(**portfolio).run()
        size = next(s for s in report.iter_sizes() if s.sku_key == SkuKey(1, "2"))

        assert [layer.remaining_quantity for layer in size.layers] == [5, 5]
        assert size.layers[1].unit_cost_base == sek("105.00")
        assert size.layers[1].exchange_rate == Decimal("10.50")
        assert size.result.sold_quantity == 3
        assert size.primary_source == ValuationSource.DELIVERY

    def test_stock_change_source_used_without_deliveries(self, portfolio):
        """A size with only stock changes is valued from them."""
        report = ServiceHarness(**portfolio).run()
        tee = report.find_product("SS13-T")

        assert tee.total_value == sek(250)
        assert tee.variants[0].sizes[0].primary_source == ValuationSource.STOCK_CHANGE

    def test_product_filter(self, portfolio):
        """Only the requested product is valued and summarised."""
        report = ServiceHarness(**portfolio).run(product_number="SS13-T")

        assert [p.product_number for p in report.products] == ["SS13-T"]
        assert report.summary.total_value == sek(250)

    def test_zero_on_hand_skipped(self, deterministic_clock, valuation_config):
        """Sizes with nothing on hand produce no record."""
        report = ServiceHarness(
            deterministic_clock,
            valuation_config,
            stock=[make_stock(0)],
            deliveries=[make_delivery(4, 10)],
        ).run()

        assert report.products == ()
        assert report.summary.total_value == sek(0)

    def test_empty_snapshot(self, deterministic_clock, valuation_config):
        """An empty company values to zero."""
        report = ServiceHarness(deterministic_clock, valuation_config).run()

        assert report.summary.total_items == 0
        assert report.data_quality_issues == ()


class TestChannelStock:
    """Secondary sales-channel quantities."""

    def test_channel_stock_added_to_matching_size(self, portfolio):
        """Store units join warehouse units before FIFO consumption."""
        report = ServiceHarness(**portfolio, channel={E1: 2}).run()
        size = next(s for s in report.iter_sizes() if s.sku_key == SkuKey(1, "2"))

        # 12 on hand of 13 received: one sold from the 100 SEK layer
        assert size.current_stock == 12
        assert size.total_value == sek(1225)
        assert size.totals.stock_by_location[Location.STORE] == 2
        assert size.totals.stock_by_location[Location.WAREHOUSE] == 10

    def test_channel_only_units_valued(self, deterministic_clock, valuation_config):
        """A channel EAN missing from the snapshot is valued from its ledger."""
        report = ServiceHarness(
            deterministic_clock,
            valuation_config,
            deliveries=[make_delivery(4, 20, variant_id=3, size_number="1", ean="E9")],
            channel={"E9": 2},
        ).run()

        sizes = list(report.iter_sizes())
        assert len(sizes) == 1
        assert sizes[0].channel_only is True
        assert sizes[0].sku_key == SkuKey(3, "1")
        assert sizes[0].total_value == sek(40)

    def test_channel_only_without_ledger_excluded(self, deterministic_clock, valuation_config):
        """A channel EAN nobody ever received is left out."""
        report = ServiceHarness(deterministic_clock, valuation_config, channel={"E404": 6}).run()

        assert report.products == ()

    def test_channel_only_respects_product_filter(self, deterministic_clock, valuation_config):
        """Channel-only sizes of other products are filtered out."""
        report = ServiceHarness(
            deterministic_clock,
            valuation_config,
            deliveries=[make_delivery(4, 20, variant_id=3, ean="E9", product_number="OTHER")],
            channel={"E9": 2},
        ).run(product_number="AW12-W")

        assert report.products == ()


class TestDataQuality:
    """Inconsistent feeds are reported, not silently corrected."""

    def test_negative_warehouse_clamped_and_reported(self, deterministic_clock, valuation_config, captured_logs):
        """Negative on-hand counts as zero and raises an issue."""
        report = ServiceHarness(
            deterministic_clock,
            valuation_config,
            stock=[make_stock(-2)],
            deliveries=[make_delivery(5, 10)],
        ).run()

        assert report.products == ()
        assert [i.kind for i in report.data_quality_issues] == [ISSUE_NEGATIVE_ON_HAND]
        assert report.data_quality_issues[0].details["quantity"] == -2
        assert any(r["message"] == "data_quality_issue" for r in captured_logs())

    def test_negative_channel_quantity_reported(self, deterministic_clock, valuation_config):
        """A negative channel count is reported and contributes nothing."""
        report = ServiceHarness(
            deterministic_clock,
            valuation_config,
            stock=[make_stock(3, ean=E1)],
            deliveries=[make_delivery(3, 10, ean=E1)],
            channel={E1: -1},
        ).run()

        assert report.summary.total_items == 3
        assert report.data_quality_issues[0].kind == ISSUE_NEGATIVE_ON_HAND
        assert report.data_quality_issues[0].ean == E1

    def test_duplicate_size_key_keeps_first_row(self, deterministic_clock, valuation_config):
        """A repeated size key is valued once, from its first row."""
        report = ServiceHarness(
            deterministic_clock,
            valuation_config,
            stock=[make_stock(2), make_stock(9)],
            deliveries=[make_delivery(5, 10)],
        ).run()

        assert report.summary.total_items == 2
        issue = report.data_quality_issues[0]
        assert issue.kind == ISSUE_DUPLICATE_SIZE_KEY
        assert issue.details == {"kept_quantity": 2, "ignored_quantity": 9}

    def test_shared_ean_attributes_channel_stock_once(self, deterministic_clock, valuation_config):
        """Channel stock for a shared EAN lands on the first size key only."""
        report = ServiceHarness(
            deterministic_clock,
            valuation_config,
            stock=[
                make_stock(1, size_number="2", ean=E1),
                make_stock(1, size_number="3", ean=E1),
            ],
            channel={E1: 4},
        ).run()

        quantities = {s.sku_key.size_number: s.current_stock for s in report.iter_sizes()}
        assert quantities == {"2": 5, "3": 1}
        assert report.data_quality_issues[0].kind == ISSUE_SHARED_EAN

    def test_channel_ean_of_snapshot_size_not_valued_twice(self, deterministic_clock, valuation_config):
        """Receipts of a snapshot size without an EAN are not re-valued from the channel."""
        report = ServiceHarness(
            deterministic_clock,
            valuation_config,
            stock=[make_stock(10, ean=None)],
            deliveries=[make_delivery(10, 100, ean=E1)],
            channel={E1: 10},
        ).run()

        assert [(str(s.sku_key), s.channel_only) for s in report.iter_sizes()] == [("1-2", False)]
        assert report.summary.total_value == sek(1000)
        assert report.summary.totals.costed_quantity == 10
        [issue] = report.data_quality_issues
        assert issue.kind == ISSUE_CHANNEL_CONFLICT
        assert issue.ean == E1
        assert issue.sku_key == "1-2"
        assert issue.details["reason"] == "sku_key_in_snapshot"

    def test_channel_ean_spanning_size_keys_reported(self, deterministic_clock, valuation_config):
        """Receipts of one EAN under two size keys are not merged into one size."""
        report = ServiceHarness(
            deterministic_clock,
            valuation_config,
            deliveries=[
                make_delivery(3, 20, variant_id=3, size_number="1", ean="E9", on="2024-01-01"),
                make_delivery(3, 30, variant_id=4, size_number="1", ean="E9", on="2024-02-01"),
            ],
            channel={"E9": 2},
        ).run()

        assert report.products == ()
        [issue] = report.data_quality_issues
        assert issue.kind == ISSUE_CHANNEL_CONFLICT
        assert issue.details == {
            "reason": "multiple_sku_keys",
            "quantity": 2,
            "sku_keys": ["3-1", "4-1"],
        }


class TestDegradedFeeds:
    """Optional feeds fail soft; the stock snapshot fails hard."""

    def test_delivery_feed_failure_degrades(self, portfolio, captured_logs):
        """Without deliveries the run continues and says so."""
        report = ServiceHarness(
            **portfolio,
            delivery_error=ProviderUnavailableError("erp", "HTTP 503", status_code=503),
        ).run()

        assert report.degraded_sources == (FEED_DELIVERIES,)
        assert report.find_product("AW12-W").totals.unknown_quantity == 13
        assert report.find_product("SS13-T").total_value == sek(250)
        degraded = [r for r in captured_logs() if r["message"] == "feed_degraded"]
        assert degraded[0]["error_code"] == "PROVIDER_UNAVAILABLE"

    @pytest.mark.parametrize("error", [
        ConnectionError("reset by peer"),
        TimeoutError("read timed out"),
        requests.ConnectionError("max retries exceeded"),
        ValueError("Expecting value: line 1 column 1"),
    ])
    def test_transport_error_degrades(self, portfolio, captured_logs, error):
        """Errors a provider lets escape degrade the feed, not the run."""
        report = ServiceHarness(**portfolio, delivery_error=error).run()

        assert report.degraded_sources == (FEED_DELIVERIES,)
        assert report.find_product("SS13-T").total_value == sek(250)
        degraded = [r for r in captured_logs() if r["message"] == "feed_degraded"]
        assert degraded[0]["error_code"] == type(error).__name__

    def test_invalid_ledger_degrades(self, portfolio):
        """A malformed ledger is treated like an unavailable one."""
        report = ServiceHarness(
            **portfolio,
            stock_change_error=InvalidLedgerEntryError("sc1", "quantity must be positive"),
        ).run()

        assert report.degraded_sources == ("stock_changes",)

    def test_channel_failure_degrades(self, portfolio):
        """A broken channel feed means warehouse-only stock."""
        harness = ServiceHarness(**portfolio)
        harness.service._channel = InMemoryChannelProvider(
            error=ProviderUnavailableError("shop", "timeout"),
        )

        report = harness.run()

        assert report.degraded_sources == (FEED_CHANNEL,)
        assert report.summary.total_items == 18

    def test_stock_snapshot_failure_aborts(self, portfolio):
        """No snapshot, no valuation."""
        with pytest.raises(StockSnapshotUnavailableError) as exc_info:
            ServiceHarness(
                **portfolio,
                stock_error=ProviderUnavailableError("erp", "connection refused"),
            ).run()

        assert exc_info.value.code == "STOCK_SNAPSHOT_UNAVAILABLE"


class TestRatesAndDeterminism:
    """Interaction with the rate cache across runs."""

    def test_missing_rate_falls_back_to_parity(self, deterministic_clock, valuation_config):
        """An unresolvable EUR cost is taken at 1:1 and counted."""
        report = ServiceHarness(
            deterministic_clock,
            valuation_config,
            stock=[make_stock(2)],
            deliveries=[make_delivery(2, 30, currency="EUR")],
        ).run()

        assert report.summary.total_value == sek(60)
        assert report.summary.totals.fallback_layer_count == 1
        assert report.summary.totals.currencies == frozenset({"EUR"})

    def test_carried_forward_rate_flushed_after_run(self, deterministic_clock, valuation_config):
        """A weekend delivery date is written back to the cache."""
        harness = ServiceHarness(
            deterministic_clock,
            valuation_config,
            stock=[make_stock(1)],
            deliveries=[make_delivery(1, 10, on="2024-06-08", currency="USD")],
            rates=[RateObservation("USD", date(2024, 6, 7), Decimal("10.40"))],
        )

        report = harness.run()

        assert report.summary.total_value == sek(104)
        assert harness.repo.load("USD")[date(2024, 6, 8)] == Decimal("10.40")

    def test_repeated_runs_are_identical(self, portfolio):
        """Same feeds and clock give the same figures; only run_id changes."""
        harness = ServiceHarness(**portfolio)

        first = harness.run()
        second = harness.run()

        assert first.summary == second.summary
        assert first.products == second.products
        assert first.run_id != second.run_id

    def test_run_logged_with_context(self, portfolio, captured_logs):
        """Start and completion are logged under the run's id."""
        report = ServiceHarness(**portfolio).run()

        logs = captured_logs()
        completed = [r for r in logs if r["message"] == "valuation_completed"]
        assert len(completed) == 1
        assert completed[0]["company_id"] == "acme"
        assert completed[0]["run_id"] == report.run_id
        assert completed[0]["total_value"] == "1275"
        assert any(r["message"] == "valuation_started" for r in logs)
