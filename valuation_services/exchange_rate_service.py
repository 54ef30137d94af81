"""
valuation_services.exchange_rate_service -- Historical exchange-rate resolver.

Responsibility:
    Answer "how many base-currency units was one unit of X worth on date D"
    for every non-base layer the FIFO builder prices.  Answers come from a
    per-currency in-memory cache, loaded from the injected repository on
    first use, topped up from the rate provider at most once per currency,
    and written back by an explicit ``flush()``.

Architecture position:
    Services -- stateful, owns the rate cache for the lifetime of one
    resolver.  Implements the ``RateLookup`` protocol the layer builder
    consumes; engines never see the repository or the provider.

Resolution order for (currency, date):
    1. Exact cached observation.
    2. Latest cached date before it (rates are flat over non-trading days);
       the value is written back under the requested date.
    3. One provider fetch from the day after the latest cached date (or
       the configured epoch) through today, then steps 1-2 again.
    4. Fallback per ``exchange_rates.fallback_policy``.

Invariants enforced:
    - The base currency always resolves to exactly 1 and is never cached.
    - Fallback quotes are flagged and never persisted.
    - Writes to a currency segment (load, fetch merge, write-back) are
      serialized by that segment's lock; exact-hit reads take no lock.
    - The repository is append-only; ``flush`` only submits new dates.

Failure modes:
    - ExchangeRateNotFoundError under the ``error`` fallback policy.
    - InvalidCurrencyError for a code outside the ISO 4217 registry.
    - ConfigurationError for a fallback policy other than parity or error.
    - Provider failures (HTTP errors, rate limiting) are logged and degrade
      to the fallback path; they never abort a valuation on their own.

Audit relevance:
    Every fallback is logged once per (currency, date) as a warning and
    surfaces on the layer (``rate_is_fallback``) and in the summary.
"""

from __future__ import annotations

import bisect
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from decimal import Decimal

from valuation_config.schema import FALLBACK_ERROR, FALLBACK_PARITY, ExchangeRateSettings
from valuation_ingestion.providers import RateProvider
from valuation_kernel.domain.clock import Clock, SystemClock
from valuation_kernel.domain.currency import CurrencyRegistry
from valuation_kernel.domain.values import RateQuote
from valuation_kernel.exceptions import (
    ConfigurationError,
    ExchangeRateNotFoundError,
    InvalidCurrencyError,
    ProviderError,
)
from valuation_kernel.logging_config import get_logger
from valuation_services.rate_repository import RateObservation, RateRepository

logger = get_logger("services.exchange_rates")

SOURCE_PROVIDER = "riksbank"
SOURCE_CARRIED_FORWARD = "carried_forward"

_ONE = Decimal("1")


class _CurrencySegment:
    """Cached observations of one currency plus the writes not yet flushed."""

    def __init__(self, currency: str):
        self.currency = currency
        self.lock = threading.Lock()
        self.loaded = False
        self.fetched = False
        self.rates: dict[date, Decimal] = {}
        self.dates: list[date] = []
        self.pending: dict[date, RateObservation] = {}
        self.fallback_dates: set[date] = set()

    def merge(self, observations: Iterable[tuple[date, Decimal]], source: str, persist: bool) -> int:
        added = 0
        for obs_date, rate in observations:
            if obs_date in self.rates:
                continue
            self.rates[obs_date] = rate
            bisect.insort(self.dates, obs_date)
            if persist:
                self.pending[obs_date] = RateObservation(self.currency, obs_date, rate, source)
            added += 1
        return added

    def nearest_prior(self, on_date: date) -> date | None:
        idx = bisect.bisect_right(self.dates, on_date)
        return self.dates[idx - 1] if idx else None

    @property
    def latest(self) -> date | None:
        return self.dates[-1] if self.dates else None


class ExchangeRateResolver:
    """
    Date-indexed currency -> base rate lookup.

    Args:
        repository: Persistent cache (``SqlAlchemyRateRepository`` in
            production, ``InMemoryRateRepository`` in tests).
        provider: External rate source, or None to run cache-only.
        clock: Supplies "today" as the upper bound of provider fetches.
        settings: Epoch and fallback policy.
        base_currency: The currency every rate is expressed in.
    """

    def __init__(
        self,
        repository: RateRepository,
        provider: RateProvider | None = None,
        clock: Clock | None = None,
        settings: ExchangeRateSettings | None = None,
        base_currency: str = "SEK",
    ):
        self._repository = repository
        self._provider = provider
        self._clock = clock or SystemClock()
        self._settings = settings or ExchangeRateSettings()
        self._base_currency = base_currency.upper()
        self._segments: dict[str, _CurrencySegment] = {}
        self._segments_lock = threading.Lock()

    @property
    def base_currency(self) -> str:
        return self._base_currency

    @property
    def fallback_policy(self) -> str:
        return self._settings.fallback_policy

    # ------------------------------------------------------------------
    # Segment management
    # ------------------------------------------------------------------

    def _normalize(self, currency: str) -> str:
        if not CurrencyRegistry.is_valid(currency):
            raise InvalidCurrencyError(currency)
        return currency.upper().strip()

    def _segment(self, currency: str) -> _CurrencySegment:
        segment = self._segments.get(currency)
        if segment is None:
            with self._segments_lock:
                segment = self._segments.setdefault(currency, _CurrencySegment(currency))
        if not segment.loaded:
            with segment.lock:
                self._load_locked(segment)
        return segment

    def _load_locked(self, segment: _CurrencySegment) -> None:
        if segment.loaded:
            return
        stored = self._repository.load(segment.currency)
        segment.merge(sorted(stored.items()), SOURCE_PROVIDER, persist=False)
        segment.loaded = True
        logger.debug("rate_cache_loaded", extra={
            "currency": segment.currency,
            "dates": len(stored),
        })

    def load(self, currency: str) -> int:
        """Load one currency segment from the repository; returns its size."""
        code = self._normalize(currency)
        if code == self._base_currency:
            return 0
        return len(self._segment(code).rates)

    def preload(
        self,
        currencies: Iterable[str],
        *,
        refresh: bool = False,
        max_workers: int = 4,
    ) -> dict[str, int]:
        """
        Load several currency segments in parallel.

        With ``refresh`` each segment is also topped up from the provider
        (the one fetch the resolver allows per currency).  Returns the
        cached date count per currency.
        """
        codes = sorted({self._normalize(c) for c in currencies} - {self._base_currency})
        if not codes:
            return {}

        def warm(code: str) -> tuple[str, int]:
            segment = self._segment(code)
            if refresh:
                with segment.lock:
                    self._fetch_locked(segment)
            return code, len(segment.rates)

        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(codes)))) as pool:
            loaded = dict(pool.map(warm, codes))
        logger.info("rate_cache_preloaded", extra={
            "currencies": codes,
            "refresh": refresh,
        })
        return loaded

    # ------------------------------------------------------------------
    # Provider
    # ------------------------------------------------------------------

    def _fetch_locked(self, segment: _CurrencySegment) -> int:
        if segment.fetched or self._provider is None:
            return 0
        segment.fetched = True

        latest = segment.latest
        from_date = latest + timedelta(days=1) if latest else self._settings.epoch
        to_date = self._clock.today()
        if from_date > to_date:
            return 0

        try:
            observations = self._provider.fetch_observations(segment.currency, from_date, to_date)
        except ProviderError as exc:
            logger.warning("rate_provider_failed", extra={
                "currency": segment.currency,
                "from_date": from_date,
                "to_date": to_date,
                "error_code": exc.code,
                "error": str(exc),
            })
            return 0

        added = segment.merge(sorted(observations), SOURCE_PROVIDER, persist=True)
        logger.info("rate_cache_extended", extra={
            "currency": segment.currency,
            "from_date": from_date,
            "to_date": to_date,
            "added": added,
        })
        return added

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _resolve_locked(self, segment: _CurrencySegment, on_date: date) -> RateQuote | None:
        exact = segment.rates.get(on_date)
        if exact is not None:
            return RateQuote(segment.currency, on_date, exact, observed_date=on_date)

        prior = segment.nearest_prior(on_date)
        if prior is None:
            return None
        rate = segment.rates[prior]
        segment.merge([(on_date, rate)], SOURCE_CARRIED_FORWARD, persist=True)
        return RateQuote(segment.currency, on_date, rate, observed_date=prior)

    def quote(self, currency: str, on_date: date) -> RateQuote:
        """Resolve the rate for ``currency`` on ``on_date`` with provenance."""
        code = self._normalize(currency)
        if code == self._base_currency:
            return RateQuote(code, on_date, _ONE)

        segment = self._segment(code)
        exact = segment.rates.get(on_date)
        if exact is not None:
            return RateQuote(code, on_date, exact, observed_date=on_date)

        with segment.lock:
            resolved = self._resolve_locked(segment, on_date)
            if resolved is None and self._fetch_locked(segment):
                resolved = self._resolve_locked(segment, on_date)
            if resolved is not None:
                return resolved
            return self._fallback_locked(segment, on_date)

    def get_rate(self, currency: str, on_date: date) -> Decimal:
        """Base-currency units per one unit of ``currency`` on ``on_date``."""
        return self.quote(currency, on_date).rate

    def _fallback_locked(self, segment: _CurrencySegment, on_date: date) -> RateQuote:
        policy = self._settings.fallback_policy
        if policy == FALLBACK_ERROR:
            logger.error("exchange_rate_not_found", extra={
                "currency": segment.currency,
                "on_date": on_date,
            })
            raise ExchangeRateNotFoundError(segment.currency, self._base_currency, on_date.isoformat())

        if policy != FALLBACK_PARITY:
            raise ConfigurationError("exchange_rates.fallback_policy", f"unknown policy {policy!r}")
        if on_date not in segment.fallback_dates:
            segment.fallback_dates.add(on_date)
            logger.warning("exchange_rate_fallback_used", extra={
                "currency": segment.currency,
                "on_date": on_date,
                "rate": "1",
                "policy": policy,
            })
        return RateQuote(segment.currency, on_date, _ONE, is_fallback=True)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        return sum(len(s.pending) for s in list(self._segments.values()))

    @property
    def fallback_count(self) -> int:
        """Distinct (currency, date) pairs answered with a fallback."""
        return sum(len(s.fallback_dates) for s in list(self._segments.values()))

    def flush(self) -> int:
        """Write pending observations to the repository; returns rows written."""
        batch: list[RateObservation] = []
        segments = list(self._segments.values())
        for segment in segments:
            with segment.lock:
                batch.extend(segment.pending[d] for d in sorted(segment.pending))
        if not batch:
            return 0

        written = self._repository.save(batch)
        for segment in segments:
            with segment.lock:
                for obs in batch:
                    if obs.currency == segment.currency:
                        segment.pending.pop(obs.rate_date, None)

        logger.info("rate_cache_flushed", extra={
            "submitted": len(batch),
            "written": written,
        })
        return written
