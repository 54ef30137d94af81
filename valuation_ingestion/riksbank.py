"""
Riksbank SWEA rate client -- daily mid rates as base-currency units per unit.

Responsibility:
    Implements ``RateProvider`` against
    ``{base_url}/Observations/{series}/{from}/{to}``, which answers a JSON
    array of ``{"date": "YYYY-MM-DD", "value": <number>}``.

Failure modes:
    - HTTP 429: sleep ``backoff_seconds`` and retry the whole range, up to
      ``max_attempts`` in total, then ``RateLimitedError``.
    - Other non-2xx statuses or transport errors: ``ProviderUnavailableError``.
    - Currency without a configured series: empty result (logged).
    - Observations with a missing or non-positive value are dropped.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal, InvalidOperation

import requests

from valuation_config.schema import ExchangeRateSettings
from valuation_kernel.exceptions import ProviderUnavailableError, RateLimitedError
from valuation_kernel.logging_config import get_logger

logger = get_logger("ingestion.riksbank")

PROVIDER_NAME = "riksbank"


class RiksbankRateClient:
    """
    ``RateProvider`` backed by the Riksbank observations API.

    The HTTP session and the sleep function are injectable so tests can
    drive 429 handling without a network or real waiting.
    """

    def __init__(
        self,
        base_url: str,
        series: Mapping[str, str],
        *,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        backoff_seconds: float = 60.0,
        max_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._base_url = base_url.rstrip("/")
        self._series = {code.upper(): series_id for code, series_id in series.items()}
        self._session = session or requests.Session()
        self._timeout = timeout
        self._backoff_seconds = backoff_seconds
        self._max_attempts = max_attempts
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: ExchangeRateSettings,
        session: requests.Session | None = None,
    ) -> RiksbankRateClient:
        return cls(
            settings.api_base_url,
            settings.series,
            session=session,
            timeout=settings.request_timeout_seconds,
            backoff_seconds=settings.backoff_seconds,
            max_attempts=settings.max_attempts,
        )

    def supports(self, currency: str) -> bool:
        return currency.upper() in self._series

    def _url(self, series_id: str, from_date: date, to_date: date) -> str:
        return (
            f"{self._base_url}/Observations/{series_id}/"
            f"{from_date.isoformat()}/{to_date.isoformat()}"
        )

    def fetch_observations(
        self,
        currency: str,
        from_date: date,
        to_date: date,
    ) -> list[tuple[date, Decimal]]:
        """Fetch daily observations for ``currency`` in [from_date, to_date]."""
        series_id = self._series.get(currency.upper())
        if series_id is None:
            logger.warning("rate_series_unknown", extra={"currency": currency})
            return []
        if from_date > to_date:
            return []

        url = self._url(series_id, from_date, to_date)
        for attempt in range(1, self._max_attempts + 1):
            logger.info("rate_fetch_started", extra={
                "currency": currency,
                "series": series_id,
                "from_date": from_date,
                "to_date": to_date,
                "attempt": attempt,
            })
            try:
                resp = self._session.get(url, timeout=self._timeout)
            except requests.RequestException as exc:
                raise ProviderUnavailableError(PROVIDER_NAME, str(exc)) from exc

            if resp.status_code == 429:
                logger.warning("rate_fetch_rate_limited", extra={
                    "currency": currency,
                    "attempt": attempt,
                    "max_attempts": self._max_attempts,
                    "backoff_seconds": self._backoff_seconds,
                })
                if attempt < self._max_attempts:
                    self._sleep(self._backoff_seconds)
                continue

            if not resp.ok:
                raise ProviderUnavailableError(
                    PROVIDER_NAME,
                    f"HTTP {resp.status_code} for {series_id}",
                    status_code=resp.status_code,
                )
            return self._parse(resp, currency)

        raise RateLimitedError(PROVIDER_NAME, self._max_attempts)

    def _parse(self, resp: requests.Response, currency: str) -> list[tuple[date, Decimal]]:
        if not resp.text or not resp.text.strip():
            logger.info("rate_fetch_empty", extra={"currency": currency})
            return []
        try:
            data = resp.json(parse_float=Decimal)
        except ValueError as exc:
            raise ProviderUnavailableError(PROVIDER_NAME, f"invalid JSON: {exc}") from exc
        if not isinstance(data, list):
            raise ProviderUnavailableError(PROVIDER_NAME, "unexpected response shape")

        observations: list[tuple[date, Decimal]] = []
        for obs in data:
            if not isinstance(obs, dict):
                continue
            raw_date, raw_value = obs.get("date"), obs.get("value")
            if raw_date is None or raw_value is None or isinstance(raw_value, bool):
                continue
            try:
                value = Decimal(str(raw_value))
                obs_date = date.fromisoformat(str(raw_date)[:10])
            except (InvalidOperation, ValueError):
                continue
            if value <= 0:
                continue
            observations.append((obs_date, value))

        logger.info("rate_fetch_completed", extra={
            "currency": currency,
            "observations": len(observations),
        })
        return observations
