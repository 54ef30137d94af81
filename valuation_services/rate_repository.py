"""
valuation_services.rate_repository -- Persistent storage for the rate cache.

Responsibility:
    Load one currency's cached observations and append new ones.  The
    resolver owns the in-memory cache; repositories only move whole
    segments in and batches of observations out.

Architecture position:
    Services -- persistence adapters behind the ``RateRepository`` protocol.

Invariants enforced:
    - Append-only: ``save`` inserts dates not yet stored and never updates
      an existing (currency, rate_date) row.
    - ``save`` is atomic per call (one transaction).
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from valuation_kernel.db.engine import session_scope
from valuation_kernel.exceptions import InvalidExchangeRateError
from valuation_kernel.logging_config import get_logger
from valuation_kernel.models.exchange_rate import ExchangeRateObservationModel

logger = get_logger("services.rate_repository")


@dataclass(frozen=True, slots=True)
class RateObservation:
    """One cache row: base units per one unit of ``currency`` on ``rate_date``."""

    currency: str
    rate_date: date
    rate: Decimal
    source: str = "riksbank"

    def __post_init__(self) -> None:
        if not isinstance(self.rate, Decimal) or not self.rate.is_finite() or self.rate <= 0:
            raise InvalidExchangeRateError(self.currency, str(self.rate), "must be a positive Decimal")


@runtime_checkable
class RateRepository(Protocol):
    def load(self, currency: str) -> dict[date, Decimal]: ...

    def save(self, observations: Iterable[RateObservation]) -> int: ...


class InMemoryRateRepository:
    """Process-local repository for tests and offline runs."""

    def __init__(self, seed: Iterable[RateObservation] = ()):
        self._rows: dict[str, dict[date, RateObservation]] = {}
        self._lock = threading.Lock()
        self.save(seed)

    def load(self, currency: str) -> dict[date, Decimal]:
        with self._lock:
            return {d: obs.rate for d, obs in self._rows.get(currency, {}).items()}

    def save(self, observations: Iterable[RateObservation]) -> int:
        written = 0
        with self._lock:
            for obs in observations:
                segment = self._rows.setdefault(obs.currency, {})
                if obs.rate_date not in segment:
                    segment[obs.rate_date] = obs
                    written += 1
        return written

    def all(self) -> list[RateObservation]:
        with self._lock:
            return [obs for segment in self._rows.values() for obs in segment.values()]


class SqlAlchemyRateRepository:
    """
    Repository over the ``exchange_rate_observations`` table.

    Holds a session factory rather than a session so that loads and saves
    from different worker threads each get their own short transaction.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def load(self, currency: str) -> dict[date, Decimal]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(
                    ExchangeRateObservationModel.rate_date,
                    ExchangeRateObservationModel.rate,
                ).where(ExchangeRateObservationModel.currency == currency)
            ).all()
        cached = {row.rate_date: Decimal(row.rate) for row in rows}
        logger.debug("rate_segment_loaded", extra={
            "currency": currency,
            "dates": len(cached),
        })
        return cached

    def save(self, observations: Iterable[RateObservation]) -> int:
        batch = list(observations)
        if not batch:
            return 0

        written = 0
        with session_scope(self._session_factory) as session:
            for currency in sorted({obs.currency for obs in batch}):
                existing = set(session.execute(
                    select(ExchangeRateObservationModel.rate_date)
                    .where(ExchangeRateObservationModel.currency == currency)
                ).scalars())
                for obs in batch:
                    if obs.currency != currency or obs.rate_date in existing:
                        continue
                    session.add(ExchangeRateObservationModel(
                        currency=obs.currency,
                        rate_date=obs.rate_date,
                        rate=obs.rate,
                        source=obs.source,
                    ))
                    existing.add(obs.rate_date)
                    written += 1

        logger.info("rate_observations_saved", extra={
            "submitted": len(batch),
            "written": written,
        })
        return written
