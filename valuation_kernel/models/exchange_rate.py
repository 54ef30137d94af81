"""
Module: valuation_kernel.models.exchange_rate
Responsibility: ORM persistence for the historical exchange-rate cache.  Each
    row is one observed (currency, calendar date) -> base-units-per-unit rate.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: one row per (currency, rate_date), enforced by a unique
      constraint.  Repositories insert missing dates and never update.
    - Rates are positive Decimals with up to 18 decimal places.

Audit relevance:
    Historical valuations are recomputed from scratch on every run; the cache
    is the one persistent input, so a rate once observed for a date must keep
    producing the same layer values.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Date, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from valuation_kernel.db.base import Base, ExactDecimal


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExchangeRateObservationModel(Base):
    """
    Cached rate: base-currency units per one unit of ``currency`` on ``rate_date``.

    ``source`` records where the value came from: the rate API ("riksbank"),
    or "carried_forward" when written back from the nearest prior date.
    """

    __tablename__ = "exchange_rate_observations"

    __table_args__ = (
        UniqueConstraint("currency", "rate_date", name="uq_rate_currency_date"),
        Index("idx_rate_currency", "currency"),
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    rate_date: Mapped[date] = mapped_column(Date, nullable=False)

    rate: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False)

    source: Mapped[str] = mapped_column(String(50), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ExchangeRateObservation {self.currency} {self.rate_date} = {self.rate}>"
