"""ORM models for the valuation kernel."""

from valuation_kernel.models.exchange_rate import ExchangeRateObservationModel

__all__ = ["ExchangeRateObservationModel"]
