"""
Valuation configuration schema.

Frozen dataclasses the YAML configuration is parsed into.  Each section
validates itself on construction and raises ``ConfigurationError`` naming
the offending key, so a bad file fails at load time rather than mid-run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import Mapping

from valuation_kernel.domain.currency import CurrencyRegistry
from valuation_kernel.exceptions import ConfigurationError

FALLBACK_PARITY = "parity"
FALLBACK_ERROR = "error"
FALLBACK_POLICIES = (FALLBACK_PARITY, FALLBACK_ERROR)


@dataclass(frozen=True)
class AgeThresholds:
    """
    Day boundaries for the fresh / aging / old buckets.

    fresh: age < aging_from_days
    aging: aging_from_days <= age < old_from_days
    old:   age >= old_from_days
    """

    aging_from_days: int = 183
    old_from_days: int = 548

    def __post_init__(self) -> None:
        if self.aging_from_days <= 0:
            raise ConfigurationError(
                "age_thresholds.aging_from_days", "must be positive"
            )
        if self.old_from_days <= self.aging_from_days:
            raise ConfigurationError(
                "age_thresholds.old_from_days",
                f"must exceed aging_from_days ({self.aging_from_days})",
            )


@dataclass(frozen=True)
class ExchangeRateSettings:
    """Historical rate resolution and the rate API client."""

    provider: str = "riksbank"
    epoch: date = date(2020, 1, 1)
    api_base_url: str = "https://api.riksbank.se/swea/v1"
    series: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({
        "USD": "SEKUSDPMI",
        "EUR": "SEKEURPMI",
        "CAD": "SEKCADPMI",
    }))
    fallback_policy: str = FALLBACK_PARITY
    backoff_seconds: float = 60.0
    max_attempts: int = 3
    request_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.fallback_policy not in FALLBACK_POLICIES:
            raise ConfigurationError(
                "exchange_rates.fallback_policy",
                f"expected one of {FALLBACK_POLICIES}, got {self.fallback_policy!r}",
            )
        if self.max_attempts < 1:
            raise ConfigurationError("exchange_rates.max_attempts", "must be >= 1")
        if self.backoff_seconds < 0:
            raise ConfigurationError("exchange_rates.backoff_seconds", "must be >= 0")
        if self.request_timeout_seconds <= 0:
            raise ConfigurationError(
                "exchange_rates.request_timeout_seconds", "must be positive"
            )
        for code in self.series:
            if not CurrencyRegistry.is_valid(code):
                raise ConfigurationError(
                    "exchange_rates.series", f"unknown currency {code!r}"
                )
        # Freeze whatever mapping the loader handed in.
        object.__setattr__(self, "series", MappingProxyType(dict(self.series)))


@dataclass(frozen=True)
class ValuationSettings:
    """Run-time knobs of the valuation service."""

    max_workers: int = 8

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ConfigurationError("valuation.max_workers", "must be >= 1")


@dataclass(frozen=True)
class ValuationConfig:
    """Root configuration object returned by ``get_active_config()``."""

    base_currency: str = "SEK"
    age_thresholds: AgeThresholds = field(default_factory=AgeThresholds)
    exchange_rates: ExchangeRateSettings = field(default_factory=ExchangeRateSettings)
    valuation: ValuationSettings = field(default_factory=ValuationSettings)
    database_url: str = "sqlite:///exchange_rates.db"
    checksum: str = ""

    def __post_init__(self) -> None:
        if not CurrencyRegistry.is_valid(self.base_currency):
            raise ConfigurationError(
                "base_currency", f"unknown currency {self.base_currency!r}"
            )
        object.__setattr__(self, "base_currency", self.base_currency.upper().strip())
        if self.base_currency in self.exchange_rates.series:
            raise ConfigurationError(
                "exchange_rates.series",
                f"base currency {self.base_currency} must not have a rate series",
            )
