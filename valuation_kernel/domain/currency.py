"""Currency -- ISO 4217 registry and precision-derived rounding."""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str

    @property
    def quantize_exponent(self) -> Decimal:
        """Exponent for Decimal.quantize() at this currency's precision."""
        if self.decimal_places == 0:
            return Decimal("1")
        return Decimal("0." + "0" * self.decimal_places)


class CurrencyRegistry:
    """Registry of the ISO 4217 currencies seen in purchasing and stock ledgers."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        # Nordic
        "SEK": CurrencyInfo("SEK", 2, "Swedish Krona"),
        "NOK": CurrencyInfo("NOK", 2, "Norwegian Krone"),
        "DKK": CurrencyInfo("DKK", 2, "Danish Krone"),
        "ISK": CurrencyInfo("ISK", 0, "Icelandic Krona"),
        # Major currencies
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
        "CHF": CurrencyInfo("CHF", 2, "Swiss Franc"),
        "CAD": CurrencyInfo("CAD", 2, "Canadian Dollar"),
        "AUD": CurrencyInfo("AUD", 2, "Australian Dollar"),
        "NZD": CurrencyInfo("NZD", 2, "New Zealand Dollar"),
        # Common sourcing currencies
        "CNY": CurrencyInfo("CNY", 2, "Chinese Yuan"),
        "HKD": CurrencyInfo("HKD", 2, "Hong Kong Dollar"),
        "INR": CurrencyInfo("INR", 2, "Indian Rupee"),
        "PLN": CurrencyInfo("PLN", 2, "Polish Zloty"),
        "CZK": CurrencyInfo("CZK", 2, "Czech Koruna"),
        "TRY": CurrencyInfo("TRY", 2, "Turkish Lira"),
        "PKR": CurrencyInfo("PKR", 2, "Pakistani Rupee"),
        "BDT": CurrencyInfo("BDT", 2, "Bangladeshi Taka"),
        "VND": CurrencyInfo("VND", 0, "Vietnamese Dong"),
        "KRW": CurrencyInfo("KRW", 0, "South Korean Won"),
        "PTE": CurrencyInfo("PTE", 2, "Portuguese Escudo"),
    }

    # Default decimal places for unknown currencies
    DEFAULT_DECIMAL_PLACES: ClassVar[int] = 2

    @classmethod
    def is_valid(cls, code: str) -> bool:
        """Check if a currency code is known."""
        if not code or not isinstance(code, str):
            return False
        return code.upper().strip() in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        """Get currency information by code."""
        if not code or not isinstance(code, str):
            return None
        return cls._CURRENCIES.get(code.upper().strip())

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        """Get decimal places for a currency."""
        info = cls.get_info(code)
        return info.decimal_places if info else cls.DEFAULT_DECIMAL_PLACES

    @classmethod
    def validate(cls, code: str) -> str:
        """Validate and normalize a currency code."""
        if not code or not isinstance(code, str):
            raise ValueError(f"Invalid currency code: {code!r}")

        normalized = code.upper().strip()

        if len(normalized) != 3:
            raise ValueError(f"Currency code must be 3 characters: {code!r}")

        if normalized not in cls._CURRENCIES:
            raise ValueError(f"Invalid ISO 4217 currency code: {code!r}")

        return normalized
