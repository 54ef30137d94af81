"""
Typed Exception Hierarchy for the Valuation Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A valuation run stitches together several unreliable feeds. Callers need to
tell "the stock snapshot is gone, abort" apart from "one currency has no
rate, flag it" without parsing message strings. Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

Example:
    try:
        report = service.calculate_valuation("varg")
    except StockSnapshotUnavailableError as e:
        api_response(code=e.code, company=e.company_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ValuationKernelError (base)
    |
    +-- CurrencyError
    |   +-- InvalidCurrencyError
    |   +-- ExchangeRateNotFoundError
    |   +-- InvalidExchangeRateError
    |
    +-- ProviderError
    |   +-- ProviderUnavailableError
    |   +-- RateLimitedError
    |   +-- StockSnapshotUnavailableError
    |
    +-- LedgerError
    |   +-- InvalidLedgerEntryError
    |
    +-- ValuationError
    |   +-- LayerInvariantError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                        | When Raised
-----------|-----------------------------|----------------------------------------
Currency   | INVALID_CURRENCY            | Not a known ISO 4217 code
           | EXCHANGE_RATE_NOT_FOUND     | No cached or fetchable rate (strict)
           | INVALID_EXCHANGE_RATE       | Rate is zero/negative/unparseable
-----------|-----------------------------|----------------------------------------
Provider   | PROVIDER_UNAVAILABLE        | Feed or rate API returned an error
           | RATE_LIMITED                | HTTP 429 persisted past max attempts
           | STOCK_SNAPSHOT_UNAVAILABLE  | Mandatory on-hand snapshot missing
-----------|-----------------------------|----------------------------------------
Ledger     | INVALID_LEDGER_ENTRY        | Receipt record unusable for costing
-----------|-----------------------------|----------------------------------------
Valuation  | LAYER_INVARIANT_VIOLATED    | remaining + unknown != on-hand
-----------|-----------------------------|----------------------------------------
Config     | CONFIGURATION_ERROR         | Invalid or missing configuration value
"""


class ValuationKernelError(Exception):
    """
    Base exception for all valuation kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "VALUATION_KERNEL_ERROR"


# Currency-related exceptions


class CurrencyError(ValuationKernelError):
    """Base exception for currency-related errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError):
    """Invalid ISO 4217 currency code provided."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


class ExchangeRateNotFoundError(CurrencyError):
    """No exchange rate could be resolved for the currency and date."""

    code: str = "EXCHANGE_RATE_NOT_FOUND"

    def __init__(self, from_currency: str, to_currency: str, as_of: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.as_of = as_of
        super().__init__(
            f"No exchange rate found for {from_currency}/{to_currency} as of {as_of}"
        )


class InvalidExchangeRateError(CurrencyError):
    """Exchange rate value is invalid (zero, negative, unparseable)."""

    code: str = "INVALID_EXCHANGE_RATE"

    def __init__(self, currency: str, rate_value: str, reason: str):
        self.currency = currency
        self.rate_value = rate_value
        self.reason = reason
        super().__init__(f"Invalid exchange rate {rate_value} for {currency}: {reason}")


# Provider-related exceptions


class ProviderError(ValuationKernelError):
    """Base exception for external data provider failures."""

    code: str = "PROVIDER_ERROR"


class ProviderUnavailableError(ProviderError):
    """A feed or rate provider call failed."""

    code: str = "PROVIDER_UNAVAILABLE"

    def __init__(self, provider: str, reason: str, status_code: int | None = None):
        self.provider = provider
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Provider {provider} unavailable: {reason}")


class RateLimitedError(ProviderError):
    """Provider kept answering HTTP 429 after all retry attempts."""

    code: str = "RATE_LIMITED"

    def __init__(self, provider: str, attempts: int):
        self.provider = provider
        self.attempts = attempts
        super().__init__(f"Provider {provider} still rate limited after {attempts} attempts")


class StockSnapshotUnavailableError(ProviderError):
    """The mandatory on-hand snapshot could not be fetched."""

    code: str = "STOCK_SNAPSHOT_UNAVAILABLE"

    def __init__(self, company_id: str, reason: str):
        self.company_id = company_id
        self.reason = reason
        super().__init__(f"Stock snapshot unavailable for {company_id}: {reason}")


# Ledger-related exceptions


class LedgerError(ValuationKernelError):
    """Base exception for ledger record errors."""

    code: str = "LEDGER_ERROR"


class InvalidLedgerEntryError(LedgerError):
    """A receipt record cannot be used as a cost source."""

    code: str = "INVALID_LEDGER_ENTRY"

    def __init__(self, entry_id: str, reason: str):
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(f"Invalid ledger entry {entry_id}: {reason}")


# Valuation-related exceptions


class ValuationError(ValuationKernelError):
    """Base exception for valuation computation errors."""

    code: str = "VALUATION_ERROR"


class LayerInvariantError(ValuationError):
    """Layer quantities do not reconcile with on-hand quantity."""

    code: str = "LAYER_INVARIANT_VIOLATED"

    def __init__(self, sku_key: str, on_hand: int, layered: int, unknown: int):
        self.sku_key = sku_key
        self.on_hand = on_hand
        self.layered = layered
        self.unknown = unknown
        super().__init__(
            f"Layer invariant violated for {sku_key}: "
            f"layered {layered} + unknown {unknown} != on hand {on_hand}"
        )


# Configuration exceptions


class ConfigurationError(ValuationKernelError):
    """Configuration value is missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration '{key}': {reason}")
