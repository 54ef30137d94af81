"""
Values -- Immutable, self-validating money value objects.

Responsibility:
    Provides Currency and Money, the only representation of monetary
    amounts inside the valuation engines.  Unit costs, layer values and
    every roll-up total are Money; raw Decimals appear only for exchange
    rates and quantities.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    No outward dependencies except valuation_kernel.domain.currency.

Invariants enforced:
    - Amounts are Decimal, never float.
    - Currency codes are validated ISO 4217 at construction time.
    - Rounding happens only through ``round()`` (currency precision,
      ROUND_HALF_UP) and ``round_whole()`` (whole units, ROUND_HALF_UP).

Failure modes:
    - ValueError on construction with invalid amounts or currencies.
    - ValueError when arithmetic mixes different currencies.

Audit relevance:
    Layer values are summed bottom-up through four levels of roll-up.
    Keeping amount and currency together, and rounding only at the two
    sanctioned points, is what makes the portfolio total reproducible from
    the layers that make it up.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from valuation_kernel.domain.currency import CurrencyRegistry


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Guarantees:
        - Immutable and hashable
        - code is always uppercase, stripped and known to CurrencyRegistry
    """

    code: str

    def __post_init__(self) -> None:
        normalized = self.code.upper().strip() if self.code else ""
        if not CurrencyRegistry.is_valid(normalized):
            raise ValueError(f"Invalid ISO 4217 currency code: {self.code}")
        object.__setattr__(self, "code", normalized)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with its Currency; they are never separated.

    Guarantees:
        - Immutable and hashable (frozen dataclass with slots)
        - amount is always a Decimal (never float)
        - Addition, subtraction and comparison require the same currency

    Non-goals:
        - Does NOT perform currency conversion (see ``convert``, which takes
          an explicit rate from the caller)
        - Does NOT auto-round -- callers must explicitly call .round()
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        if isinstance(self.amount, float):
            raise ValueError(f"Money amount must not be float: {self.amount!r}")
        if not isinstance(self.amount, Decimal):
            try:
                object.__setattr__(self, "amount", Decimal(str(self.amount)))
            except (InvalidOperation, ValueError) as e:
                raise ValueError(f"Invalid amount: {self.amount}") from e

        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """
        Factory method for creating Money.

        Args:
            amount: The monetary amount (no float allowed at call site).
            currency: ISO 4217 currency code or Currency object.

        Raises:
            ValueError: If amount cannot be converted or currency is invalid.
        """
        if isinstance(amount, (str, int)):
            amount = Decimal(str(amount))
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(amount=amount, currency=currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        """Create a zero amount in the given currency."""
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(amount=Decimal("0"), currency=currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == Decimal("0")

    def round(self, rounding: str = ROUND_HALF_UP) -> Money:
        """
        Round to the currency's decimal places.

        Postconditions:
            - Returns a new Money at ISO 4217 precision (2 dp for SEK).
            - Original Money is unchanged (immutable).
        """
        info = CurrencyRegistry.get_info(self.currency.code)
        exponent = info.quantize_exponent if info else Decimal("0.01")
        rounded = self.amount.quantize(exponent, rounding=rounding)
        return Money(amount=rounded, currency=self.currency)

    def round_whole(self, rounding: str = ROUND_HALF_UP) -> Money:
        """Round to whole currency units (portfolio headline totals)."""
        rounded = self.amount.quantize(Decimal("1"), rounding=rounding)
        return Money(amount=rounded, currency=self.currency)

    def convert(self, rate: Decimal, target: str | Currency) -> Money:
        """
        Convert into ``target`` at ``rate`` target units per one unit of self.

        The result is unrounded; the caller decides where rounding happens.
        """
        if not isinstance(rate, Decimal):
            raise TypeError(f"rate must be Decimal, got {type(rate)}")
        if rate <= 0:
            raise ValueError(f"Exchange rate must be positive: {rate}")
        if isinstance(target, str):
            target = Currency(target)
        return Money(amount=self.amount * rate, currency=target)

    def _require_same_currency(self, other: Money, verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {verb} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other, "add")
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other, "subtract")
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount, currency=self.currency)

    def __mul__(self, factor: Decimal | int | str) -> Money:
        """Multiply by a scalar."""
        if isinstance(factor, (int, str)):
            factor = Decimal(str(factor))
        if not isinstance(factor, Decimal):
            return NotImplemented
        return Money(amount=self.amount * factor, currency=self.currency)

    def __rmul__(self, factor: Decimal | int | str) -> Money:
        return self.__mul__(factor)

    def __truediv__(self, divisor: Decimal | int | str) -> Money:
        """Divide by a scalar."""
        if isinstance(divisor, (int, str)):
            divisor = Decimal(str(divisor))
        if not isinstance(divisor, Decimal):
            return NotImplemented
        return Money(amount=self.amount / divisor, currency=self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._require_same_currency(other, "compare")
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({self.amount!r}, {self.currency!r})"


def sum_money(items, currency: str | Currency) -> Money:
    """Sum an iterable of Money, starting from zero in ``currency``."""
    total = Money.zero(currency)
    for item in items:
        total = total + item
    return total


@dataclass(frozen=True, slots=True)
class RateQuote:
    """
    A resolved historical exchange rate.

    ``rate`` is base-currency units per one unit of ``currency``.
    ``observed_date`` is the cache date the value came from (the requested
    date, or the nearest prior one); None for the base currency and for
    fallback quotes.
    """

    currency: str
    requested_date: date
    rate: Decimal
    observed_date: date | None = None
    is_fallback: bool = False
