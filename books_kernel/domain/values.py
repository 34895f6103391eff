"""
Values -- Immutable, self-validating monetary value object.

Responsibility:
    Provides ``Money``, the fixed-precision amount used by every engine.
    Amounts carry two fractional digits in this domain; intermediate
    arithmetic keeps full Decimal precision and callers round with
    ``round2()`` at each step that produces a visible amount.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every engine. No outward dependencies except
    books_kernel.exceptions.

Invariants enforced:
    - Amounts are always Decimal, never float. Floats are accepted only by
      ``Money.of`` and pass through ``str`` first.
    - Non-finite values (NaN, Infinity) never enter a Money.
    - Rounding is ROUND_HALF_UP to 0.01 everywhere (``round2``).

Failure modes:
    - InvalidAmountError on unparseable, NaN or infinite input, and from
      ``require_non_negative`` on negative input.
    - TypeError when arithmetic mixes Money with unsupported operands.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from books_kernel.exceptions import InvalidAmountError

DECIMAL_PLACES = 2
TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | str | int | float, field: str | None = None) -> Decimal:
    """
    Convert an input value to a finite Decimal.

    Raises:
        InvalidAmountError: value is a bool, unparseable, NaN or infinite.
    """
    if isinstance(value, bool):
        raise InvalidAmountError(value, "booleans are not amounts", field)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise InvalidAmountError(value, "not a number", field) from e
    else:
        raise InvalidAmountError(value, f"unsupported type {type(value).__name__}", field)

    if not result.is_finite():
        raise InvalidAmountError(value, "not finite", field)
    return result


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Wraps a finite Decimal. Equality and ordering are exact on the
        Decimal value, so ``Money.of("13") == Money.of("13.00")``.

    Guarantees:
        - Immutable and hashable (frozen dataclass with slots)
        - amount is always a finite Decimal

    Non-goals:
        - Does NOT carry a currency; FX is owned by the caller
        - Does NOT auto-round -- callers must explicitly call .round2()
    """

    amount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))

    @classmethod
    def of(cls, amount: Money | Decimal | str | int | float, field: str | None = None) -> Money:
        """
        Factory method for creating Money from a boundary value.

        Raises:
            InvalidAmountError: If amount cannot be converted or is non-finite.
        """
        if isinstance(amount, Money):
            return amount
        return cls(amount=to_decimal(amount, field))

    @classmethod
    def zero(cls) -> Money:
        """Create a zero amount."""
        return cls(amount=Decimal("0"))

    @property
    def is_zero(self) -> bool:
        return self.amount == Decimal("0")

    @property
    def is_positive(self) -> bool:
        return self.amount > Decimal("0")

    @property
    def is_negative(self) -> bool:
        return self.amount < Decimal("0")

    def round2(self) -> Money:
        """Round half away from zero to two decimal places."""
        return Money(amount=self.amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP))

    def require_non_negative(self, field: str | None = None) -> Money:
        """Return self, or raise InvalidAmountError if the amount is negative."""
        if self.is_negative:
            raise InvalidAmountError(self.amount, "must not be negative", field)
        return self

    def percent_of(self, rate: Decimal) -> Money:
        """``round2(amount * rate / 100)``."""
        return Money(amount=self.amount * rate / HUNDRED).round2()

    def exclusive_tax(self, rate: Decimal) -> Money:
        """Tax added on top of this amount at ``rate`` percent."""
        return self.percent_of(rate)

    def inclusive_tax(self, rate: Decimal) -> Money:
        """
        Tax embedded in this tax-inclusive amount at ``rate`` percent.

        Computed as ``round2(amount - amount * 100 / (100 + rate))``, in that
        order, so the rounding matches amounts produced by the forms.
        """
        net = self.amount * HUNDRED / (HUNDRED + rate)
        return Money(amount=self.amount - net).round2()

    def to_float(self) -> float:
        """Rounded amount as a float for JSON payloads."""
        return float(self.round2().amount)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(amount=self.amount + other.amount)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(amount=self.amount - other.amount)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount)

    def __abs__(self) -> Money:
        return Money(amount=abs(self.amount))

    def __mul__(self, factor: Decimal | int | str) -> Money:
        """Multiply by a scalar."""
        if isinstance(factor, (int, str)) and not isinstance(factor, bool):
            factor = Decimal(str(factor))
        if not isinstance(factor, Decimal):
            return NotImplemented
        return Money(amount=self.amount * factor)

    def __rmul__(self, factor: Decimal | int | str) -> Money:
        return self.__mul__(factor)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount >= other.amount

    def __str__(self) -> str:
        return str(self.amount)

    def __repr__(self) -> str:
        return f"Money({self.amount!r})"


def money_sum(values: Iterable[Money]) -> Money:
    """Sum amounts, re-rounding the running total after every addition."""
    total = Money.zero()
    for value in values:
        total = (total + value).round2()
    return total


def money_min(a: Money, b: Money) -> Money:
    return a if a <= b else b


def money_max(a: Money, b: Money) -> Money:
    return a if a >= b else b
