"""Currency-tagged decimal amounts."""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from vatpricing.backend.app.errors import CurrencyMismatchError, ValidationError

_CURRENCY_PATTERN = re.compile(r"^[A-Za-z]{3}$")
_CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Convert ``value`` to a finite :class:`~decimal.Decimal`.

    Floats are routed through ``str`` so that ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.
    """

    if isinstance(value, bool):
        raise ValidationError("Boolean values cannot be used as amounts")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValidationError(f"'{value}' is not a valid decimal amount") from exc
    else:
        raise ValidationError(f"Unsupported amount type: {type(value).__name__}")

    if not result.is_finite():
        raise ValidationError("Amounts must be finite")
    return result


def normalise_currency_code(currency_code: Any) -> str:
    """Validate and upper-case an ISO 4217 style currency code."""

    if not isinstance(currency_code, str) or not _CURRENCY_PATTERN.match(
        currency_code.strip()
    ):
        raise ValidationError(
            f"Currency code must be exactly three letters, got {currency_code!r}"
        )
    return currency_code.strip().upper()


@dataclass(frozen=True)
class Money:
    """Immutable amount of money in a single currency.

    Instances should be built with :meth:`of` or :meth:`zero`; arithmetic
    between two values requires identical currencies and raises
    :class:`CurrencyMismatchError` otherwise.
    """

    amount: Decimal
    currency_code: str

    @classmethod
    def of(cls, amount: Any, currency_code: str) -> Money:
        return cls(to_decimal(amount), normalise_currency_code(currency_code))

    @classmethod
    def zero(cls, currency_code: str) -> Money:
        return cls(Decimal("0"), normalise_currency_code(currency_code))

    def _require_same_currency(self, other: Money) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Expected Money, got {type(other).__name__}")
        if other.currency_code != self.currency_code:
            raise CurrencyMismatchError(self.currency_code, other.currency_code)

    def add(self, other: Money) -> Money:
        self._require_same_currency(other)
        return Money(self.amount + other.amount, self.currency_code)

    def subtract(self, other: Money) -> Money:
        self._require_same_currency(other)
        return Money(self.amount - other.amount, self.currency_code)

    def multiply(self, factor: Any) -> Money:
        """Scale by a dimensionless ``factor`` such as a rate or fraction."""

        if isinstance(factor, Money):
            raise TypeError("Money can only be multiplied by a scalar")
        return Money(self.amount * to_decimal(factor), self.currency_code)

    def rounded(self) -> Money:
        return Money(
            self.amount.quantize(_CENT, rounding=ROUND_HALF_UP), self.currency_code
        )

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    def __add__(self, other: Money) -> Money:
        return self.add(other)

    def __sub__(self, other: Money) -> Money:
        return self.subtract(other)

    def __mul__(self, factor: Any) -> Money:
        return self.multiply(factor)

    __rmul__ = __mul__

    def __str__(self) -> str:
        return f"{self.rounded().amount} {self.currency_code}"


__all__ = ["Money", "normalise_currency_code", "to_decimal"]
