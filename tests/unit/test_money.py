"""Unit tests for the Money value type."""

from __future__ import annotations

from decimal import Decimal

import pytest

from vatpricing.backend.app.errors import CurrencyMismatchError, ValidationError
from vatpricing.backend.app.models.money import Money, normalise_currency_code, to_decimal


def test_of_normalises_amount_and_currency() -> None:
    money = Money.of(0.1, "eur")

    assert money.amount == Decimal("0.1")
    assert money.currency_code == "EUR"


def test_addition_and_subtraction_keep_currency() -> None:
    total = Money.of("10.50", "GBP") + Money.of("4.25", "GBP") - Money.of(1, "GBP")

    assert total == Money.of("13.75", "GBP")


def test_mixed_currency_arithmetic_raises() -> None:
    with pytest.raises(CurrencyMismatchError) as excinfo:
        Money.of(1, "EUR").add(Money.of(1, "GBP"))

    assert excinfo.value.currencies == ("EUR", "GBP")


def test_multiply_by_scalar_only() -> None:
    assert Money.of(200, "EUR") * Decimal("0.25") == Money.of(50, "EUR")
    assert 2 * Money.of(3, "EUR") == Money.of(6, "EUR")

    with pytest.raises(TypeError):
        Money.of(1, "EUR").multiply(Money.of(1, "EUR"))


def test_rounded_uses_half_up() -> None:
    assert Money.of("2.345", "EUR").rounded().amount == Decimal("2.35")
    assert Money.of("2.344", "EUR").rounded().amount == Decimal("2.34")
    assert str(Money.of("2.345", "EUR")) == "2.35 EUR"


def test_zero_and_sign_helpers() -> None:
    assert Money.zero("SEK").is_zero
    assert Money.of(-1, "SEK").is_negative
    assert not Money.of(1, "SEK").is_negative


@pytest.mark.parametrize("code", ["EU", "EURO", "E1R", "", None])
def test_invalid_currency_codes_rejected(code) -> None:
    with pytest.raises(ValidationError):
        normalise_currency_code(code)


@pytest.mark.parametrize("value", [True, "abc", "NaN", "Infinity", [1]])
def test_to_decimal_rejects_non_numeric_input(value) -> None:
    with pytest.raises(ValidationError):
        to_decimal(value)
