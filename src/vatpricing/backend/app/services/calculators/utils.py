"""Utility helpers for calculator modules."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_CENT = Decimal("0.01")
_BASIS = Decimal("0.0001")


def round_currency(value: Decimal) -> Decimal:
    """Round monetary amounts to two decimals."""

    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def round_rate(value: Decimal) -> Decimal:
    """Round percentages and rates to four decimals."""

    return value.quantize(_BASIS, rounding=ROUND_HALF_UP)


def format_percentage(value: Decimal) -> str:
    """Return a human-readable label such as ``10%`` or ``12.5%``."""

    normalised = value.normalize()
    if normalised == normalised.to_integral_value():
        return f"{int(normalised)}%"
    return f"{normalised:f}%"


__all__ = ["format_percentage", "round_currency", "round_rate"]
