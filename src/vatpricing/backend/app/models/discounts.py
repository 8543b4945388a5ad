"""Percentage discounts applied to aggregate totals."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol, TypeVar

from vatpricing.backend.app.errors import InvalidOperationError, PricingError

from .money import Money, to_decimal

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class DiscountApplication:
    """Outcome of applying one named discount to a running total."""

    name: str
    percentage: Decimal
    discount_amount: Money
    discounted_total: Money


def validate_discount(name: Any, percentage: Any) -> tuple[str, Decimal]:
    """Return the normalised ``(name, percentage)`` pair or raise."""

    if not isinstance(name, str) or not name.strip():
        raise InvalidOperationError("Discount name is required")
    try:
        value = to_decimal(percentage)
    except PricingError as exc:
        raise InvalidOperationError(f"Invalid discount percentage: {exc}") from exc
    if value < 0 or value > _HUNDRED:
        raise InvalidOperationError(
            f"Discount percentage must be between 0 and 100, got {percentage}"
        )
    return name.strip(), value


def apply_discount(total: Money, name: str, percentage: Any) -> DiscountApplication:
    """Discount ``total`` by ``percentage`` percent.

    The discount amount is ``total * percentage / 100`` and the discounted
    total is ``total - amount``.
    """

    label, value = validate_discount(name, percentage)
    if total.is_negative:
        raise InvalidOperationError("Discounts cannot be applied to a negative total")

    amount = total.multiply(value / _HUNDRED)
    return DiscountApplication(
        name=label,
        percentage=value,
        discount_amount=amount,
        discounted_total=total.subtract(amount),
    )


def apply_discounts(
    total: Money, entries: Iterable[tuple[str, Any]]
) -> tuple[Money, list[DiscountApplication]]:
    """Apply ``entries`` in order, each against the already-discounted total."""

    applications: list[DiscountApplication] = []
    running = total
    for name, percentage in entries:
        application = apply_discount(running, name, percentage)
        applications.append(application)
        running = application.discounted_total
    return running, applications


class DiscountTier(Protocol):
    name: str
    minimum: int
    percentage: Decimal


TierT = TypeVar("TierT", bound=DiscountTier)


def select_tier(value: int, tiers: Sequence[TierT]) -> TierT | None:
    """Return the tier with the highest ``minimum`` that ``value`` reaches."""

    selected: TierT | None = None
    for tier in tiers:
        if value >= tier.minimum and (selected is None or tier.minimum > selected.minimum):
            selected = tier
    return selected


__all__ = [
    "DiscountApplication",
    "apply_discount",
    "apply_discounts",
    "select_tier",
    "validate_discount",
]
