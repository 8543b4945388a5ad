"""The calculation aggregate: per-country costs plus an ordered discount ledger.

A :class:`Calculation` is owned by a single request. It keeps ``total_cost``
equal to the sum of its country costs with every recorded discount
re-applied in insertion order, which :meth:`Calculation.recalculate_total_cost`
re-derives from scratch.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import uuid4

from vatpricing.backend.app.errors import (
    CurrencyMismatchError,
    InvalidOperationError,
    ValidationError,
)

from .country import FilingFrequency
from .discounts import DiscountApplication, apply_discount, apply_discounts
from .money import Money, normalise_currency_code

DEFAULT_CURRENCY = "EUR"

_COUNTRY_CODE = re.compile(r"^[A-Z]{2}$")


class CalculationState(str, Enum):
    DRAFT = "Draft"
    FINALIZED = "Finalized"
    ARCHIVED = "Archived"


@dataclass(frozen=True)
class CalculationCountry:
    """Priced country entry owned by a :class:`Calculation`."""

    calculation_id: str
    country_code: str
    country_cost: Money
    base_cost: Money
    additional_cost: Money
    applied_rules: tuple[str, ...] = ()


def _normalise_country_code(country_code: Any) -> str:
    if not isinstance(country_code, str):
        raise ValidationError("Country code is required")
    code = country_code.strip().upper()
    if not _COUNTRY_CODE.match(code):
        raise ValidationError(f"Country code '{country_code}' must be two letters")
    return code


def _require_identifier(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def _require_volume(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError("Transaction volume must be a positive integer")
    return value


class Calculation:
    """Single-owner aggregate combining country costs and discounts."""

    def __init__(
        self,
        *,
        calculation_id: str,
        user_id: str,
        service_id: str,
        transaction_volume: int,
        filing_frequency: FilingFrequency,
        currency_code: str,
        calculation_date: date,
    ) -> None:
        self._calculation_id = calculation_id
        self._user_id = user_id
        self._service_id = service_id
        self._transaction_volume = transaction_volume
        self._filing_frequency = filing_frequency
        self._currency_code = currency_code
        self._calculation_date = calculation_date
        self._countries: dict[str, CalculationCountry] = {}
        self._discounts: dict[str, Decimal] = {}
        self._applications: list[DiscountApplication] = []
        self._total_cost = Money.zero(currency_code)
        self._state = CalculationState.DRAFT
        self._state_before_archive: CalculationState | None = None

    @classmethod
    def create(
        cls,
        *,
        user_id: str,
        service_id: str,
        transaction_volume: int,
        filing_frequency: FilingFrequency | str,
        currency_code: str = DEFAULT_CURRENCY,
        calculation_date: date | None = None,
        calculation_id: str | None = None,
    ) -> Calculation:
        return cls(
            calculation_id=calculation_id or uuid4().hex,
            user_id=_require_identifier(user_id, "User id"),
            service_id=_require_identifier(service_id, "Service id"),
            transaction_volume=_require_volume(transaction_volume),
            filing_frequency=FilingFrequency.parse(filing_frequency),
            currency_code=normalise_currency_code(currency_code),
            calculation_date=calculation_date or date.today(),
        )

    # -- read-only views -------------------------------------------------

    @property
    def calculation_id(self) -> str:
        return self._calculation_id

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def service_id(self) -> str:
        return self._service_id

    @property
    def transaction_volume(self) -> int:
        return self._transaction_volume

    @property
    def filing_frequency(self) -> FilingFrequency:
        return self._filing_frequency

    @property
    def currency_code(self) -> str:
        return self._currency_code

    @property
    def calculation_date(self) -> date:
        return self._calculation_date

    @property
    def total_cost(self) -> Money:
        return self._total_cost

    @property
    def subtotal(self) -> Money:
        """Sum of country costs before any discount."""

        return self._sum_countries()

    @property
    def countries(self) -> tuple[CalculationCountry, ...]:
        return tuple(self._countries.values())

    @property
    def discounts(self) -> Mapping[str, Decimal]:
        return MappingProxyType(self._discounts)

    @property
    def discount_applications(self) -> tuple[DiscountApplication, ...]:
        return tuple(self._applications)

    @property
    def state(self) -> CalculationState:
        return self._state

    @property
    def is_archived(self) -> bool:
        return self._state is CalculationState.ARCHIVED

    # -- mutations -------------------------------------------------------

    def _require_draft(self) -> None:
        if self._state is CalculationState.ARCHIVED:
            raise InvalidOperationError(
                f"Calculation {self._calculation_id} is archived and read-only"
            )
        if self._state is CalculationState.FINALIZED:
            raise InvalidOperationError(
                f"Calculation {self._calculation_id} is finalized"
            )

    def _require_currency(self, money: Any, field: str) -> Money:
        if not isinstance(money, Money):
            raise ValidationError(f"{field} must be a Money value")
        if money.currency_code != self._currency_code:
            raise CurrencyMismatchError(self._currency_code, money.currency_code)
        return money

    def update_transaction_volume(self, transaction_volume: int) -> None:
        volume = _require_volume(transaction_volume)
        self._require_draft()
        self._transaction_volume = volume

    def update_filing_frequency(self, filing_frequency: FilingFrequency | str) -> None:
        frequency = FilingFrequency.parse(filing_frequency)
        self._require_draft()
        self._filing_frequency = frequency

    def add_country(
        self,
        country_code: str,
        cost: Money,
        *,
        applied_rules: Iterable[str] = (),
        base_cost: Money | None = None,
        additional_cost: Money | None = None,
    ) -> CalculationCountry:
        """Add a priced country and fold its cost into ``total_cost``."""

        self._require_draft()
        code = _normalise_country_code(country_code)
        cost = self._require_currency(cost, "Country cost")
        if cost.is_negative:
            raise ValidationError(f"Country cost for {code} cannot be negative")
        base = (
            self._require_currency(base_cost, "Base cost")
            if base_cost is not None
            else cost
        )
        additional = (
            self._require_currency(additional_cost, "Additional cost")
            if additional_cost is not None
            else cost.subtract(base)
        )
        if base.add(additional) != cost:
            raise ValidationError(
                f"Base and additional costs for {code} must sum to the country cost"
            )
        if code in self._countries:
            raise InvalidOperationError(
                f"Country {code} has already been added to calculation "
                f"{self._calculation_id}"
            )

        entry = CalculationCountry(
            calculation_id=self._calculation_id,
            country_code=code,
            country_cost=cost,
            base_cost=base,
            additional_cost=additional,
            applied_rules=tuple(applied_rules),
        )
        self._countries[code] = entry
        if self._applications:
            self._rederive()
        elif len(self._countries) == 1:
            self._total_cost = cost
        else:
            self._total_cost = self._total_cost.add(cost)
        return entry

    def remove_country(self, country_code: str) -> CalculationCountry:
        self._require_draft()
        code = _normalise_country_code(country_code)
        if code not in self._countries:
            raise InvalidOperationError(
                f"Country {code} is not part of calculation {self._calculation_id}"
            )

        entry = self._countries.pop(code)
        self._rederive()
        return entry

    def add_discount(self, name: str, percentage: Any) -> DiscountApplication:
        """Discount the current total and record ``name`` in the ledger.

        Re-using a name compounds on the current total and overwrites the
        recorded percentage; earlier applications are not reprocessed.
        """

        self._require_draft()
        application = apply_discount(self._total_cost, name, percentage)
        self._discounts[application.name] = application.percentage
        self._applications.append(application)
        self._total_cost = application.discounted_total
        return application

    def recalculate_total_cost(self) -> Money:
        """Re-derive the total from country costs and the discount ledger."""

        total, _ = apply_discounts(
            self._sum_countries(),
            [(item.name, item.percentage) for item in self._applications],
        )
        return total

    def finalize(self) -> None:
        self._require_draft()
        expected = self.recalculate_total_cost()
        if expected != self._total_cost:
            raise InvalidOperationError(
                f"Calculation total {self._total_cost} diverges from recalculated "
                f"total {expected}"
            )
        self._state = CalculationState.FINALIZED

    def archive(self) -> None:
        if self._state is CalculationState.ARCHIVED:
            return
        self._state_before_archive = self._state
        self._state = CalculationState.ARCHIVED

    def unarchive(self) -> None:
        if self._state is not CalculationState.ARCHIVED:
            return
        self._state = self._state_before_archive or CalculationState.FINALIZED
        self._state_before_archive = None

    # -- helpers ---------------------------------------------------------

    def _sum_countries(self) -> Money:
        total = Money.zero(self._currency_code)
        for entry in self._countries.values():
            total = total.add(entry.country_cost)
        return total

    def _rederive(self) -> None:
        total, applications = apply_discounts(
            self._sum_countries(),
            [(item.name, item.percentage) for item in self._applications],
        )
        self._applications = applications
        self._total_cost = total

    def __repr__(self) -> str:
        return (
            f"Calculation(id={self._calculation_id!r}, state={self._state.value}, "
            f"countries={list(self._countries)}, total={self._total_cost})"
        )


__all__ = [
    "Calculation",
    "CalculationCountry",
    "CalculationState",
    "DEFAULT_CURRENCY",
]
