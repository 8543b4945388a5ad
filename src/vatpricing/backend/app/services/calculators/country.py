"""Price a single country by folding its rules over a running total."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any

from vatpricing.backend.app.errors import RuleEvaluationError, UnknownCountryError
from vatpricing.backend.app.models.country import Country
from vatpricing.backend.app.models.money import Money
from vatpricing.backend.app.models.rules import RuleType

from .rule_evaluator import evaluate_rule, order_rules

if TYPE_CHECKING:  # pragma: no cover - typing only
    from vatpricing.backend.app.services.repositories import (
        CountryRepository,
        RuleRepository,
    )

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleWarning:
    """Diagnostic recorded when a rule is skipped or a result is adjusted."""

    country_code: str
    message: str
    rule_id: str | None = None


@dataclass(frozen=True)
class CountryCostBreakdown:
    """Immutable pricing result for one country.

    ``base_cost`` covers VAT-rate and threshold rules, ``additional_cost``
    every other rule type; the two always sum to ``total_cost``.
    """

    country_code: str
    country_name: str
    base_cost: Money
    additional_cost: Money
    total_cost: Money
    applied_rules: tuple[str, ...] = ()
    warnings: tuple[RuleWarning, ...] = ()


class CountryCostCalculator:
    """Combine rule effects for one country into a cost breakdown."""

    def __init__(
        self,
        rule_repository: RuleRepository,
        country_repository: CountryRepository,
    ) -> None:
        self._rules = rule_repository
        self._countries = country_repository

    def resolve_country(self, country_code: str) -> Country:
        code = str(country_code or "").strip().upper()
        country = self._countries.get_by_code(code)
        if country is None or not country.is_active:
            raise UnknownCountryError(code)
        return country

    def price_country(
        self,
        country_code: str,
        context: Mapping[str, Any],
        *,
        currency_code: str,
        as_of: date,
    ) -> CountryCostBreakdown:
        """Evaluate every in-effect rule for ``country_code`` in priority order.

        After each rule with a non-zero effect, ``basePrice`` in the scope seen
        by later rules becomes the running total. Rules that fail to evaluate
        are skipped and reported as warnings.
        """

        country = self.resolve_country(country_code)
        code = country.code

        scope: dict[str, Any] = dict(context)
        scope["countryCode"] = code
        scope["vatRate"] = country.standard_vat_rate

        candidates = self._rules.get_active_rules_for_country(code, as_of)
        rules = order_rules(
            rule
            for rule in candidates
            if rule.country_code == code and rule.is_in_effect(as_of)
        )

        zero = Money.zero(currency_code)
        running = base = additional = zero
        applied: list[str] = []
        warnings: list[RuleWarning] = []

        for rule in rules:
            try:
                effect = evaluate_rule(rule, scope, currency_code=currency_code)
            except RuleEvaluationError as exc:
                _LOGGER.warning(
                    "Skipping rule %s for %s: %s", rule.rule_id, code, exc.reason
                )
                warnings.append(RuleWarning(code, exc.message, rule.rule_id))
                continue

            if effect.is_zero:
                continue

            contribution = (
                zero.subtract(effect) if rule.rule_type is RuleType.DISCOUNT else effect
            )
            if rule.rule_type.is_base:
                base = base.add(contribution)
            else:
                additional = additional.add(contribution)
            running = running.add(contribution)
            applied.append(rule.rule_id)
            scope["basePrice"] = running.amount

        if running.is_negative:
            _LOGGER.warning("Clamping negative cost %s for %s to zero", running, code)
            warnings.append(
                RuleWarning(code, f"Negative cost {running} clamped to zero")
            )
            running = base = additional = zero

        return CountryCostBreakdown(
            country_code=code,
            country_name=country.name,
            base_cost=base,
            additional_cost=additional,
            total_cost=running,
            applied_rules=tuple(applied),
            warnings=tuple(warnings),
        )


__all__ = ["CountryCostBreakdown", "CountryCostCalculator", "RuleWarning"]
