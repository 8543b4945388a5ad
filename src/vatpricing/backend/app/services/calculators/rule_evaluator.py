"""Evaluate a single pricing rule against a calculation context."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

from vatpricing.backend.app.errors import PricingError, RuleEvaluationError
from vatpricing.backend.app.models.expressions import ExpressionError, compile_expression
from vatpricing.backend.app.models.money import Money
from vatpricing.backend.app.models.rules import Rule


def order_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Sort by ascending priority, breaking ties on ``rule_id``."""

    return sorted(rules, key=lambda rule: (rule.priority, rule.rule_id))


def conditions_met(rule: Rule, context: Mapping[str, Any]) -> bool:
    return all(condition.evaluate(context) for condition in rule.conditions)


def build_bindings(rule: Rule, context: Mapping[str, Any]) -> dict[str, Any]:
    """Merge parameter values into a fresh binding map.

    Values already present in ``context`` win; declared parameters missing
    from it are coerced from the request value or fall back to their default.
    """

    bindings = dict(context)
    for parameter in rule.parameters:
        supplied = context.get(parameter.name)
        try:
            value = parameter.coerce(supplied) if supplied is not None else parameter.default()
        except PricingError as exc:
            raise RuleEvaluationError(
                rule.rule_id, f"parameter '{parameter.name}': {exc}"
            ) from exc
        if value is not None:
            bindings[parameter.name] = value
    return bindings


def evaluate_rule(rule: Rule, context: Mapping[str, Any], *, currency_code: str) -> Money:
    """Return the monetary effect of ``rule`` in ``currency_code``.

    Conditions see the same bindings as the expression, so declared
    parameter defaults take part in them. A rule whose conditions do not hold
    contributes zero. Parse or evaluation failures raise :class:`RuleEvaluationError`.
    """

    bindings = build_bindings(rule, MappingProxyType(dict(context)))
    if not conditions_met(rule, MappingProxyType(bindings)):
        return Money.zero(currency_code)

    try:
        value = compile_expression(rule.expression).evaluate(bindings)
    except ExpressionError as exc:
        raise RuleEvaluationError(rule.rule_id, str(exc)) from exc
    return Money.of(value, currency_code)


__all__ = ["build_bindings", "conditions_met", "evaluate_rule", "order_rules"]
