"""Domain-specific calculation helpers."""

from vatpricing.backend.app.models.discounts import (
    DiscountApplication,
    apply_discount,
    apply_discounts,
    select_tier,
    validate_discount,
)

from .country import CountryCostBreakdown, CountryCostCalculator, RuleWarning
from .rule_evaluator import build_bindings, conditions_met, evaluate_rule, order_rules
from .utils import format_percentage, round_currency, round_rate

__all__ = [
    "CountryCostBreakdown",
    "CountryCostCalculator",
    "DiscountApplication",
    "RuleWarning",
    "apply_discount",
    "apply_discounts",
    "build_bindings",
    "conditions_met",
    "evaluate_rule",
    "format_percentage",
    "order_rules",
    "round_currency",
    "round_rate",
    "select_tier",
    "validate_discount",
]
