"""Domain values and API schemas shared across the pricing services.

Money, rules and countries are immutable values built through validating
factories; :class:`Calculation` is the single mutable aggregate and is owned
by exactly one request at a time. The Pydantic models in :mod:`.api` describe
the wire format only.
"""

from .money import Money, normalise_currency_code, to_decimal
from .expressions import (
    Expression,
    ExpressionError,
    ExpressionEvaluationError,
    ExpressionSyntaxError,
    compile_expression,
)
from .rules import Rule, RuleCondition, RuleParameter, RuleType
from .country import Country, FilingFrequency
from .calculation import (
    DEFAULT_CURRENCY,
    Calculation,
    CalculationCountry,
    CalculationState,
)
from .api import (
    CalculationHistoryModel,
    CalculationMeta,
    CalculationModel,
    CalculationRequest,
    CountryBreakdown,
    CountryErrorEntry,
    DiscountLine,
    ServiceType,
    WarningEntry,
    format_validation_error,
)

__all__ = [
    "Calculation",
    "CalculationCountry",
    "CalculationHistoryModel",
    "CalculationMeta",
    "CalculationModel",
    "CalculationRequest",
    "CalculationState",
    "Country",
    "CountryBreakdown",
    "CountryErrorEntry",
    "DEFAULT_CURRENCY",
    "DiscountLine",
    "Expression",
    "ExpressionError",
    "ExpressionEvaluationError",
    "ExpressionSyntaxError",
    "FilingFrequency",
    "Money",
    "Rule",
    "RuleCondition",
    "RuleParameter",
    "RuleType",
    "ServiceType",
    "WarningEntry",
    "compile_expression",
    "format_validation_error",
    "normalise_currency_code",
    "to_decimal",
]
