"""Declarative pricing rules scoped to a country.

Rules are immutable: :meth:`Rule.create` validates every field, and the
``update_*``/``add_*`` helpers return a new instance rather than mutating the
receiver.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from vatpricing.backend.app.errors import ValidationError

from .expressions import ExpressionSyntaxError, compile_expression
from .money import to_decimal

DEFAULT_PRIORITY = 100
MIN_PRIORITY = 1
MAX_PRIORITY = 1000
MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
MAX_EXPRESSION_LENGTH = 2000

_PARAMETER_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_COUNTRY_CODE = re.compile(r"^[A-Za-z]{2}$")
_NUMBER_TEXT = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}


class RuleType(str, Enum):
    """Kinds of pricing rule, which also drive the base/additional split."""

    VAT_RATE = "VatRate"
    THRESHOLD = "Threshold"
    COMPLEXITY = "Complexity"
    SPECIAL_REQUIREMENT = "SpecialRequirement"
    DISCOUNT = "Discount"

    @classmethod
    def parse(cls, value: Any) -> RuleType:
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().replace("_", "").lower()
        for member in cls:
            if text in {member.value.lower(), member.name.replace("_", "").lower()}:
                return member
        raise ValidationError(f"Unknown rule type '{value}'")

    @property
    def is_base(self) -> bool:
        return self in {RuleType.VAT_RATE, RuleType.THRESHOLD}


PARAMETER_TYPES = ("string", "number", "boolean", "date")

CONDITION_OPERATORS = {
    name.lower(): name
    for name in (
        "equals",
        "notEquals",
        "greaterThan",
        "lessThan",
        "greaterThanOrEqual",
        "lessThanOrEqual",
        "contains",
        "startsWith",
        "endsWith",
    )
}


def _require_text(value: Any, field: str, max_length: int | None = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    text = value.strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} cannot exceed {max_length} characters")
    return text


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValidationError(f"'{value}' is not a boolean value")


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"'{value}' is not an ISO date") from exc


@dataclass(frozen=True)
class RuleParameter:
    """A named, typed variable that a rule expression may reference."""

    name: str
    data_type: str = "string"
    default_value: str = ""

    @classmethod
    def create(cls, name: str, data_type: str = "string", default_value: Any = "") -> RuleParameter:
        name = _require_text(name, "Parameter name")
        if not _PARAMETER_NAME.match(name):
            raise ValidationError(
                f"Parameter name '{name}' must start with a letter and contain only "
                "letters, digits or underscores"
            )
        normalised_type = str(data_type or "").strip().lower()
        if normalised_type not in PARAMETER_TYPES:
            raise ValidationError(
                f"Parameter type '{data_type}' must be one of {', '.join(PARAMETER_TYPES)}"
            )
        default_text = "" if default_value is None else str(default_value).strip()
        parameter = cls(name=name, data_type=normalised_type, default_value=default_text)
        if default_text:
            parameter.coerce(default_text)
        return parameter

    def coerce(self, raw: Any) -> Any:
        """Convert ``raw`` to this parameter's declared type."""

        if raw is None:
            return None
        if self.data_type == "number":
            return to_decimal(raw)
        if self.data_type == "boolean":
            return _parse_bool(raw)
        if self.data_type == "date":
            return _parse_date(raw)
        return raw.value if isinstance(raw, Enum) else str(raw)

    def default(self) -> Any:
        """Return the coerced default, or ``None`` when no default is declared."""

        if not self.default_value:
            return None
        return self.coerce(self.default_value)


def _comparable(value: Any) -> Any:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, (bool, Decimal, date)):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).strip()
    if _NUMBER_TEXT.match(text):
        return Decimal(text)
    if text.lower() in {"true", "false"}:
        return text.lower() == "true"
    if _ISO_DATE.match(text):
        try:
            return date.fromisoformat(text)
        except ValueError:
            return text
    return text


def _text(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip().casefold()


def _same_kind(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool)
    for kind in (Decimal, date):
        if isinstance(left, kind) and isinstance(right, kind):
            return True
    return False


@dataclass(frozen=True)
class RuleCondition:
    """Applicability test comparing one context value against a literal."""

    parameter: str
    operator: str
    value: str

    @classmethod
    def create(cls, parameter: str, operator: str, value: Any) -> RuleCondition:
        parameter = _require_text(parameter, "Condition parameter")
        key = str(operator or "").strip().lower()
        if key not in CONDITION_OPERATORS:
            raise ValidationError(
                f"Condition operator '{operator}' must be one of "
                f"{', '.join(CONDITION_OPERATORS.values())}"
            )
        if value is None:
            raise ValidationError("Condition value is required")
        literal = value.value if isinstance(value, Enum) else value
        if isinstance(literal, bool):
            literal = "true" if literal else "false"
        return cls(parameter=parameter, operator=CONDITION_OPERATORS[key], value=str(literal))

    def evaluate(self, context: Mapping[str, Any]) -> bool:
        """Return ``True`` when the context satisfies this condition.

        A parameter missing from ``context`` never satisfies the condition.
        """

        if self.parameter not in context or context[self.parameter] is None:
            return False

        actual = _comparable(context[self.parameter])
        expected = _comparable(self.value)
        operator = self.operator

        if operator in {"equals", "notEquals"}:
            if _same_kind(actual, expected):
                matched = actual == expected
            else:
                matched = _text(context[self.parameter]) == _text(self.value)
            return matched if operator == "equals" else not matched

        if operator in {"contains", "startsWith", "endsWith"}:
            haystack = _text(context[self.parameter])
            needle = _text(self.value)
            if operator == "contains":
                return needle in haystack
            if operator == "startsWith":
                return haystack.startswith(needle)
            return haystack.endswith(needle)

        if _same_kind(actual, expected) and not isinstance(actual, bool):
            left, right = actual, expected
        elif isinstance(actual, str) and isinstance(expected, str):
            left, right = actual.casefold(), expected.casefold()
        else:
            return False

        if operator == "greaterThan":
            return left > right
        if operator == "lessThan":
            return left < right
        if operator == "greaterThanOrEqual":
            return left >= right
        return left <= right


def _validate_expression(expression: Any) -> str:
    text = _require_text(expression, "Rule expression", MAX_EXPRESSION_LENGTH)
    try:
        compile_expression(text)
    except ExpressionSyntaxError as exc:
        raise ValidationError(f"Invalid rule expression: {exc}") from exc
    return text


def _validate_priority(priority: Any) -> int:
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationError("Rule priority must be an integer")
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValidationError(
            f"Rule priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}"
        )
    return priority


def _validate_window(effective_from: Any, effective_to: Any) -> tuple[date, date | None]:
    if effective_from is None:
        raise ValidationError("Rule effective-from date is required")
    start = _parse_date(effective_from)
    end = _parse_date(effective_to) if effective_to is not None else None
    if end is not None and end < start:
        raise ValidationError("Rule effective-to date cannot precede its effective-from date")
    return start, end


def _unique_parameters(parameters: Iterable[RuleParameter]) -> tuple[RuleParameter, ...]:
    seen: set[str] = set()
    result: list[RuleParameter] = []
    for parameter in parameters:
        if not isinstance(parameter, RuleParameter):
            raise ValidationError("Rule parameters must be RuleParameter instances")
        key = parameter.name.lower()
        if key in seen:
            raise ValidationError(f"Parameter '{parameter.name}' already exists")
        seen.add(key)
        result.append(parameter)
    return tuple(result)


@dataclass(frozen=True)
class Rule:
    """A priority-ordered, expression-based pricing adjustment."""

    rule_id: str
    country_code: str
    rule_type: RuleType
    name: str
    expression: str
    effective_from: date
    effective_to: date | None = None
    priority: int = DEFAULT_PRIORITY
    is_active: bool = True
    description: str = ""
    parameters: tuple[RuleParameter, ...] = ()
    conditions: tuple[RuleCondition, ...] = ()

    @classmethod
    def create(
        cls,
        *,
        country_code: str,
        rule_type: RuleType | str,
        name: str,
        expression: str,
        effective_from: date | str,
        effective_to: date | str | None = None,
        priority: int = DEFAULT_PRIORITY,
        rule_id: str | None = None,
        is_active: bool = True,
        description: str = "",
        parameters: Iterable[RuleParameter] = (),
        conditions: Iterable[RuleCondition] = (),
    ) -> Rule:
        code = _require_text(country_code, "Country code")
        if not _COUNTRY_CODE.match(code):
            raise ValidationError(f"Country code '{country_code}' must be two letters")
        if rule_type is None:
            raise ValidationError("Rule type is required")
        if description and len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Rule description cannot exceed {MAX_DESCRIPTION_LENGTH} characters"
            )
        start, end = _validate_window(effective_from, effective_to)
        condition_items = tuple(conditions)
        if any(not isinstance(item, RuleCondition) for item in condition_items):
            raise ValidationError("Rule conditions must be RuleCondition instances")

        return cls(
            rule_id=(rule_id or "").strip() or str(uuid4()),
            country_code=code.upper(),
            rule_type=RuleType.parse(rule_type),
            name=_require_text(name, "Rule name", MAX_NAME_LENGTH),
            expression=_validate_expression(expression),
            effective_from=start,
            effective_to=end,
            priority=_validate_priority(priority),
            is_active=bool(is_active),
            description=(description or "").strip(),
            parameters=_unique_parameters(parameters),
            conditions=condition_items,
        )

    def is_in_effect(self, on: date) -> bool:
        """Return ``True`` when the rule is active and ``on`` falls in its window."""

        if not self.is_active or on < self.effective_from:
            return False
        return self.effective_to is None or on <= self.effective_to

    def update_priority(self, priority: int) -> Rule:
        return replace(self, priority=_validate_priority(priority))

    def update_effective_dates(
        self, effective_from: date | str, effective_to: date | str | None = None
    ) -> Rule:
        start, end = _validate_window(effective_from, effective_to)
        return replace(self, effective_from=start, effective_to=end)

    def update_expression(self, expression: str) -> Rule:
        return replace(self, expression=_validate_expression(expression))

    def set_active(self, is_active: bool) -> Rule:
        return replace(self, is_active=bool(is_active))

    def add_parameter(
        self, name: str, data_type: str = "string", default_value: Any = ""
    ) -> Rule:
        parameter = RuleParameter.create(name, data_type, default_value)
        return replace(self, parameters=_unique_parameters((*self.parameters, parameter)))

    def remove_parameter(self, name: str) -> Rule:
        remaining = tuple(p for p in self.parameters if p.name.lower() != name.lower())
        if len(remaining) == len(self.parameters):
            raise ValidationError(f"Parameter '{name}' not found on rule {self.rule_id}")
        return replace(self, parameters=remaining)

    def add_condition(self, parameter: str, operator: str, value: Any) -> Rule:
        condition = RuleCondition.create(parameter, operator, value)
        return replace(self, conditions=(*self.conditions, condition))


__all__ = [
    "CONDITION_OPERATORS",
    "DEFAULT_PRIORITY",
    "MAX_PRIORITY",
    "MIN_PRIORITY",
    "PARAMETER_TYPES",
    "Rule",
    "RuleCondition",
    "RuleParameter",
    "RuleType",
]
