"""Typed error taxonomy raised by the pricing engine.

Every error derives from :class:`PricingError`, itself a ``ValueError`` so the
Flask layer can keep treating domain failures as client-visible input
problems. Each subclass carries a stable ``code`` and the HTTP ``status`` used
when it escapes a request handler.
"""

from __future__ import annotations

from collections.abc import Iterable
from http import HTTPStatus


class PricingError(ValueError):
    """Base class for all pricing engine failures."""

    code = "pricing_error"
    status = HTTPStatus.BAD_REQUEST

    def __init__(self, message: str, *, details: Iterable[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: tuple[str, ...] = tuple(details or ())


class ValidationError(PricingError):
    """Raised when a request or domain value is malformed."""

    code = "validation_error"
    status = HTTPStatus.BAD_REQUEST


class UnknownCountryError(PricingError):
    """Raised when a country code is not recognised or not active."""

    code = "unknown_country"
    status = HTTPStatus.UNPROCESSABLE_ENTITY

    def __init__(self, country_code: str, message: str | None = None) -> None:
        super().__init__(message or f"Unknown or inactive country code '{country_code}'")
        self.country_code = country_code


class RuleEvaluationError(PricingError):
    """Raised when a single rule cannot be evaluated."""

    code = "rule_evaluation_error"
    status = HTTPStatus.UNPROCESSABLE_ENTITY

    def __init__(self, rule_id: str, message: str) -> None:
        super().__init__(f"Rule '{rule_id}' failed to evaluate: {message}")
        self.rule_id = rule_id
        self.reason = message


class CurrencyMismatchError(PricingError):
    """Raised when Money values of different currencies are combined."""

    code = "currency_mismatch"
    status = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, left: str, right: str) -> None:
        super().__init__(f"Currency mismatch: {left} vs {right}")
        self.currencies = (left, right)


class InvalidOperationError(PricingError):
    """Raised when an aggregate operation is not allowed in its current state."""

    code = "invalid_operation"
    status = HTTPStatus.CONFLICT


__all__ = [
    "CurrencyMismatchError",
    "InvalidOperationError",
    "PricingError",
    "RuleEvaluationError",
    "UnknownCountryError",
    "ValidationError",
]
