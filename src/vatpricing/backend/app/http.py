"""HTTP helper utilities shared across Flask blueprints."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from flask import jsonify

from .errors import PricingError, UnknownCountryError


@dataclass(frozen=True)
class ProblemResponse:
    """JSON error payload in the spirit of RFC 7807."""

    error: str
    status: int
    message: str | None = None
    extra: Mapping[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error}
        if self.message:
            payload["message"] = self.message
        if self.extra:
            payload.update(self.extra)
        return payload

    def to_response(self) -> tuple[Any, int]:
        return jsonify(self.as_dict()), self.status


def problem_response(
    error: str,
    *,
    status: int,
    message: str | None = None,
    **extra: Any,
) -> ProblemResponse:
    """Build a :class:`ProblemResponse`; keyword extras are merged into the body."""

    additional: Mapping[str, Any] | None = extra or None
    return ProblemResponse(error=error, status=status, message=message, extra=additional)


def problem_from_error(error: PricingError) -> ProblemResponse:
    """Map a pricing engine error onto its problem payload."""

    extra: dict[str, Any] = {}
    if error.details:
        extra["details"] = list(error.details)
    if isinstance(error, UnknownCountryError):
        extra["country_code"] = error.country_code
    return problem_response(
        error.code, status=int(error.status), message=error.message, **extra
    )


__all__ = ["ProblemResponse", "problem_from_error", "problem_response"]
