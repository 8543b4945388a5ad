"""Helpers for normalising incoming calculation requests."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from flask import Request
from werkzeug.exceptions import BadRequest

_CAMEL_CASE_FIELDS = {
    "serviceType": "service_type",
    "transactionVolume": "transaction_volume",
    "filingFrequency": "frequency",
    "countryCodes": "country_codes",
    "additionalServices": "additional_services",
    "currencyCode": "currency_code",
    "calculationDate": "calculation_date",
    "userId": "user_id",
    "allOrNothing": "all_or_nothing",
}


def _normalise_keys(payload: dict[str, Any]) -> dict[str, Any]:
    """Accept camelCase field names used by existing API clients."""

    normalised: dict[str, Any] = {}
    for key, value in payload.items():
        target = _CAMEL_CASE_FIELDS.get(key, key)
        if target in normalised:
            raise BadRequest(f"Field '{target}' was supplied more than once")
        normalised[target] = value
    return normalised


def _resolve_user(req: Request, payload: dict[str, Any]) -> None:
    """Fill ``user_id`` from the ``X-User-Id`` header when the body omits it."""

    if payload.get("user_id"):
        return
    header = req.headers.get("X-User-Id", "").strip()
    if header:
        payload["user_id"] = header


def parse_calculation_payload(req: Request) -> dict[str, Any]:
    """Extract and validate a JSON payload from ``req``."""

    data = req.get_json(silent=True)
    if data is None:
        raise BadRequest("Request body must be valid JSON")
    if not isinstance(data, Mapping):
        raise BadRequest("Request JSON must be an object")

    payload = _normalise_keys(dict(data))
    _resolve_user(req, payload)

    return payload
