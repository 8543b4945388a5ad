"""Unit tests for calculation request parsing helpers."""

from __future__ import annotations

import pytest
from flask import Flask, request
from werkzeug.exceptions import BadRequest

from vatpricing.backend.services.request_parser import parse_calculation_payload

ENDPOINT = "/api/v1/pricing/calculations"


def test_parse_payload_maps_camel_case_fields(app: Flask) -> None:
    with app.test_request_context(
        ENDPOINT,
        method="POST",
        json={
            "serviceType": "Standard",
            "transactionVolume": 100,
            "filingFrequency": "Quarterly",
            "countryCodes": ["GB"],
        },
    ):
        payload = parse_calculation_payload(request)

    assert payload == {
        "service_type": "Standard",
        "transaction_volume": 100,
        "frequency": "Quarterly",
        "country_codes": ["GB"],
    }


def test_parse_payload_uses_user_header(app: Flask) -> None:
    """The X-User-Id header should supply the user when absent."""

    with app.test_request_context(
        ENDPOINT,
        method="POST",
        json={"service_type": "Standard"},
        headers={"X-User-Id": "user-42"},
    ):
        payload = parse_calculation_payload(request)

    assert payload["user_id"] == "user-42"


def test_parse_payload_preserves_explicit_user(app: Flask) -> None:
    with app.test_request_context(
        ENDPOINT,
        method="POST",
        json={"user_id": "body-user"},
        headers={"X-User-Id": "header-user"},
    ):
        payload = parse_calculation_payload(request)

    assert payload["user_id"] == "body-user"


def test_parse_payload_rejects_duplicate_aliases(app: Flask) -> None:
    with app.test_request_context(
        ENDPOINT,
        method="POST",
        json={"frequency": "Monthly", "filingFrequency": "Quarterly"},
    ):
        with pytest.raises(BadRequest):
            parse_calculation_payload(request)


def test_parse_payload_rejects_non_object(app: Flask) -> None:
    """Non-object JSON payloads should trigger BadRequest responses."""

    with app.test_request_context(
        ENDPOINT,
        method="POST",
        json=["not", "an", "object"],
    ):
        with pytest.raises(BadRequest):
            parse_calculation_payload(request)


def test_parse_payload_rejects_invalid_json(app: Flask) -> None:
    with app.test_request_context(
        ENDPOINT,
        method="POST",
        data="{not json",
        content_type="application/json",
    ):
        with pytest.raises(BadRequest):
            parse_calculation_payload(request)
