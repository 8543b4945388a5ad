"""Unit tests for response formatting helpers."""

from __future__ import annotations

from decimal import Decimal
from http import HTTPStatus

from flask import Flask

from vatpricing.backend.app.models import DiscountLine
from vatpricing.backend.services.response_builder import build_calculation_response


def test_build_calculation_response_returns_json(app: Flask) -> None:
    """Formatting helper should generate a JSON response tuple."""

    line = DiscountLine(name="Loyalty", percentage=Decimal("10"), amount=Decimal("12.50"))

    with app.app_context():
        response, status = build_calculation_response(line)

    assert status == 200
    assert response.get_json() == {"name": "Loyalty", "percentage": 10.0, "amount": 12.5}


def test_build_calculation_response_honours_status(app: Flask) -> None:
    line = DiscountLine(name="Loyalty", percentage=Decimal("5"), amount=Decimal("1"))

    with app.app_context():
        _, status = build_calculation_response(line, status=HTTPStatus.CREATED)

    assert status == 201
