"""Utilities for serialising calculation responses."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Tuple

from flask import jsonify
from pydantic import BaseModel

ResponseTuple = Tuple[Any, int]


def build_calculation_response(
    model: BaseModel, *, status: int = HTTPStatus.OK
) -> ResponseTuple:
    """Return a Flask JSON response for the calculation ``model``."""

    return jsonify(model.model_dump(mode="json")), int(status)
