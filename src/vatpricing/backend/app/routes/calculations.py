"""REST endpoints for pricing calculations."""

from __future__ import annotations

import logging
import os
from http import HTTPStatus
from typing import Any

from flask import Blueprint, request

from vatpricing.backend.app.errors import ValidationError
from vatpricing.backend.app.http import problem_response
from vatpricing.backend.app.services.calculation_service import (
    DEFAULT_HISTORY_PAGE_SIZE,
    build_calculation_model,
    build_history_model,
    run_calculation,
)
from vatpricing.backend.app.services.repositories import InMemoryCalculationRepository
from vatpricing.backend.services.request_parser import parse_calculation_payload
from vatpricing.backend.services.response_builder import build_calculation_response

blueprint = Blueprint("calculations", __name__, url_prefix="/api/v1/pricing")

logger = logging.getLogger(__name__)


def _parse_capacity(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    try:
        parsed = int(value)
    except ValueError:
        logger.warning("Ignoring invalid value for VATPRICING_CALCULATION_CAPACITY: %s", value)
        return None
    if parsed <= 0:
        logger.warning(
            "Ignoring non-positive value for VATPRICING_CALCULATION_CAPACITY: %s", value
        )
        return None
    return parsed


def _build_repository() -> InMemoryCalculationRepository:
    capacity = _parse_capacity(os.getenv("VATPRICING_CALCULATION_CAPACITY"))
    if capacity is None:
        return InMemoryCalculationRepository()
    return InMemoryCalculationRepository(max_items=capacity)


_REPOSITORY = _build_repository()


def _not_found(calculation_id: str) -> tuple[Any, int]:
    return problem_response(
        "not_found",
        status=HTTPStatus.NOT_FOUND,
        message=f"Calculation {calculation_id} not found",
    ).to_response()


@blueprint.post("/calculations")
def create_calculation() -> tuple[Any, int]:
    """Price the submitted request and keep the result for later lookups."""

    payload = parse_calculation_payload(request)
    outcome = run_calculation(payload, calculation_repository=_REPOSITORY)
    return build_calculation_response(
        build_calculation_model(outcome), status=HTTPStatus.CREATED
    )


def _query_int(name: str, default: int) -> int:
    raw = request.args.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Query parameter '{name}' must be an integer") from None


def _history_user() -> str:
    user_id = request.args.get("user_id", "").strip()
    if not user_id:
        user_id = request.headers.get("X-User-Id", "").strip()
    return user_id or "anonymous"


@blueprint.get("/calculations")
def list_calculations() -> tuple[Any, int]:
    """Return one page of a user's stored calculations, newest first."""

    user_id = _history_user()
    include_archived = request.args.get("include_archived", "").strip().lower() in {
        "1",
        "true",
        "yes",
    }
    outcomes = _REPOSITORY.list_for_user(user_id, include_archived=include_archived)
    history = build_history_model(
        outcomes,
        user_id=user_id,
        page=_query_int("page", 1),
        page_size=_query_int("page_size", DEFAULT_HISTORY_PAGE_SIZE),
    )
    return build_calculation_response(history)


@blueprint.get("/calculations/<string:calculation_id>")
def get_calculation(calculation_id: str) -> tuple[Any, int]:
    try:
        outcome = _REPOSITORY.get(calculation_id)
    except KeyError:
        return _not_found(calculation_id)
    return build_calculation_response(build_calculation_model(outcome))


@blueprint.post("/calculations/<string:calculation_id>/archive")
def archive_calculation(calculation_id: str) -> tuple[Any, int]:
    try:
        outcome = _REPOSITORY.set_archived(calculation_id, True)
    except KeyError:
        return _not_found(calculation_id)
    return build_calculation_response(build_calculation_model(outcome))


@blueprint.post("/calculations/<string:calculation_id>/unarchive")
def unarchive_calculation(calculation_id: str) -> tuple[Any, int]:
    try:
        outcome = _REPOSITORY.set_archived(calculation_id, False)
    except KeyError:
        return _not_found(calculation_id)
    return build_calculation_response(build_calculation_model(outcome))
