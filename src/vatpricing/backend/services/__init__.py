"""Service-layer helpers for the pricing backend."""

from vatpricing.backend.app.services.calculation_service import (
    build_calculation_model,
    calculate,
    run_calculation,
)

from .request_parser import parse_calculation_payload
from .response_builder import build_calculation_response

__all__ = [
    "build_calculation_model",
    "build_calculation_response",
    "calculate",
    "parse_calculation_payload",
    "run_calculation",
]
