"""Pydantic request and response models for the pricing API."""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    ValidationError,
    field_validator,
)

from .country import FilingFrequency
from .money import normalise_currency_code

MAX_TRANSACTION_VOLUME = 100_000

_COUNTRY_CODE = re.compile(r"^[A-Z]{2}$")
_PARAMETER_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

Amount = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]


class ServiceType(str, Enum):
    """Service tiers offered for VAT filing."""

    STANDARD = "Standard"
    COMPLEX = "Complex"
    PRIORITY = "Priority"

    @classmethod
    def parse(cls, value: Any) -> ServiceType:
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if text in {member.value.lower(), _SERVICE_ALIASES[member]}:
                return member
        raise ValueError(
            f"Service type must be one of {', '.join(m.value for m in cls)}"
        )


_SERVICE_ALIASES = {
    ServiceType.STANDARD: "standardfiling",
    ServiceType.COMPLEX: "complexfiling",
    ServiceType.PRIORITY: "priorityservice",
}


class CalculationRequest(BaseModel):
    """Validated input for a pricing calculation."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    service_type: ServiceType
    transaction_volume: int = Field(gt=0, le=MAX_TRANSACTION_VOLUME)
    frequency: FilingFrequency
    country_codes: list[str] = Field(min_length=1)
    additional_services: list[str] = Field(default_factory=list)
    currency_code: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    calculation_date: date | None = None
    user_id: str = "anonymous"
    all_or_nothing: bool = False

    @field_validator("service_type", mode="before")
    @classmethod
    def _parse_service_type(cls, value: Any) -> ServiceType:
        return ServiceType.parse(value)

    @field_validator("frequency", mode="before")
    @classmethod
    def _parse_frequency(cls, value: Any) -> FilingFrequency:
        return FilingFrequency.parse(value)

    @field_validator("transaction_volume", mode="before")
    @classmethod
    def _reject_boolean_volume(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("must be a positive integer")
        return value

    @field_validator("country_codes", mode="before")
    @classmethod
    def _normalise_country_codes(cls, value: Any) -> list[str]:
        if not isinstance(value, (list, tuple)):
            raise ValueError("must be a list of two-letter country codes")
        codes: list[str] = []
        for item in value:
            code = str(item).strip().upper() if isinstance(item, str) else ""
            if not _COUNTRY_CODE.match(code):
                raise ValueError(f"'{item}' is not a two-letter country code")
            if code in codes:
                raise ValueError(f"duplicate country code '{code}'")
            codes.append(code)
        return codes

    @field_validator("additional_services", mode="before")
    @classmethod
    def _normalise_services(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise ValueError("must be a list of service identifiers")
        services: list[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ValueError("service identifiers must be strings")
            if item.strip():
                services.append(item.strip())
        return services

    @field_validator("currency_code", mode="before")
    @classmethod
    def _normalise_currency(cls, value: Any) -> str | None:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return normalise_currency_code(value)

    @field_validator("parameters")
    @classmethod
    def _validate_parameter_names(cls, value: dict[str, Any]) -> dict[str, Any]:
        for name in value:
            if not _PARAMETER_NAME.match(name):
                raise ValueError(f"'{name}' is not a valid parameter name")
        return value

    @field_validator("user_id")
    @classmethod
    def _require_user(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("cannot be blank")
        return value.strip()


class CountryBreakdown(BaseModel):
    model_config = ConfigDict(extra="forbid")

    country_code: str
    country_name: str
    base_cost: Amount
    additional_cost: Amount
    total_cost: Amount
    applied_rules: list[str]


class DiscountLine(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    percentage: Amount
    amount: Amount


class CountryErrorEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    country_code: str
    error: str
    message: str


class WarningEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    country_code: str | None = None
    rule_id: str | None = None
    message: str


class CalculationMeta(BaseModel):
    """Metadata returned alongside the calculation output."""

    model_config = ConfigDict(extra="forbid")

    pricing_version: str
    catalog_version: str
    timings: dict[str, float] | None = None


class CalculationModel(BaseModel):
    """Full response payload produced by the calculation service."""

    model_config = ConfigDict(extra="forbid")

    calculation_id: str
    user_id: str
    service_type: ServiceType
    transaction_volume: int
    frequency: FilingFrequency
    calculation_date: date
    currency_code: str
    subtotal: Amount
    total_cost: Amount
    country_breakdowns: list[CountryBreakdown]
    discounts: dict[str, Amount]
    discount_breakdown: list[DiscountLine]
    additional_services: list[str]
    errors: list[CountryErrorEntry] = Field(default_factory=list)
    warnings: list[WarningEntry] = Field(default_factory=list)
    state: str
    is_archived: bool = False
    meta: CalculationMeta


class CalculationHistoryModel(BaseModel):
    """One page of a user's stored calculations, newest first."""

    model_config = ConfigDict(extra="forbid")

    user_id: str
    items: list[CalculationModel]
    total_count: int
    page: int
    page_size: int
    total_pages: int


def format_validation_error(error: ValidationError) -> str:
    """Return a concise human-readable description of validation issues."""

    messages: list[str] = []
    for issue in error.errors():
        location = ".".join(str(part) for part in issue.get("loc", ()))
        message = issue.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        messages.append(f"{location}: {message}" if location else message)

    details = "; ".join(messages) if messages else str(error)
    return f"Invalid calculation payload: {details}"


__all__ = [
    "Amount",
    "CalculationHistoryModel",
    "CalculationMeta",
    "CalculationModel",
    "CalculationRequest",
    "CountryBreakdown",
    "CountryErrorEntry",
    "DiscountLine",
    "MAX_TRANSACTION_VOLUME",
    "ServiceType",
    "WarningEntry",
    "format_validation_error",
]
