"""Pydantic models describing the pricing catalog files."""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing_extensions import Self

_COUNTRY_CODE = re.compile(r"^[A-Z]{2}$")
_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")


class ConfigurationError(ValueError):
    """Raised when catalog values violate schema expectations."""


class ImmutableModel(BaseModel):
    """Base class that freezes instances and rejects unknown fields."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


def _decimal(value: Any) -> Any:
    # YAML floats go through ``str`` to keep their written precision.
    if isinstance(value, float):
        return Decimal(str(value))
    return value


def _text(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    return value


def _upper(value: Any) -> Any:
    return value.strip().upper() if isinstance(value, str) else value


class DiscountTierConfig(ImmutableModel):
    """A named percentage applied once a threshold is reached."""

    name: str = Field(min_length=1)
    minimum: int = Field(ge=0)
    percentage: Decimal = Field(ge=0, le=100)

    _coerce_percentage = field_validator("percentage", mode="before")(_decimal)


class AdditionalServiceConfig(ImmutableModel):
    id: str = Field(min_length=1)
    name: str
    description: str = ""


class PricingConfiguration(ImmutableModel):
    """Base prices, discount policy and the additional-services catalog."""

    version: str
    default_currency: str = "EUR"
    base_prices: Mapping[str, Decimal]
    volume_discounts: tuple[DiscountTierConfig, ...] = ()
    multi_country_discounts: tuple[DiscountTierConfig, ...] = ()
    additional_services: tuple[AdditionalServiceConfig, ...] = ()

    @field_validator("version", mode="before")
    @classmethod
    def _coerce_version(cls, value: Any) -> Any:
        return _text(value)

    @field_validator("default_currency", mode="before")
    @classmethod
    def _normalise_currency(cls, value: Any) -> Any:
        return _upper(value)

    @field_validator("base_prices", mode="before")
    @classmethod
    def _coerce_prices(cls, value: Any) -> Mapping[str, Any]:
        if not isinstance(value, Mapping):
            raise ConfigurationError("base_prices must map service types to amounts")
        return {str(key): _decimal(amount) for key, amount in value.items()}

    @model_validator(mode="after")
    def _validate_values(self) -> Self:
        if not _CURRENCY_CODE.match(self.default_currency):
            raise ConfigurationError("default_currency must be a three-letter code")
        for service, amount in self.base_prices.items():
            if amount < 0:
                raise ConfigurationError(f"Base price for {service} must be non-negative")
        return self

    def base_price_for(self, service_type: str) -> Decimal:
        try:
            return self.base_prices[service_type]
        except KeyError:
            raise ConfigurationError(
                f"No base price configured for service type '{service_type}'"
            ) from None

    def additional_service(self, service_id: str) -> AdditionalServiceConfig | None:
        lookup = service_id.strip().lower()
        for service in self.additional_services:
            if service.id.lower() == lookup:
                return service
        return None


class CountryConfig(ImmutableModel):
    code: str
    name: str = Field(min_length=1)
    currency_code: str
    standard_vat_rate: Decimal = Field(ge=0, le=100)
    filing_frequencies: tuple[str, ...] = ("Monthly", "Quarterly", "Annually")
    is_active: bool = True

    _normalise_codes = field_validator("code", "currency_code", mode="before")(_upper)
    _coerce_rate = field_validator("standard_vat_rate", mode="before")(_decimal)

    @model_validator(mode="after")
    def _validate_codes(self) -> Self:
        if not _COUNTRY_CODE.match(self.code):
            raise ConfigurationError(f"Country code '{self.code}' must be two letters")
        if not _CURRENCY_CODE.match(self.currency_code):
            raise ConfigurationError(
                f"Currency for {self.code} must be a three-letter code"
            )
        return self


class CountryCatalog(ImmutableModel):
    version: str
    countries: tuple[CountryConfig, ...]

    _coerce_version = field_validator("version", mode="before")(_text)

    @model_validator(mode="after")
    def _validate_unique_codes(self) -> Self:
        seen: set[str] = set()
        for country in self.countries:
            if country.code in seen:
                raise ConfigurationError(f"Duplicate country code '{country.code}'")
            seen.add(country.code)
        return self


class RuleParameterConfig(ImmutableModel):
    name: str
    data_type: str = "number"
    default_value: str = ""

    _coerce_default = field_validator("default_value", mode="before")(_text)


class RuleConditionConfig(ImmutableModel):
    parameter: str
    operator: str
    value: str

    _coerce_value = field_validator("value", mode="before")(_text)


class RuleConfig(ImmutableModel):
    """Raw rule entry; turned into a domain rule by the repositories."""

    rule_id: str = Field(min_length=1)
    country_code: str
    type: str
    name: str
    expression: str
    effective_from: date
    effective_to: date | None = None
    priority: int = 100
    is_active: bool = True
    description: str = ""
    parameters: tuple[RuleParameterConfig, ...] = ()
    conditions: tuple[RuleConditionConfig, ...] = ()

    _normalise_country = field_validator("country_code", mode="before")(_upper)
    _coerce_expression = field_validator("expression", mode="before")(_text)

    @model_validator(mode="after")
    def _validate_window(self) -> Self:
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise ConfigurationError(
                f"Rule {self.rule_id} ends before it becomes effective"
            )
        return self


class RuleCatalog(ImmutableModel):
    version: str
    rules: tuple[RuleConfig, ...] = ()

    _coerce_version = field_validator("version", mode="before")(_text)

    @model_validator(mode="after")
    def _validate_unique_ids(self) -> Self:
        seen: set[str] = set()
        for rule in self.rules:
            if rule.rule_id in seen:
                raise ConfigurationError(f"Duplicate rule id '{rule.rule_id}'")
            seen.add(rule.rule_id)
        return self

    def for_country(self, country_code: str) -> tuple[RuleConfig, ...]:
        lookup = country_code.strip().upper()
        return tuple(rule for rule in self.rules if rule.country_code == lookup)


__all__ = [
    "AdditionalServiceConfig",
    "ConfigurationError",
    "CountryCatalog",
    "CountryConfig",
    "DiscountTierConfig",
    "ImmutableModel",
    "PricingConfiguration",
    "RuleCatalog",
    "RuleConditionConfig",
    "RuleConfig",
    "RuleParameterConfig",
]
