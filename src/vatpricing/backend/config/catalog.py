"""Load the YAML pricing catalogs that drive the calculation engine.

Three files live in :data:`CONFIG_DIRECTORY`:

``pricing.yaml``
    Service base prices, automatic discount tiers and additional services.
``countries.yaml``
    Supported jurisdictions with currency and standard VAT rate.
``rules.yaml``
    Pricing rules evaluated per country.

Each loader validates its file against :mod:`.schema` and caches the result;
call :func:`clear_caches` after changing files or the directory override.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .schema import (
    ConfigurationError,
    CountryCatalog,
    CountryConfig,
    PricingConfiguration,
    RuleCatalog,
    RuleConfig,
)

CONFIG_DIRECTORY = Path(__file__).resolve().parent / "data"
CONFIG_DIRECTORY_ENV = "VATPRICING_CONFIG_DIR"

PRICING_FILENAME = "pricing.yaml"
COUNTRIES_FILENAME = "countries.yaml"
RULES_FILENAME = "rules.yaml"

ModelT = TypeVar("ModelT", bound=BaseModel)


def config_directory() -> Path:
    """Return the active catalog directory, honouring the env override."""

    override = os.getenv(CONFIG_DIRECTORY_ENV, "").strip()
    return Path(override) if override else CONFIG_DIRECTORY


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Catalog file missing: {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Catalog file {path.name} must contain a mapping")
    return data


def _load_model(filename: str, model: type[ModelT]) -> ModelT:
    path = config_directory() / filename
    raw = _load_yaml(path)
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid catalog file {filename}: {exc}") from exc


@lru_cache(maxsize=1)
def load_pricing_configuration() -> PricingConfiguration:
    """Load and cache ``pricing.yaml``."""

    return _load_model(PRICING_FILENAME, PricingConfiguration)


@lru_cache(maxsize=1)
def load_country_catalog() -> CountryCatalog:
    """Load and cache ``countries.yaml``."""

    return _load_model(COUNTRIES_FILENAME, CountryCatalog)


@lru_cache(maxsize=1)
def load_rule_catalog() -> RuleCatalog:
    """Load and cache ``rules.yaml``."""

    return _load_model(RULES_FILENAME, RuleCatalog)


def catalog_versions() -> dict[str, str]:
    return {
        "pricing": load_pricing_configuration().version,
        "countries": load_country_catalog().version,
        "rules": load_rule_catalog().version,
    }


def clear_caches() -> None:
    load_pricing_configuration.cache_clear()
    load_country_catalog.cache_clear()
    load_rule_catalog.cache_clear()


__all__ = [
    "CONFIG_DIRECTORY",
    "CONFIG_DIRECTORY_ENV",
    "ConfigurationError",
    "CountryCatalog",
    "CountryConfig",
    "PricingConfiguration",
    "RuleCatalog",
    "RuleConfig",
    "catalog_versions",
    "clear_caches",
    "config_directory",
    "load_country_catalog",
    "load_pricing_configuration",
    "load_rule_catalog",
]
