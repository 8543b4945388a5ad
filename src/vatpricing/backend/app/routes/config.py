"""Expose the pricing catalogs consumed by API clients.

Clients use these endpoints to populate country pickers, service tiers and
additional-service options without duplicating the YAML catalogs.
"""

from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify

from vatpricing.backend.app.models import FilingFrequency, ServiceType
from vatpricing.backend.app.services.calculators import format_percentage
from vatpricing.backend.config.catalog import (
    catalog_versions,
    load_country_catalog,
    load_pricing_configuration,
)
from vatpricing.backend.config.schema import DiscountTierConfig
from vatpricing.backend.version import get_project_version

blueprint = Blueprint("config", __name__, url_prefix="/api/v1/config")


def get_configuration_metadata() -> dict[str, Any]:
    """Expose runtime metadata derived from the loaded catalogs."""

    return {
        "version": get_project_version(),
        "catalogs": catalog_versions(),
        "default_currency": load_pricing_configuration().default_currency,
    }


def _serialise_tier(tier: DiscountTierConfig) -> dict[str, Any]:
    return {
        "name": tier.name,
        "minimum": tier.minimum,
        "percentage": float(tier.percentage),
        "label": format_percentage(tier.percentage),
    }


@blueprint.get("/countries")
def list_countries() -> Any:
    """Return the active jurisdictions the engine can price."""

    catalog = load_country_catalog()
    countries = [
        {
            "code": country.code,
            "name": country.name,
            "currency_code": country.currency_code,
            "standard_vat_rate": float(country.standard_vat_rate),
            "filing_frequencies": list(country.filing_frequencies),
        }
        for country in catalog.countries
        if country.is_active
    ]
    return jsonify({"version": catalog.version, "countries": countries})


@blueprint.get("/services")
def list_services() -> Any:
    pricing = load_pricing_configuration()
    return jsonify(
        {
            "version": pricing.version,
            "default_currency": pricing.default_currency,
            "service_types": [
                {
                    "id": service.value,
                    "base_price": float(pricing.base_prices[service.value]),
                }
                for service in ServiceType
                if service.value in pricing.base_prices
            ],
            "filing_frequencies": [
                {"id": frequency.value, "filings_per_year": frequency.filings_per_year}
                for frequency in FilingFrequency
            ],
            "additional_services": [
                service.model_dump(mode="json")
                for service in pricing.additional_services
            ],
            "volume_discounts": [
                _serialise_tier(tier) for tier in pricing.volume_discounts
            ],
            "multi_country_discounts": [
                _serialise_tier(tier) for tier in pricing.multi_country_discounts
            ],
        }
    )


@blueprint.get("/meta")
def get_meta() -> Any:
    return jsonify(get_configuration_metadata())
