"""Orchestrate request validation, country pricing and discounts.

The calculation service is the single entry point of the pricing engine. It
validates the request, prices each country through the
:class:`~.calculators.CountryCostCalculator`, folds the results into a
:class:`~vatpricing.backend.app.models.Calculation` one at a time, then
layers the configured automatic discounts on the merged total. Per-country
and per-rule failures are collected into the result rather than aborting
the whole calculation; validation, configuration and currency errors are
raised to the caller.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from time import perf_counter
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from vatpricing.backend.app.errors import UnknownCountryError, ValidationError
from vatpricing.backend.app.models import (
    Calculation,
    CalculationHistoryModel,
    CalculationMeta,
    CalculationModel,
    CalculationRequest,
    CountryBreakdown,
    CountryErrorEntry,
    DiscountLine,
    WarningEntry,
    format_validation_error,
)
from vatpricing.backend.config.catalog import load_pricing_configuration
from vatpricing.backend.config.schema import PricingConfiguration

from .calculators import (
    CountryCostBreakdown,
    CountryCostCalculator,
    round_currency,
    round_rate,
    select_tier,
)
from .repositories import (
    CountryRepository,
    InMemoryCalculationRepository,
    RuleRepository,
    get_default_repositories,
)

_LOGGER = logging.getLogger(__name__)

DEFAULT_HISTORY_PAGE_SIZE = 10
MAX_HISTORY_PAGE_SIZE = 100

RESERVED_CONTEXT_KEYS = frozenset(
    {
        "basePrice",
        "transactionVolume",
        "serviceType",
        "filingFrequency",
        "filingsPerYear",
        "countriesCount",
        "additionalServicesCount",
        "currencyCode",
        "countryCode",
        "vatRate",
    }
)


def _profiling_enabled() -> bool:
    """Return ``True`` when calculation profiling should be captured."""

    flag = os.getenv("VATPRICING_PROFILE_CALCULATIONS", "")
    return flag.strip().lower() in {"1", "true", "yes", "on"}


def _default_worker_count() -> int:
    raw = os.getenv("VATPRICING_PRICING_WORKERS", "").strip()
    if not raw:
        return 1
    try:
        return max(1, int(raw))
    except ValueError:
        _LOGGER.warning("Ignoring invalid VATPRICING_PRICING_WORKERS=%r", raw)
        return 1


@contextmanager
def _profile_section(name: str, store: dict[str, float] | None):
    """Capture the duration of a named section when profiling is enabled."""

    if store is None:
        yield
        return

    start = perf_counter()
    try:
        yield
    finally:
        store[name] = perf_counter() - start


@dataclass(frozen=True)
class CountryOutcome:
    country_code: str
    breakdown: CountryCostBreakdown | None = None
    error: UnknownCountryError | None = None


@dataclass(frozen=True)
class PricingOutcome:
    """A finished calculation together with its diagnostic trace."""

    calculation: Calculation
    request: CalculationRequest
    country_names: Mapping[str, str]
    errors: tuple[CountryErrorEntry, ...] = ()
    warnings: tuple[WarningEntry, ...] = ()
    pricing_version: str = ""
    catalog_version: str = ""
    timings: Mapping[str, float] | None = field(default=None)


def validate_request(payload: Mapping[str, Any] | CalculationRequest) -> CalculationRequest:
    """Return a validated :class:`CalculationRequest` or raise ``ValidationError``."""

    if isinstance(payload, CalculationRequest):
        return payload
    if not isinstance(payload, Mapping):
        raise ValidationError("Payload must be a mapping")
    try:
        return CalculationRequest.model_validate(payload)
    except PydanticValidationError as exc:
        message = format_validation_error(exc)
        raise ValidationError(message, details=message.split("; ")) from exc


def resolve_currency(
    request: CalculationRequest,
    countries: CountryRepository,
    pricing: PricingConfiguration,
) -> str:
    """Pick the calculation currency.

    An explicit request currency wins; otherwise the shared native currency of
    the requested countries, falling back to the configured default when they
    disagree or none are known.
    """

    if request.currency_code:
        return request.currency_code

    native = set()
    for code in request.country_codes:
        country = countries.get_by_code(code)
        if country is not None and country.is_active:
            native.add(country.currency_code)
    if len(native) == 1:
        return native.pop()
    return pricing.default_currency


def build_context(
    request: CalculationRequest,
    pricing: PricingConfiguration,
    currency_code: str,
) -> tuple[dict[str, Any], list[WarningEntry]]:
    """Return the shared evaluation context and any parameter warnings."""

    warnings: list[WarningEntry] = []
    context: dict[str, Any] = {}
    for name, value in request.parameters.items():
        if name in RESERVED_CONTEXT_KEYS:
            warnings.append(
                WarningEntry(message=f"Parameter '{name}' is reserved and was ignored")
            )
            continue
        context[name] = value

    context.update(
        {
            "basePrice": pricing.base_price_for(request.service_type.value),
            "transactionVolume": request.transaction_volume,
            "serviceType": request.service_type.value,
            "filingFrequency": request.frequency.value,
            "filingsPerYear": request.frequency.filings_per_year,
            "countriesCount": len(request.country_codes),
            "additionalServicesCount": len(request.additional_services),
            "currencyCode": currency_code,
        }
    )
    return context, warnings


def _price_countries(
    calculator: CountryCostCalculator,
    country_codes: Sequence[str],
    context: Mapping[str, Any],
    *,
    currency_code: str,
    as_of: date,
    max_workers: int,
) -> list[CountryOutcome]:
    def price(code: str) -> CountryOutcome:
        try:
            breakdown = calculator.price_country(
                code, context, currency_code=currency_code, as_of=as_of
            )
        except UnknownCountryError as exc:
            _LOGGER.warning("Cannot price %s: %s", code, exc)
            return CountryOutcome(code, error=exc)
        return CountryOutcome(code, breakdown=breakdown)

    if max_workers > 1 and len(country_codes) > 1:
        workers = min(max_workers, len(country_codes))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(price, country_codes))
    return [price(code) for code in country_codes]


def _apply_automatic_discounts(
    calculation: Calculation, pricing: PricingConfiguration
) -> None:
    volume_tier = select_tier(calculation.transaction_volume, pricing.volume_discounts)
    if volume_tier is not None:
        calculation.add_discount(volume_tier.name, volume_tier.percentage)

    country_tier = select_tier(len(calculation.countries), pricing.multi_country_discounts)
    if country_tier is not None:
        calculation.add_discount(country_tier.name, country_tier.percentage)


def run_calculation(
    payload: Mapping[str, Any] | CalculationRequest,
    *,
    rule_repository: RuleRepository | None = None,
    country_repository: CountryRepository | None = None,
    pricing: PricingConfiguration | None = None,
    max_workers: int | None = None,
    calculation_repository: InMemoryCalculationRepository | None = None,
) -> PricingOutcome:
    """Price ``payload`` and return the calculation with its diagnostics."""

    request = validate_request(payload)

    timings: dict[str, float] | None = {} if _profiling_enabled() else None
    overall_start = perf_counter() if timings is not None else None

    if rule_repository is None or country_repository is None:
        default_rules, default_countries = get_default_repositories()
        rule_repository = rule_repository or default_rules
        country_repository = country_repository or default_countries
    pricing = pricing or load_pricing_configuration()
    workers = max_workers if max_workers is not None else _default_worker_count()
    as_of = request.calculation_date or date.today()

    currency_code = resolve_currency(request, country_repository, pricing)
    context, warnings = build_context(request, pricing, currency_code)

    calculation = Calculation.create(
        user_id=request.user_id,
        service_id=request.service_type.value,
        transaction_volume=request.transaction_volume,
        filing_frequency=request.frequency,
        currency_code=currency_code,
        calculation_date=as_of,
    )

    for service_id in request.additional_services:
        if pricing.additional_service(service_id) is None:
            warnings.append(
                WarningEntry(message=f"Unknown additional service '{service_id}'")
            )

    calculator = CountryCostCalculator(rule_repository, country_repository)
    with _profile_section("price_countries", timings):
        outcomes = _price_countries(
            calculator,
            request.country_codes,
            context,
            currency_code=currency_code,
            as_of=as_of,
            max_workers=workers,
        )

    failures = [outcome.error for outcome in outcomes if outcome.error is not None]
    if failures and (request.all_or_nothing or len(failures) == len(outcomes)):
        raise failures[0]

    errors: list[CountryErrorEntry] = []
    country_names: dict[str, str] = {}
    with _profile_section("aggregate", timings):
        for outcome in outcomes:
            breakdown = outcome.breakdown
            if breakdown is None:
                failure = outcome.error or UnknownCountryError(outcome.country_code)
                errors.append(
                    CountryErrorEntry(
                        country_code=outcome.country_code,
                        error=failure.code,
                        message=failure.message,
                    )
                )
                continue

            calculation.add_country(
                breakdown.country_code,
                breakdown.total_cost,
                applied_rules=breakdown.applied_rules,
                base_cost=breakdown.base_cost,
                additional_cost=breakdown.additional_cost,
            )
            country_names[breakdown.country_code] = breakdown.country_name
            warnings.extend(
                WarningEntry(
                    country_code=item.country_code,
                    rule_id=item.rule_id,
                    message=item.message,
                )
                for item in breakdown.warnings
            )
            country = country_repository.get_by_code(breakdown.country_code)
            if country is not None and not country.supports_frequency(request.frequency):
                warnings.append(
                    WarningEntry(
                        country_code=breakdown.country_code,
                        message=(
                            f"{breakdown.country_name} does not offer "
                            f"{request.frequency.value} filing"
                        ),
                    )
                )

    with _profile_section("discounts", timings):
        _apply_automatic_discounts(calculation, pricing)
        calculation.finalize()

    if timings is not None and overall_start is not None:
        timings["total"] = perf_counter() - overall_start
        _LOGGER.debug(
            "run_calculation timings (ms): %s",
            {name: round(duration * 1000, 3) for name, duration in timings.items()},
        )

    outcome = PricingOutcome(
        calculation=calculation,
        request=request,
        country_names=country_names,
        errors=tuple(errors),
        warnings=tuple(warnings),
        pricing_version=pricing.version,
        catalog_version=getattr(rule_repository, "version", ""),
        timings=timings,
    )
    if calculation_repository is not None:
        calculation_repository.save(outcome)
    return outcome


def build_calculation_model(outcome: PricingOutcome) -> CalculationModel:
    """Serialise a :class:`PricingOutcome` into the public response model."""

    calculation = outcome.calculation
    request = outcome.request
    return CalculationModel(
        calculation_id=calculation.calculation_id,
        user_id=calculation.user_id,
        service_type=request.service_type,
        transaction_volume=calculation.transaction_volume,
        frequency=calculation.filing_frequency,
        calculation_date=calculation.calculation_date,
        currency_code=calculation.currency_code,
        subtotal=round_currency(calculation.subtotal.amount),
        total_cost=round_currency(calculation.total_cost.amount),
        country_breakdowns=[
            CountryBreakdown(
                country_code=entry.country_code,
                country_name=outcome.country_names.get(
                    entry.country_code, entry.country_code
                ),
                base_cost=round_currency(entry.base_cost.amount),
                additional_cost=round_currency(entry.additional_cost.amount),
                total_cost=round_currency(entry.country_cost.amount),
                applied_rules=list(entry.applied_rules),
            )
            for entry in calculation.countries
        ],
        discounts={
            name: round_rate(percentage)
            for name, percentage in calculation.discounts.items()
        },
        discount_breakdown=[
            DiscountLine(
                name=item.name,
                percentage=round_rate(item.percentage),
                amount=round_currency(item.discount_amount.amount),
            )
            for item in calculation.discount_applications
        ],
        additional_services=list(request.additional_services),
        errors=list(outcome.errors),
        warnings=list(outcome.warnings),
        state=calculation.state.value,
        is_archived=calculation.is_archived,
        meta=CalculationMeta(
            pricing_version=outcome.pricing_version,
            catalog_version=outcome.catalog_version,
            timings=dict(outcome.timings) if outcome.timings is not None else None,
        ),
    )


def calculate(
    payload: Mapping[str, Any] | CalculationRequest,
    *,
    rule_repository: RuleRepository | None = None,
    country_repository: CountryRepository | None = None,
    pricing: PricingConfiguration | None = None,
    max_workers: int | None = None,
    calculation_repository: InMemoryCalculationRepository | None = None,
) -> CalculationModel:
    """Price ``payload`` and return the response model."""

    outcome = run_calculation(
        payload,
        rule_repository=rule_repository,
        country_repository=country_repository,
        pricing=pricing,
        max_workers=max_workers,
        calculation_repository=calculation_repository,
    )
    return build_calculation_model(outcome)


def build_history_model(
    outcomes: Sequence[PricingOutcome],
    *,
    user_id: str,
    page: int = 1,
    page_size: int = DEFAULT_HISTORY_PAGE_SIZE,
) -> CalculationHistoryModel:
    """Slice ``outcomes`` into one page of the user's calculation history."""

    if page < 1:
        raise ValidationError("Page must be at least 1")
    if not 1 <= page_size <= MAX_HISTORY_PAGE_SIZE:
        raise ValidationError(f"Page size must be between 1 and {MAX_HISTORY_PAGE_SIZE}")

    total = len(outcomes)
    start = (page - 1) * page_size
    window = outcomes[start : start + page_size]
    return CalculationHistoryModel(
        user_id=user_id,
        items=[build_calculation_model(item) for item in window],
        total_count=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


__all__ = [
    "DEFAULT_HISTORY_PAGE_SIZE",
    "MAX_HISTORY_PAGE_SIZE",
    "PricingOutcome",
    "RESERVED_CONTEXT_KEYS",
    "build_calculation_model",
    "build_history_model",
    "build_context",
    "calculate",
    "resolve_currency",
    "run_calculation",
    "validate_request",
]
