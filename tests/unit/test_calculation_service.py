"""Unit tests for the calculation service."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

import pytest

from vatpricing.backend.app.errors import UnknownCountryError, ValidationError
from vatpricing.backend.app.models import CalculationRequest, Country, Rule
from vatpricing.backend.app.services.calculation_service import (
    build_context,
    build_history_model,
    calculate,
    resolve_currency,
    run_calculation,
)
from vatpricing.backend.app.services.repositories import (
    InMemoryCalculationRepository,
    InMemoryCountryRepository,
    InMemoryRuleRepository,
    get_default_repositories,
)
from vatpricing.backend.config.catalog import load_pricing_configuration

CALCULATION_DATE = "2025-03-01"


def build_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "service_type": "Standard",
        "transaction_volume": 100,
        "frequency": "Quarterly",
        "country_codes": ["GB", "DE"],
        "calculation_date": CALCULATION_DATE,
    }
    payload.update(overrides)
    return payload


def test_two_countries_price_in_default_currency() -> None:
    result = calculate(build_payload())

    assert result.currency_code == "EUR"
    breakdowns = {entry.country_code: entry for entry in result.country_breakdowns}
    assert breakdowns["GB"].total_cost == Decimal("580.00")
    assert breakdowns["GB"].applied_rules == ["GB-VAT-BASE", "GB-MTD"]
    assert breakdowns["GB"].base_cost == Decimal("480.00")
    assert breakdowns["GB"].additional_cost == Decimal("100.00")
    assert breakdowns["DE"].total_cost == Decimal("476.00")
    assert result.subtotal == Decimal("1056.00")
    assert result.total_cost == Decimal("1056.00")
    assert result.discount_breakdown == []
    assert result.state == "Finalized"
    assert result.errors == []


def test_priority_service_with_volume_tier() -> None:
    result = calculate(
        build_payload(
            service_type="Priority",
            transaction_volume=600,
            frequency="Monthly",
            country_codes=["GB"],
        )
    )

    assert result.currency_code == "GBP"
    (breakdown,) = result.country_breakdowns
    assert breakdown.applied_rules == [
        "GB-VAT-BASE",
        "GB-VOLUME-500",
        "GB-PRIORITY",
        "GB-MTD",
    ]
    assert breakdown.base_cost == Decimal("5400.00")
    assert breakdown.additional_cost == Decimal("5700.00")
    assert result.subtotal == Decimal("11100.00")
    assert result.discounts == {"Volume Discount (>500 transactions)": Decimal("10.0000")}
    assert result.discount_breakdown[0].amount == Decimal("1110.00")
    assert result.total_cost == Decimal("9990.00")


def test_multi_country_discount_follows_volume_discount() -> None:
    result = calculate(
        build_payload(transaction_volume=150, country_codes=["DE", "FR", "NL"])
    )

    names = [line.name for line in result.discount_breakdown]
    assert names == [
        "Volume Discount (>100 transactions)",
        "Multi-Country Discount (3+ countries)",
    ]
    expected = result.subtotal * Decimal("0.95") * Decimal("0.90")
    assert result.total_cost == expected.quantize(Decimal("0.01"))


def test_unknown_country_is_reported_while_others_price() -> None:
    result = calculate(build_payload(country_codes=["GB", "ZZ", "DE"]))

    assert [entry.country_code for entry in result.country_breakdowns] == ["GB", "DE"]
    assert len(result.errors) == 1
    assert result.errors[0].country_code == "ZZ"
    assert result.errors[0].error == "unknown_country"
    assert result.total_cost == Decimal("1056.00")


def test_all_or_nothing_raises_on_unknown_country() -> None:
    with pytest.raises(UnknownCountryError) as excinfo:
        calculate(build_payload(country_codes=["GB", "ZZ"], all_or_nothing=True))

    assert excinfo.value.country_code == "ZZ"


def test_every_country_unknown_raises() -> None:
    with pytest.raises(UnknownCountryError):
        calculate(build_payload(country_codes=["ZZ", "US"]))


def test_explicit_currency_wins() -> None:
    result = calculate(build_payload(country_codes=["GB"], currency_code="usd"))

    assert result.currency_code == "USD"


def test_request_parameters_reach_rules() -> None:
    base = calculate(build_payload(country_codes=["GB"]))
    loyal = calculate(build_payload(country_codes=["GB"], parameters={"loyaltyYears": 4}))

    assert "GB-LOYALTY" not in base.country_breakdowns[0].applied_rules
    assert loyal.country_breakdowns[0].applied_rules[-1] == "GB-LOYALTY"
    assert loyal.total_cost == Decimal("551.00")


def test_reserved_parameters_are_ignored_with_warning() -> None:
    result = calculate(build_payload(parameters={"basePrice": 1}))

    assert result.total_cost == Decimal("1056.00")
    assert any("basePrice" in warning.message for warning in result.warnings)


def test_additional_services_are_echoed_and_unknown_ones_warned() -> None:
    result = calculate(
        build_payload(additional_services=["TaxConsultancy", "Bookkeeping"])
    )

    assert result.additional_services == ["TaxConsultancy", "Bookkeeping"]
    messages = [warning.message for warning in result.warnings]
    assert any("Bookkeeping" in message for message in messages)
    assert not any("TaxConsultancy" in message for message in messages)


def test_unsupported_frequency_produces_warning() -> None:
    result = calculate(build_payload(frequency="Annually", country_codes=["DE", "IT"]))

    warned = {warning.country_code for warning in result.warnings if warning.country_code}
    assert warned == {"DE"}


def test_expired_rules_are_not_applied() -> None:
    result = calculate(build_payload(country_codes=["DE"]))

    assert "DE-LEGACY-SURCHARGE" not in result.country_breakdowns[0].applied_rules

    historic = calculate(
        build_payload(country_codes=["DE"], calculation_date="2023-06-01")
    )
    assert historic.country_breakdowns[0].applied_rules == ["DE-LEGACY-SURCHARGE"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"transaction_volume": 0},
        {"transaction_volume": 100_001},
        {"transaction_volume": True},
        {"country_codes": []},
        {"country_codes": ["GB", "gb"]},
        {"country_codes": ["GBR"]},
        {"service_type": "Express"},
        {"frequency": "Weekly"},
        {"currency_code": "EU"},
        {"parameters": {"bad-name": 1}},
        {"unexpected": True},
    ],
)
def test_invalid_requests_raise_validation_error(overrides) -> None:
    with pytest.raises(ValidationError) as excinfo:
        calculate(build_payload(**overrides))

    assert excinfo.value.message.startswith("Invalid calculation payload")
    assert excinfo.value.details


def test_service_type_aliases_are_accepted() -> None:
    request = CalculationRequest.model_validate(build_payload(service_type="ComplexFiling"))

    assert request.service_type.value == "Complex"


def test_resolve_currency_prefers_shared_native_currency() -> None:
    _, countries = get_default_repositories()
    pricing = load_pricing_configuration()

    shared = CalculationRequest.model_validate(build_payload(country_codes=["DE", "FR"]))
    mixed = CalculationRequest.model_validate(build_payload(country_codes=["DE", "SE"]))

    assert resolve_currency(shared, countries, pricing) == "EUR"
    assert resolve_currency(mixed, countries, pricing) == pricing.default_currency


def test_build_context_exposes_request_values() -> None:
    pricing = load_pricing_configuration()
    request = CalculationRequest.model_validate(build_payload(frequency="Monthly"))

    context, warnings = build_context(request, pricing, "EUR")

    assert context["basePrice"] == Decimal("100")
    assert context["filingsPerYear"] == 12
    assert context["countriesCount"] == 2
    assert context["currencyCode"] == "EUR"
    assert warnings == []


def test_custom_repositories_and_storage() -> None:
    rules = InMemoryRuleRepository(
        [
            Rule.create(
                rule_id="XA-BASE",
                country_code="XA",
                rule_type="VatRate",
                name="Flat",
                expression="basePrice * 0.20",
                effective_from=date(2024, 1, 1),
            )
        ]
    )
    countries = InMemoryCountryRepository(
        [Country("XA", "Example", "GBP", Decimal("20"))]
    )
    store = InMemoryCalculationRepository()

    outcome = run_calculation(
        build_payload(country_codes=["XA"], transaction_volume=10),
        rule_repository=rules,
        country_repository=countries,
        pricing=load_pricing_configuration(),
        calculation_repository=store,
    )

    assert outcome.calculation.total_cost.amount == Decimal("20")
    assert outcome.calculation.currency_code == "GBP"
    assert store.get(outcome.calculation.calculation_id) is outcome
    assert outcome.catalog_version == "custom"


def test_threaded_pricing_matches_sequential() -> None:
    payload = build_payload(country_codes=["GB", "DE", "FR", "IT", "ES", "PL"])

    sequential = calculate(payload, max_workers=1)
    threaded = calculate(payload, max_workers=4)

    assert threaded.total_cost == sequential.total_cost
    assert [entry.country_code for entry in threaded.country_breakdowns] == [
        entry.country_code for entry in sequential.country_breakdowns
    ]


def test_profiling_flag_records_timings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VATPRICING_PROFILE_CALCULATIONS", "1")

    result = calculate(build_payload())

    assert result.meta.timings is not None
    assert {"price_countries", "aggregate", "discounts", "total"} <= set(result.meta.timings)


def test_store_lists_user_history_newest_first() -> None:
    store = InMemoryCalculationRepository()
    first = run_calculation(build_payload(user_id="acme"), calculation_repository=store)
    run_calculation(build_payload(user_id="other"), calculation_repository=store)
    second = run_calculation(
        build_payload(user_id="acme", country_codes=["FR"]), calculation_repository=store
    )

    assert store.list_for_user("acme") == (second, first)
    assert store.list_for_user("nobody") == ()

    store.set_archived(first.calculation.calculation_id, True)
    assert store.list_for_user("acme") == (second,)
    assert store.list_for_user("acme", include_archived=True) == (second, first)


def test_history_model_pages_outcomes() -> None:
    store = InMemoryCalculationRepository()
    for _ in range(3):
        run_calculation(build_payload(user_id="acme"), calculation_repository=store)
    outcomes = store.list_for_user("acme")

    history = build_history_model(outcomes, user_id="acme", page=2, page_size=2)

    assert history.total_count == 3
    assert history.total_pages == 2
    assert [item.calculation_id for item in history.items] == [
        outcomes[2].calculation.calculation_id
    ]
    assert build_history_model((), user_id="acme").total_pages == 0


@pytest.mark.parametrize(("page", "page_size"), [(0, 10), (1, 0), (1, 101)])
def test_history_model_rejects_invalid_paging(page: int, page_size: int) -> None:
    with pytest.raises(ValidationError):
        build_history_model((), user_id="acme", page=page, page_size=page_size)
