"""Utilities for validating the pricing catalogs and surfacing issues."""

from __future__ import annotations

import argparse
import os
from collections import Counter
from typing import Iterable, Sequence

from vatpricing.backend.app.models import FilingFrequency, RuleType, ServiceType
from vatpricing.backend.app.models.expressions import ExpressionError, compile_expression
from vatpricing.backend.app.models.rules import CONDITION_OPERATORS, PARAMETER_TYPES

from .catalog import (
    CONFIG_DIRECTORY_ENV,
    clear_caches,
    config_directory,
    load_country_catalog,
    load_pricing_configuration,
    load_rule_catalog,
)
from .schema import (
    ConfigurationError,
    CountryCatalog,
    DiscountTierConfig,
    PricingConfiguration,
    RuleCatalog,
    RuleConfig,
)


def _format_scope(scope: str, message: str) -> str:
    return f"{scope}: {message}"


def _validate_tiers(scope: str, tiers: Sequence[DiscountTierConfig]) -> list[str]:
    errors: list[str] = []
    minimums = [tier.minimum for tier in tiers]

    duplicates = [value for value, count in Counter(minimums).items() if count > 1]
    if duplicates:
        errors.append(
            _format_scope(scope, f"duplicate tier minimums detected: {sorted(duplicates)}")
        )

    if minimums != sorted(minimums):
        errors.append(_format_scope(scope, "tiers should be sorted by minimum"))

    percentages = [tier.percentage for tier in sorted(tiers, key=lambda t: t.minimum)]
    if percentages != sorted(percentages):
        errors.append(
            _format_scope(scope, "higher tiers should not grant smaller discounts")
        )

    return errors


def validate_pricing(pricing: PricingConfiguration) -> list[str]:
    errors: list[str] = []

    for service in ServiceType:
        if service.value not in pricing.base_prices:
            errors.append(
                _format_scope("pricing.base_prices", f"missing price for {service.value}")
            )

    errors.extend(_validate_tiers("pricing.volume_discounts", pricing.volume_discounts))
    errors.extend(
        _validate_tiers(
            "pricing.multi_country_discounts", pricing.multi_country_discounts
        )
    )

    service_ids = Counter(service.id.lower() for service in pricing.additional_services)
    for service_id, count in service_ids.items():
        if count > 1:
            errors.append(
                _format_scope(
                    "pricing.additional_services", f"duplicate service id '{service_id}'"
                )
            )

    return errors


def validate_countries(catalog: CountryCatalog) -> list[str]:
    errors: list[str] = []

    for country in catalog.countries:
        scope = f"countries.{country.code}"
        if not country.filing_frequencies:
            errors.append(_format_scope(scope, "no filing frequencies defined"))
        for frequency in country.filing_frequencies:
            try:
                FilingFrequency.parse(frequency)
            except ValueError:
                errors.append(
                    _format_scope(scope, f"unknown filing frequency '{frequency}'")
                )

    return errors


def _validate_rule(rule: RuleConfig, known_countries: set[str]) -> list[str]:
    scope = f"rules.{rule.rule_id}"
    errors: list[str] = []

    if rule.country_code not in known_countries:
        errors.append(_format_scope(scope, f"unknown country '{rule.country_code}'"))

    try:
        RuleType.parse(rule.type)
    except ValueError:
        errors.append(_format_scope(scope, f"unknown rule type '{rule.type}'"))

    try:
        compile_expression(rule.expression)
    except ExpressionError as error:
        errors.append(_format_scope(scope, f"expression does not compile: {error}"))

    for parameter in rule.parameters:
        if parameter.data_type.strip().lower() not in PARAMETER_TYPES:
            errors.append(
                _format_scope(
                    scope,
                    f"parameter '{parameter.name}' has unsupported type "
                    f"'{parameter.data_type}'",
                )
            )

    for condition in rule.conditions:
        if condition.operator.strip().lower() not in CONDITION_OPERATORS:
            errors.append(
                _format_scope(
                    scope, f"unknown condition operator '{condition.operator}'"
                )
            )

    return errors


def validate_rules(catalog: RuleCatalog, countries: CountryCatalog) -> list[str]:
    errors: list[str] = []
    known_countries = {country.code for country in countries.countries}

    counts = Counter(rule.rule_id for rule in catalog.rules)
    for rule_id, count in counts.items():
        if count > 1:
            errors.append(_format_scope("rules", f"duplicate rule id '{rule_id}'"))

    for rule in catalog.rules:
        errors.extend(_validate_rule(rule, known_countries))

    return errors


def validate_catalog(
    pricing: PricingConfiguration | None = None,
    countries: CountryCatalog | None = None,
    rules: RuleCatalog | None = None,
) -> list[str]:
    """Return every issue found across the three catalogs."""

    pricing = pricing or load_pricing_configuration()
    countries = countries or load_country_catalog()
    rules = rules or load_rule_catalog()

    errors: list[str] = []
    errors.extend(validate_pricing(pricing))
    errors.extend(validate_countries(countries))
    errors.extend(validate_rules(rules, countries))
    return errors


def _print_issues(issues: Iterable[str]) -> None:
    for issue in issues:
        print(f"  - {issue}")


def _build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate the pricing YAML catalogs.",
    )
    parser.add_argument(
        "--config-dir",
        help="Directory holding pricing.yaml, countries.yaml and rules.yaml",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for running validations from the command line."""

    parser = _build_argument_parser()
    args = parser.parse_args(argv)

    if args.config_dir:
        os.environ[CONFIG_DIRECTORY_ENV] = args.config_dir
        clear_caches()

    directory = config_directory()
    try:
        issues = validate_catalog()
    except (FileNotFoundError, ConfigurationError) as error:
        print(f"[{directory}] failed to load catalogs: {error}")
        return 1

    if issues:
        print(f"[{directory}] {len(issues)} issue(s) detected:")
        _print_issues(issues)
        return 1

    print(f"[{directory}] OK")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI invocation
    raise SystemExit(main())
