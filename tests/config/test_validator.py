from decimal import Decimal

from vatpricing.backend.config.catalog import (
    CONFIG_DIRECTORY_ENV,
    clear_caches,
    load_country_catalog,
    load_pricing_configuration,
    load_rule_catalog,
)
from vatpricing.backend.config.schema import DiscountTierConfig
from vatpricing.backend.config.validator import (
    main,
    validate_catalog,
    validate_countries,
    validate_pricing,
    validate_rules,
)


def test_bundled_catalogs_are_valid() -> None:
    issues = validate_catalog()
    assert not issues, issues


def test_validator_flags_missing_base_price() -> None:
    pricing = load_pricing_configuration()
    broken = pricing.model_copy(update={"base_prices": {"Standard": Decimal("100")}})

    errors = validate_pricing(broken)

    assert any("missing price for Complex" in error for error in errors)
    assert any("missing price for Priority" in error for error in errors)


def test_validator_flags_unordered_tiers() -> None:
    pricing = load_pricing_configuration()
    broken = pricing.model_copy(
        update={
            "volume_discounts": (
                DiscountTierConfig(name="Big", minimum=500, percentage=Decimal("5")),
                DiscountTierConfig(name="Small", minimum=100, percentage=Decimal("10")),
            )
        }
    )

    errors = validate_pricing(broken)

    assert any("sorted by minimum" in error for error in errors)
    assert any("smaller discounts" in error for error in errors)


def test_validator_flags_unknown_frequency() -> None:
    countries = load_country_catalog()
    first = countries.countries[0].model_copy(update={"filing_frequencies": ("Weekly",)})
    broken = countries.model_copy(update={"countries": (first, *countries.countries[1:])})

    errors = validate_countries(broken)

    assert any("unknown filing frequency 'Weekly'" in error for error in errors)


def test_validator_flags_rule_defects() -> None:
    rules = load_rule_catalog()
    countries = load_country_catalog()
    first = rules.rules[0]
    defective = first.model_copy(
        update={
            "rule_id": "ZZ-BROKEN",
            "country_code": "ZZ",
            "expression": "basePrice *",
        }
    )
    duplicate = rules.rules[1]
    broken = rules.model_copy(update={"rules": (*rules.rules, defective, duplicate)})

    errors = validate_rules(broken, countries)

    assert any("ZZ-BROKEN: unknown country 'ZZ'" in error for error in errors)
    assert any("ZZ-BROKEN: expression does not compile" in error for error in errors)
    assert any(f"duplicate rule id '{duplicate.rule_id}'" in error for error in errors)


def test_validator_flags_unknown_operator_and_parameter_type() -> None:
    rules = load_rule_catalog()
    countries = load_country_catalog()
    loyalty = next(rule for rule in rules.rules if rule.parameters)
    condition_rule = next(rule for rule in rules.rules if rule.conditions)

    bad_parameter = loyalty.parameters[0].model_copy(update={"data_type": "money"})
    bad_condition = condition_rule.conditions[0].model_copy(update={"operator": "matches"})
    broken = rules.model_copy(
        update={
            "rules": (
                loyalty.model_copy(update={"parameters": (bad_parameter,)}),
                condition_rule.model_copy(update={"conditions": (bad_condition,)}),
            )
        }
    )

    errors = validate_rules(broken, countries)

    assert any("unsupported type 'money'" in error for error in errors)
    assert any("unknown condition operator 'matches'" in error for error in errors)


def test_validator_flags_deeply_nested_expression() -> None:
    rules = load_rule_catalog()
    countries = load_country_catalog()
    nested = rules.rules[0].model_copy(
        update={"expression": "(" * 200 + "basePrice" + ")" * 200}
    )
    broken = rules.model_copy(update={"rules": (nested, *rules.rules[1:])})

    errors = validate_rules(broken, countries)

    assert any(
        f"{nested.rule_id}: expression does not compile" in error for error in errors
    )


def test_main_reports_success(capsys) -> None:
    assert main([]) == 0
    assert "OK" in capsys.readouterr().out


def test_main_reports_missing_directory(tmp_path, capsys, monkeypatch) -> None:
    # Registers the variable so monkeypatch removes the override on teardown.
    monkeypatch.setenv(CONFIG_DIRECTORY_ENV, "")

    assert main(["--config-dir", str(tmp_path)]) == 1
    assert "failed to load catalogs" in capsys.readouterr().out
    clear_caches()
