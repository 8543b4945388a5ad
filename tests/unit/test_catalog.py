"""Unit tests for the YAML catalog loaders and repositories."""

from __future__ import annotations

import shutil
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from vatpricing.backend.app.models import FilingFrequency
from vatpricing.backend.app.services.repositories import (
    InMemoryCalculationRepository,
    InMemoryCountryRepository,
    InMemoryRuleRepository,
    rule_from_config,
)
from vatpricing.backend.config import catalog
from vatpricing.backend.config.schema import ConfigurationError, RuleConfig


@pytest.fixture()
def config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Copy the bundled catalogs into a temporary override directory."""

    for source in catalog.CONFIG_DIRECTORY.glob("*.yaml"):
        shutil.copy(source, tmp_path / source.name)
    monkeypatch.setenv(catalog.CONFIG_DIRECTORY_ENV, str(tmp_path))
    catalog.clear_caches()
    yield tmp_path
    catalog.clear_caches()


def test_bundled_catalogs_load() -> None:
    pricing = catalog.load_pricing_configuration()
    countries = catalog.load_country_catalog()
    rules = catalog.load_rule_catalog()

    assert pricing.base_price_for("Priority") == Decimal("300")
    assert pricing.additional_service("taxconsultancy") is not None
    assert countries.get("gb").currency_code == "GBP"
    assert {rule.rule_id for rule in rules.for_country("GB")} >= {"GB-VAT-BASE", "GB-MTD"}
    assert set(catalog.catalog_versions()) == {"pricing", "countries", "rules"}


def test_loaders_are_cached() -> None:
    assert catalog.load_rule_catalog() is catalog.load_rule_catalog()


def test_directory_override_is_honoured(config_dir: Path) -> None:
    text = (config_dir / "pricing.yaml").read_text(encoding="utf-8")
    (config_dir / "pricing.yaml").write_text(
        text.replace('version: "2025.1"', 'version: "test"'), encoding="utf-8"
    )

    assert catalog.config_directory() == config_dir
    assert catalog.load_pricing_configuration().version == "test"


def test_missing_file_raises(config_dir: Path) -> None:
    (config_dir / "rules.yaml").unlink()

    with pytest.raises(FileNotFoundError):
        catalog.load_rule_catalog()


@pytest.mark.parametrize(
    ("filename", "content"),
    [
        ("pricing.yaml", "- not\n- a mapping\n"),
        ("pricing.yaml", 'version: "1"\nbase_prices:\n  Standard: -5\n'),
        ("countries.yaml", 'version: "1"\ncountries:\n  - {code: GBR, name: X, currency_code: GBP, standard_vat_rate: 20}\n'),
        ("rules.yaml", 'version: "1"\nrules:\n  - {rule_id: A, country_code: GB, type: VatRate, name: A, expression: "1", effective_from: 2024-01-01, surprise: 1}\n'),
    ],
)
def test_invalid_files_raise_configuration_error(
    config_dir: Path, filename: str, content: str
) -> None:
    (config_dir / filename).write_text(content, encoding="utf-8")
    catalog.clear_caches()

    loader = {
        "pricing.yaml": catalog.load_pricing_configuration,
        "countries.yaml": catalog.load_country_catalog,
        "rules.yaml": catalog.load_rule_catalog,
    }[filename]
    with pytest.raises(ConfigurationError):
        loader()


def test_country_repository_from_catalog() -> None:
    countries = InMemoryCountryRepository.from_catalog()

    germany = countries.get_by_code(" de ")
    assert germany is not None
    assert germany.standard_vat_rate == Decimal("19")
    assert not germany.supports_frequency(FilingFrequency.ANNUALLY)
    assert countries.get_by_code("US").is_active is False
    assert countries.get_by_code("ZZ") is None


def test_rule_repository_filters_by_date() -> None:
    rules = InMemoryRuleRepository.from_catalog()

    current = {rule.rule_id for rule in rules.get_active_rules_for_country("de", date(2025, 1, 1))}
    legacy = {rule.rule_id for rule in rules.get_active_rules_for_country("DE", date(2023, 1, 1))}

    assert "DE-VAT-BASE" in current and "DE-LEGACY-SURCHARGE" not in current
    assert legacy == {"DE-LEGACY-SURCHARGE"}
    assert rules.version == catalog.load_rule_catalog().version


def test_rule_from_config_wraps_domain_errors() -> None:
    entry = RuleConfig(
        rule_id="GB-BAD",
        country_code="GB",
        type="VatRate",
        name="Bad",
        expression="basePrice *",
        effective_from=date(2024, 1, 1),
    )

    with pytest.raises(ConfigurationError):
        rule_from_config(entry)


def test_calculation_repository_evicts_oldest() -> None:
    class Stub:
        def __init__(self, calculation_id: str) -> None:
            self.calculation = type("C", (), {"calculation_id": calculation_id})()

    store = InMemoryCalculationRepository(max_items=2)
    for identifier in ("a", "b", "c"):
        store.save(Stub(identifier))  # type: ignore[arg-type]

    assert len(store) == 2
    with pytest.raises(KeyError):
        store.get("a")
    assert store.get("c").calculation.calculation_id == "c"


def test_calculation_repository_rejects_invalid_capacity() -> None:
    with pytest.raises(ValueError):
        InMemoryCalculationRepository(max_items=0)
