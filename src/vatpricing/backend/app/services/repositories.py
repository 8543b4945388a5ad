"""Read-only rule and country lookups plus an in-memory calculation store.

The rule and country repositories are built once from the YAML catalogs and
never mutated afterwards, so concurrent reads need no locking. The
calculation store is the only shared mutable structure and guards its state
with a lock.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Iterable, Sequence
from datetime import date
from functools import lru_cache
from threading import Lock
from typing import TYPE_CHECKING, Protocol

from vatpricing.backend.app.models.country import Country, FilingFrequency
from vatpricing.backend.app.models.rules import Rule, RuleCondition, RuleParameter
from vatpricing.backend.config.catalog import (
    CountryCatalog,
    RuleCatalog,
    load_country_catalog,
    load_rule_catalog,
)
from vatpricing.backend.config.schema import ConfigurationError, RuleConfig

if TYPE_CHECKING:  # pragma: no cover - typing only
    from vatpricing.backend.app.services.calculation_service import PricingOutcome

_LOGGER = logging.getLogger(__name__)


class RuleRepository(Protocol):
    def get_active_rules_for_country(
        self, country_code: str, as_of: date
    ) -> Sequence[Rule]: ...


class CountryRepository(Protocol):
    def get_by_code(self, country_code: str) -> Country | None: ...

    def list_countries(self) -> Sequence[Country]: ...


class InMemoryRuleRepository:
    """Rules grouped by country code."""

    def __init__(self, rules: Iterable[Rule] = (), *, version: str = "custom") -> None:
        self.version = version
        grouped: dict[str, list[Rule]] = {}
        for rule in rules:
            grouped.setdefault(rule.country_code, []).append(rule)
        self._rules = {code: tuple(items) for code, items in grouped.items()}

    @classmethod
    def from_catalog(cls, catalog: RuleCatalog | None = None) -> InMemoryRuleRepository:
        catalog = catalog or load_rule_catalog()
        return cls(
            (rule_from_config(entry) for entry in catalog.rules),
            version=catalog.version,
        )

    def get_active_rules_for_country(
        self, country_code: str, as_of: date
    ) -> tuple[Rule, ...]:
        code = country_code.strip().upper()
        return tuple(
            rule for rule in self._rules.get(code, ()) if rule.is_in_effect(as_of)
        )

    def all_rules(self) -> tuple[Rule, ...]:
        return tuple(rule for rules in self._rules.values() for rule in rules)


class InMemoryCountryRepository:
    """Countries keyed by upper-case ISO code."""

    def __init__(self, countries: Iterable[Country] = ()) -> None:
        self._countries = {country.code: country for country in countries}

    @classmethod
    def from_catalog(
        cls, catalog: CountryCatalog | None = None
    ) -> InMemoryCountryRepository:
        catalog = catalog or load_country_catalog()
        countries = []
        for entry in catalog.countries:
            try:
                frequencies = frozenset(
                    FilingFrequency.parse(value) for value in entry.filing_frequencies
                )
            except ValueError as exc:
                raise ConfigurationError(f"Country {entry.code}: {exc}") from exc
            countries.append(
                Country(
                    code=entry.code,
                    name=entry.name,
                    currency_code=entry.currency_code,
                    standard_vat_rate=entry.standard_vat_rate,
                    filing_frequencies=frequencies,
                    is_active=entry.is_active,
                )
            )
        return cls(countries)

    def get_by_code(self, country_code: str) -> Country | None:
        return self._countries.get(str(country_code).strip().upper())

    def list_countries(self) -> tuple[Country, ...]:
        return tuple(self._countries.values())


def rule_from_config(entry: RuleConfig) -> Rule:
    """Build a validated domain rule from a catalog entry."""

    try:
        return Rule.create(
            rule_id=entry.rule_id,
            country_code=entry.country_code,
            rule_type=entry.type,
            name=entry.name,
            expression=entry.expression,
            effective_from=entry.effective_from,
            effective_to=entry.effective_to,
            priority=entry.priority,
            is_active=entry.is_active,
            description=entry.description,
            parameters=[
                RuleParameter.create(p.name, p.data_type, p.default_value)
                for p in entry.parameters
            ],
            conditions=[
                RuleCondition.create(c.parameter, c.operator, c.value)
                for c in entry.conditions
            ],
        )
    except ValueError as exc:
        raise ConfigurationError(f"Rule {entry.rule_id}: {exc}") from exc


@lru_cache(maxsize=1)
def get_default_repositories() -> tuple[
    InMemoryRuleRepository, InMemoryCountryRepository
]:
    """Return repositories built from the bundled catalogs."""

    rules = InMemoryRuleRepository.from_catalog()
    countries = InMemoryCountryRepository.from_catalog()
    _LOGGER.debug(
        "Loaded %d rules for %d countries",
        len(rules.all_rules()),
        len(countries.list_countries()),
    )
    return rules, countries


class InMemoryCalculationRepository:
    """Thread-safe store of priced calculations.

    Once ``max_items`` is exceeded the least recently saved entry is evicted.
    """

    def __init__(self, *, max_items: int | None = 500) -> None:
        if max_items is not None and max_items <= 0:
            raise ValueError("max_items must be positive when provided")
        self._max_items = max_items
        self._records: OrderedDict[str, PricingOutcome] = OrderedDict()
        self._lock = Lock()

    def save(self, outcome: PricingOutcome) -> PricingOutcome:
        calculation_id = outcome.calculation.calculation_id
        with self._lock:
            self._records[calculation_id] = outcome
            self._records.move_to_end(calculation_id)
            if self._max_items is not None:
                while len(self._records) > self._max_items:
                    self._records.popitem(last=False)
        return outcome

    def get(self, calculation_id: str) -> PricingOutcome:
        with self._lock:
            outcome = self._records.get(calculation_id)
        if outcome is None:
            raise KeyError(calculation_id)
        return outcome

    def set_archived(self, calculation_id: str, archived: bool) -> PricingOutcome:
        """Archive or restore a stored calculation under the store lock."""

        with self._lock:
            outcome = self._records.get(calculation_id)
            if outcome is None:
                raise KeyError(calculation_id)
            if archived:
                outcome.calculation.archive()
            else:
                outcome.calculation.unarchive()
            return outcome

    def list_for_user(
        self, user_id: str, *, include_archived: bool = False
    ) -> tuple[PricingOutcome, ...]:
        """Return ``user_id``'s stored calculations, most recently saved first."""

        with self._lock:
            outcomes = tuple(reversed(self._records.values()))
        return tuple(
            outcome
            for outcome in outcomes
            if outcome.calculation.user_id == user_id
            and (include_archived or not outcome.calculation.is_archived)
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


__all__ = [
    "CountryRepository",
    "InMemoryCalculationRepository",
    "InMemoryCountryRepository",
    "InMemoryRuleRepository",
    "RuleRepository",
    "get_default_repositories",
    "rule_from_config",
]
