"""Jurisdictions the engine can price, and the filing cadences they accept."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from vatpricing.backend.app.errors import ValidationError


class FilingFrequency(str, Enum):
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    ANNUALLY = "Annually"

    @classmethod
    def parse(cls, value: Any) -> FilingFrequency:
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if text == member.value.lower():
                return member
        raise ValidationError(
            f"Filing frequency must be one of {', '.join(m.value for m in cls)}"
        )

    @property
    def filings_per_year(self) -> int:
        return _FILINGS_PER_YEAR[self]


_FILINGS_PER_YEAR = {
    FilingFrequency.MONTHLY: 12,
    FilingFrequency.QUARTERLY: 4,
    FilingFrequency.ANNUALLY: 1,
}


@dataclass(frozen=True)
class Country:
    """Display and currency data for a jurisdiction."""

    code: str
    name: str
    currency_code: str
    standard_vat_rate: Decimal
    filing_frequencies: frozenset[FilingFrequency] = frozenset(FilingFrequency)
    is_active: bool = True

    def supports_frequency(self, frequency: FilingFrequency) -> bool:
        return frequency in self.filing_frequencies


__all__ = ["Country", "FilingFrequency"]
