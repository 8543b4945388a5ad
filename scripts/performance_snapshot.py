#!/usr/bin/env python3
"""Collect baseline timings for the pricing engine."""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from time import perf_counter

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from vatpricing.backend.app.services.calculation_service import calculate  # noqa: E402

SAMPLE_PAYLOAD = {
    "service_type": "Complex",
    "transaction_volume": 750,
    "frequency": "Monthly",
    "country_codes": ["GB", "DE", "FR", "IT", "ES", "PL"],
    "additional_services": ["TaxConsultancy"],
    "currency_code": "EUR",
    "parameters": {"loyaltyYears": 4},
    "calculation_date": "2025-03-01",
}


def measure(iterations: int, workers: int) -> dict[str, float]:
    """Return timing statistics for repeated calculations."""

    calculate(SAMPLE_PAYLOAD, max_workers=workers)  # Warm caches
    start = perf_counter()
    for _ in range(iterations):
        calculate(SAMPLE_PAYLOAD, max_workers=workers)
    elapsed = perf_counter() - start
    return {
        "iterations": iterations,
        "workers": workers,
        "total_ms": elapsed * 1000,
        "average_ms": (elapsed / iterations) * 1000,
    }


def main() -> None:
    iterations = int(os.getenv("VATPRICING_PROFILE_ITERATIONS", "200"))
    report = {
        "sequential": measure(iterations, 1),
        "threaded": measure(iterations, 4),
    }
    print(json.dumps(report, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
