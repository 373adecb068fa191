#!/usr/bin/env python3
"""Validate local pickup manifest service readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pickup_backend.domain.models import Booking
from pickup_backend.repository.data_repository import DataRepository
from pickup_backend.services.pickup_service import PickupDistributionService
from pickup_backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44
CHECK_DATE = "2026-01-15"


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def _sample_bookings() -> list[Booking]:
    pickup_time = datetime(2026, 1, 15, 20, 30)
    return [
        Booking(
            booking_id=f"check-{index}",
            customer_full_name=f"Check Guest {index}",
            pickup_place_name=place,
            pickup_time=pickup_time,
            guest_count=guests,
        )
        for index, (place, guests) in enumerate(
            [("Hotel Borg", 8), ("Harpa", 7), ("Hlemmur", 6), ("Hotel Saga", 5)]
        )
    ]


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="pickups-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("ortools", "ortools"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "pickups_validation.db",
        )
        repository = DataRepository(validation_settings)
        service = PickupDistributionService(repository=repository, settings=validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Ledger write/read round trip
        try:
            service.register_guide("check-guide-1", "Check Guide One")
            service.register_guide("check-guide-2", "Check Guide Two")
            service.import_bookings(CHECK_DATE, _sample_bookings())
            stored = repository.load_ledger(CHECK_DATE)
            if stored is None or len(stored.bookings()) != 4:
                raise RuntimeError("stored ledger missing or incomplete")
            ok, line = _print_result("Ledger persistence", True)
        except Exception as exc:
            ok, line = _print_result("Ledger persistence", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Auto-distribution within capacity
        try:
            result = service.distribute(CHECK_DATE)
            capacity = validation_settings.max_passengers_per_bus
            over = [
                manifest.guide_id
                for manifest in result.ledger.manifests()
                if manifest.total_passengers > capacity
            ]
            if over:
                raise RuntimeError(f"guides over capacity: {over}")
            ok, line = _print_result(
                "Auto-distribution",
                True,
                f": {result.guides_used} guides, {len(result.stranded_booking_ids)} stranded",
            )
        except Exception as exc:
            ok, line = _print_result("Auto-distribution", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Pickup Service Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
