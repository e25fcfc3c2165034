#!/usr/bin/env python3
"""Validate local appointment optimizer environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta
from importlib.metadata import version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from appointment_optimizer.domain.models import Appointment, Priority, Resource
from appointment_optimizer.repository.data_repository import DataRepository
from appointment_optimizer.services.comparison_service import ComparisonService
from appointment_optimizer.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def _sample_snapshot() -> tuple[list[Appointment], list[Resource]]:
    day_start = datetime(2026, 3, 2, 8, 0)
    appointments = [
        Appointment(
            appointment_id=f"apt-{index}",
            title=f"Visit {index}",
            start=day_start + timedelta(minutes=45 * index),
            duration=timedelta(minutes=60),
            priority=Priority.HIGH if index % 3 == 0 else Priority.MEDIUM,
            required_capabilities=frozenset({"exam"}),
        )
        for index in range(6)
    ]
    resources = [
        Resource(
            resource_id=f"room-{index}",
            name=f"Room {index}",
            capabilities=frozenset({"exam"}),
            cost_per_hour=40.0 + 10.0 * index,
        )
        for index in range(3)
    ]
    return appointments, resources


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="scheduler-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except Exception as exc:  # pragma: no cover - runtime guard
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
            database_path=Path(temp_dir) / "scheduler_validation.db",
            genetic_population_size=20,
            genetic_max_generations=30,
            annealing_max_iterations=500,
            random_seed=7,
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        appointments, resources = _sample_snapshot()

        # CHECK 4: Repository round trip
        try:
            repository.save_resources(resources)
            repository.save_appointments(appointments)
            stored = len(repository.list_appointments())
            if stored != len(appointments):
                raise RuntimeError(f"expected {len(appointments)} appointments, got {stored}")
            ok, line = _print_result("Repository round trip", True, f": {stored} appointments")
        except Exception as exc:
            ok, line = _print_result("Repository round trip", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Algorithm comparison
        try:
            service = ComparisonService(settings=validation_settings)
            comparison = service.compare_all(appointments, resources)
            winner = service.select_winner(comparison)
            if winner is None:
                raise RuntimeError("no comparison winner")
            report = service.validate(winner.schedule, resources)
            if not report.is_valid:
                raise RuntimeError("; ".join(report.errors))
            ok, line = _print_result(
                "Algorithm comparison",
                True,
                f": winner={winner.algorithm_name} efficiency={winner.efficiency_score:.2f}",
            )
        except Exception as exc:
            ok, line = _print_result("Algorithm comparison", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Appointment Optimizer Environment Validation")
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
