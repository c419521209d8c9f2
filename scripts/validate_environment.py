#!/usr/bin/env python3
"""Validate local hostel allocation environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.repository.data_repository import DataRepository
from backend.services.report_service import render_csv, render_pdf
from backend.services.solver_service import AllocationSolver
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="hostel-env-")

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

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("pandas", "pandas"),
        ("reportlab", "reportlab"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    from importlib.metadata import PackageNotFoundError, version

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
            database_path=Path(temp_dir) / "hostel_validation.db",
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

        # CHECK 4: Demo data seeding
        try:
            seeded = repository.seed_demo_data_if_empty()
            if seeded <= 0:
                raise RuntimeError("no demo applicants were seeded")
            ok, line = _print_result("Demo seeding", True, f": {seeded} applicants")
        except Exception as exc:
            ok, line = _print_result("Demo seeding", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Dry-run solve (nothing persisted)
        result = None
        try:
            result = AllocationSolver(repository=repository).solve("env-validation")
            if result.students_allocated + len(result.conflicts) > result.total_students:
                raise RuntimeError("solver counts are inconsistent")
            if repository.count_allocations() != 0:
                raise RuntimeError("dry run wrote allocations")
            ok, line = _print_result(
                "Dry-run allocation",
                True,
                f": {result.students_allocated}/{result.total_students} placed ({result.status.value})",
            )
        except Exception as exc:
            ok, line = _print_result("Dry-run allocation", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: CSV and PDF report rendering of the dry-run result
        try:
            if result is None:
                raise RuntimeError("no dry-run result to render")
            csv_bytes = render_csv(result)
            pdf_bytes = render_pdf(result)
            if not pdf_bytes.startswith(b"%PDF"):
                raise RuntimeError("PDF output has no PDF header")
            ok, line = _print_result(
                "Report rendering",
                True,
                f": csv={len(csv_bytes)} bytes, pdf={len(pdf_bytes)} bytes",
            )
        except Exception as exc:
            ok, line = _print_result("Report rendering", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Hostel Allocation Environment Validation")
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
