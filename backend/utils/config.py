"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    admin_token: str
    seed_demo_data: bool
    demo_random_seed: int
    demo_students_per_level: int
    allocation_run_id_prefix: str
    allocation_report_filename_prefix: str
    allocation_join_timeout_seconds: float


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read settings once per process; tests override with dataclasses.replace."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Hostel Allocation Service"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("DATABASE_PATH", "data/hostel.db")),
        admin_token=os.getenv("ADMIN_TOKEN", ""),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
        demo_random_seed=int(os.getenv("DEMO_RANDOM_SEED", "42")),
        demo_students_per_level=int(os.getenv("DEMO_STUDENTS_PER_LEVEL", "6")),
        allocation_run_id_prefix=os.getenv("ALLOCATION_RUN_ID_PREFIX", "alloc"),
        allocation_report_filename_prefix=os.getenv(
            "ALLOCATION_REPORT_FILENAME_PREFIX",
            "allocation-report",
        ),
        allocation_join_timeout_seconds=float(
            os.getenv("ALLOCATION_JOIN_TIMEOUT_SECONDS", "30")
        ),
    )
