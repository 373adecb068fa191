"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw_value!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return float(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw_value!r}") from exc


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    database_timeout_seconds: float
    max_passengers_per_bus: int
    distribution_strategy: str
    distribution_solver_max_time_seconds: int
    distribution_solver_random_seed: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests derive variants via replace()."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Pickup Manifest Service"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(
            os.getenv("DATABASE_PATH", str(PROJECT_ROOT / "data" / "pickups.db"))
        ),
        database_timeout_seconds=_env_float("DATABASE_TIMEOUT_SECONDS", 5.0),
        max_passengers_per_bus=_env_int("MAX_PASSENGERS_PER_BUS", 19),
        distribution_strategy=os.getenv("DISTRIBUTION_STRATEGY", "first_fit_decreasing"),
        distribution_solver_max_time_seconds=_env_int(
            "DISTRIBUTION_SOLVER_MAX_TIME_SECONDS", 10
        ),
        distribution_solver_random_seed=_env_int("DISTRIBUTION_SOLVER_RANDOM_SEED", 42),
    )
