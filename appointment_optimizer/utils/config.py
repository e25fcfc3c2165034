"""Application settings resolved from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


_ENV_PREFIX = "SCHEDULER_"
_DEFAULT_DATABASE_PATH = Path(__file__).resolve().parents[2] / "data" / "scheduler.db"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{_ENV_PREFIX}{name}", default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{_ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{_ENV_PREFIX}{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return None
    return _env_int(name, 0)


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path

    backtracking_max_attempts: int

    genetic_population_size: int
    genetic_max_generations: int
    genetic_crossover_rate: float
    genetic_mutation_rate: float
    genetic_gene_mutation_rate: float
    genetic_elite_fraction: float
    genetic_tournament_size: int
    genetic_convergence_epsilon: float

    annealing_initial_temperature: float
    annealing_cooling_rate: float
    annealing_min_temperature: float
    annealing_max_iterations: int
    annealing_conflict_penalty: float
    annealing_unassigned_penalty: float
    annealing_max_multi_reassignments: int

    random_seed: Optional[int]
    comparison_parallel: bool
    comparison_max_workers: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests derive variants with `replace`."""
    return Settings(
        app_name=_env("APP_NAME", "Appointment Optimizer"),
        app_version=_env("APP_VERSION", "1.0.0"),
        log_level=_env("LOG_LEVEL", "INFO"),
        database_path=Path(_env("DATABASE_PATH", str(_DEFAULT_DATABASE_PATH))),
        backtracking_max_attempts=_env_int("BACKTRACKING_MAX_ATTEMPTS", 10000),
        genetic_population_size=_env_int("GENETIC_POPULATION_SIZE", 100),
        genetic_max_generations=_env_int("GENETIC_MAX_GENERATIONS", 1000),
        genetic_crossover_rate=_env_float("GENETIC_CROSSOVER_RATE", 0.8),
        genetic_mutation_rate=_env_float("GENETIC_MUTATION_RATE", 0.1),
        genetic_gene_mutation_rate=_env_float("GENETIC_GENE_MUTATION_RATE", 0.1),
        genetic_elite_fraction=_env_float("GENETIC_ELITE_FRACTION", 0.1),
        genetic_tournament_size=_env_int("GENETIC_TOURNAMENT_SIZE", 5),
        genetic_convergence_epsilon=_env_float("GENETIC_CONVERGENCE_EPSILON", 0.01),
        annealing_initial_temperature=_env_float("ANNEALING_INITIAL_TEMPERATURE", 1000.0),
        annealing_cooling_rate=_env_float("ANNEALING_COOLING_RATE", 0.95),
        annealing_min_temperature=_env_float("ANNEALING_MIN_TEMPERATURE", 0.1),
        annealing_max_iterations=_env_int("ANNEALING_MAX_ITERATIONS", 10000),
        annealing_conflict_penalty=_env_float("ANNEALING_CONFLICT_PENALTY", 100.0),
        annealing_unassigned_penalty=_env_float("ANNEALING_UNASSIGNED_PENALTY", 200.0),
        annealing_max_multi_reassignments=_env_int("ANNEALING_MAX_MULTI_REASSIGNMENTS", 3),
        random_seed=_env_optional_int("RANDOM_SEED"),
        comparison_parallel=_env_bool("COMPARISON_PARALLEL", False),
        comparison_max_workers=_env_int("COMPARISON_MAX_WORKERS", 3),
    )
