"""Search parameters for the three optimizers and their validation rules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from appointment_optimizer.domain.schedule import Schedule


class AlgorithmName(str, Enum):
    CSP = "CSP"
    GA = "GA"
    SA = "SA"


class StopReason(str, Enum):
    COMPLETED = "COMPLETED"
    EXHAUSTED = "EXHAUSTED"
    ATTEMPT_LIMIT = "ATTEMPT_LIMIT"
    MAX_GENERATIONS = "MAX_GENERATIONS"
    CONVERGED = "CONVERGED"
    MIN_TEMPERATURE = "MIN_TEMPERATURE"
    MAX_ITERATIONS = "MAX_ITERATIONS"
    CANCELLED = "CANCELLED"
    EMPTY_INPUT = "EMPTY_INPUT"


@dataclass(frozen=True)
class BacktrackingConfig:
    max_attempts: int


@dataclass(frozen=True)
class GeneticConfig:
    population_size: int
    max_generations: int
    crossover_rate: float
    mutation_rate: float
    gene_mutation_rate: float
    elite_fraction: float
    tournament_size: int
    convergence_epsilon: float
    random_seed: Optional[int] = None


@dataclass(frozen=True)
class AnnealingConfig:
    initial_temperature: float
    cooling_rate: float
    min_temperature: float
    max_iterations: int
    conflict_penalty: float
    unassigned_penalty: float
    max_multi_reassignments: int
    random_seed: Optional[int] = None


@dataclass(frozen=True)
class OptimizationOutcome:
    """A schedule plus the search statistics that produced it."""

    schedule: Schedule
    iteration_count: int
    initial_objective: float
    best_objective: float
    stop_reason: StopReason


def validate_backtracking_config(config: BacktrackingConfig) -> None:
    if config.max_attempts <= 0:
        raise ValueError("max_attempts must be > 0")


def validate_genetic_config(config: GeneticConfig) -> None:
    if config.population_size <= 0:
        raise ValueError("population_size must be > 0")
    if config.max_generations < 0:
        raise ValueError("max_generations must be >= 0")
    if not 0.0 <= config.crossover_rate <= 1.0:
        raise ValueError("crossover_rate must be between 0 and 1")
    if not 0.0 <= config.mutation_rate <= 1.0:
        raise ValueError("mutation_rate must be between 0 and 1")
    if not 0.0 <= config.gene_mutation_rate <= 1.0:
        raise ValueError("gene_mutation_rate must be between 0 and 1")
    if not 0.0 <= config.elite_fraction < 1.0:
        raise ValueError("elite_fraction must be in [0, 1)")
    if config.tournament_size <= 0:
        raise ValueError("tournament_size must be > 0")
    if config.convergence_epsilon < 0.0:
        raise ValueError("convergence_epsilon must be >= 0")


def validate_annealing_config(config: AnnealingConfig) -> None:
    if config.initial_temperature <= 0.0:
        raise ValueError("initial_temperature must be > 0")
    if not 0.0 < config.cooling_rate < 1.0:
        raise ValueError("cooling_rate must be in (0, 1)")
    if config.min_temperature <= 0.0:
        raise ValueError("min_temperature must be > 0")
    if config.max_iterations < 0:
        raise ValueError("max_iterations must be >= 0")
    if config.conflict_penalty < 0.0:
        raise ValueError("conflict_penalty must be >= 0")
    if config.unassigned_penalty < 0.0:
        raise ValueError("unassigned_penalty must be >= 0")
    if config.max_multi_reassignments <= 0:
        raise ValueError("max_multi_reassignments must be > 0")
