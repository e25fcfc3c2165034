"""Evolutionary search over full appointment-to-resource assignments."""

from __future__ import annotations

import random
import threading
from typing import Iterable, Optional

import numpy as np

from appointment_optimizer.domain.models import Appointment, Resource
from appointment_optimizer.domain.problem import Genes, SchedulingProblem
from appointment_optimizer.domain.schedule import Schedule, conflict_penalty
from appointment_optimizer.domain.search_config import (
    AlgorithmName,
    GeneticConfig,
    OptimizationOutcome,
    StopReason,
    validate_genetic_config,
)
from appointment_optimizer.utils.config import Settings, get_settings
from appointment_optimizer.utils.logger import format_fields, get_logger


logger = get_logger(__name__)

ASSIGNMENT_WEIGHT = 0.3
CONFLICT_WEIGHT = 0.4
COST_EFFICIENCY_WEIGHT = 0.3


def cost_efficiency(total_score: float, total_cost: float) -> float:
    """Score-per-cost ratio squashed into [0, 1) so fitness stays within 0-100."""
    ratio = total_score / total_cost if total_cost > 0.0 else total_score
    ratio = max(0.0, ratio)
    return ratio / (1.0 + ratio)


def chromosome_fitness(problem: SchedulingProblem, genes: Genes) -> float:
    size = problem.size
    if size == 0:
        return 0.0
    assignment_rate = problem.assigned_count(genes) / size
    penalty = conflict_penalty(problem.count_conflicts(genes))
    efficiency = cost_efficiency(problem.total_score(genes), problem.total_cost(genes))
    return 100.0 * (
        ASSIGNMENT_WEIGHT * assignment_rate
        + CONFLICT_WEIGHT * penalty
        + COST_EFFICIENCY_WEIGHT * efficiency
    )


class GeneticOptimizer:
    """Population search with elitism, tournament selection and one-point crossover.

    Randomness comes from a `random.Random` created per run, seeded from the
    call or the config, so concurrent runs never share generator state.
    """

    name = AlgorithmName.GA

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config: Optional[GeneticConfig] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._config = config or GeneticConfig(
            population_size=self._settings.genetic_population_size,
            max_generations=self._settings.genetic_max_generations,
            crossover_rate=self._settings.genetic_crossover_rate,
            mutation_rate=self._settings.genetic_mutation_rate,
            gene_mutation_rate=self._settings.genetic_gene_mutation_rate,
            elite_fraction=self._settings.genetic_elite_fraction,
            tournament_size=self._settings.genetic_tournament_size,
            convergence_epsilon=self._settings.genetic_convergence_epsilon,
            random_seed=self._settings.random_seed,
        )
        validate_genetic_config(self._config)

    @property
    def config(self) -> GeneticConfig:
        return self._config

    def optimize(
        self,
        appointments: Iterable[Appointment],
        resources: Iterable[Resource],
        cancel_event: Optional[threading.Event] = None,
        seed: Optional[int] = None,
    ) -> Schedule:
        return self.run(appointments, resources, cancel_event=cancel_event, seed=seed).schedule

    def run(
        self,
        appointments: Iterable[Appointment],
        resources: Iterable[Resource],
        cancel_event: Optional[threading.Event] = None,
        seed: Optional[int] = None,
    ) -> OptimizationOutcome:
        config = self._config
        problem = SchedulingProblem(appointments, resources)
        rng = random.Random(seed if seed is not None else config.random_seed)

        population = [problem.random_genes(rng) for _ in range(config.population_size)]
        fitnesses = [chromosome_fitness(problem, genes) for genes in population]
        best_index = int(np.argmax(fitnesses))
        best_genes = list(population[best_index])
        best_fitness = fitnesses[best_index]
        initial_fitness = best_fitness

        generation = 0
        stop_reason = StopReason.MAX_GENERATIONS
        if problem.size == 0:
            stop_reason = StopReason.EMPTY_INPUT

        while stop_reason is not StopReason.EMPTY_INPUT and generation < config.max_generations:
            if cancel_event is not None and cancel_event.is_set():
                stop_reason = StopReason.CANCELLED
                break
            if self._has_converged(fitnesses):
                stop_reason = StopReason.CONVERGED
                break

            population = self._next_generation(problem, population, fitnesses, rng)
            fitnesses = [chromosome_fitness(problem, genes) for genes in population]
            generation += 1

            generation_best = int(np.argmax(fitnesses))
            if fitnesses[generation_best] > best_fitness:
                best_fitness = fitnesses[generation_best]
                best_genes = list(population[generation_best])
            logger.debug(
                "Generation evolved | %s",
                format_fields(
                    generation=generation,
                    best_fitness=fitnesses[generation_best],
                    mean_fitness=float(np.mean(fitnesses)),
                ),
            )

        schedule = problem.build_schedule_from_genes(self.name.value, best_genes)
        logger.info(
            "Genetic search completed | %s",
            format_fields(
                stop_reason=stop_reason.value,
                generations=generation,
                initial_fitness=initial_fitness,
                best_fitness=best_fitness,
                assigned=len(schedule.assignments),
                conflicts=schedule.conflict_count,
            ),
        )
        return OptimizationOutcome(
            schedule=schedule,
            iteration_count=generation,
            initial_objective=float(initial_fitness),
            best_objective=float(best_fitness),
            stop_reason=stop_reason,
        )

    def _has_converged(self, fitnesses: list[float]) -> bool:
        scores = np.asarray(fitnesses, dtype=float)
        return bool(abs(float(scores.max()) - float(scores.mean())) < self._config.convergence_epsilon)

    def _next_generation(
        self,
        problem: SchedulingProblem,
        population: list[list[Optional[str]]],
        fitnesses: list[float],
        rng: random.Random,
    ) -> list[list[Optional[str]]]:
        config = self._config
        size = len(population)
        ranked = sorted(range(size), key=lambda index: fitnesses[index], reverse=True)
        elite_count = min(size, max(1, int(size * config.elite_fraction)))
        offspring = [list(population[index]) for index in ranked[:elite_count]]

        while len(offspring) < size:
            first = self._select(population, fitnesses, rng)
            second = self._select(population, fitnesses, rng)
            if problem.size > 1 and rng.random() < config.crossover_rate:
                children = self._crossover(first, second, rng)
            else:
                children = (list(first), list(second))
            for child in children:
                if len(offspring) >= size:
                    break
                if rng.random() < config.mutation_rate:
                    self._mutate(problem, child, rng)
                offspring.append(child)
        return offspring

    def _select(
        self,
        population: list[list[Optional[str]]],
        fitnesses: list[float],
        rng: random.Random,
    ) -> list[Optional[str]]:
        sample_size = min(self._config.tournament_size, len(population))
        contenders = rng.sample(range(len(population)), sample_size)
        winner = max(contenders, key=lambda index: (fitnesses[index], -index))
        return population[winner]

    @staticmethod
    def _crossover(
        first: list[Optional[str]],
        second: list[Optional[str]],
        rng: random.Random,
    ) -> tuple[list[Optional[str]], list[Optional[str]]]:
        point = rng.randint(1, len(first) - 1)
        return first[:point] + second[point:], second[:point] + first[point:]

    def _mutate(
        self,
        problem: SchedulingProblem,
        genes: list[Optional[str]],
        rng: random.Random,
    ) -> None:
        for index, appointment in enumerate(problem.appointments):
            if rng.random() >= self._config.gene_mutation_rate:
                continue
            eligible = problem.eligible_resources(appointment.appointment_id)
            if eligible:
                genes[index] = rng.choice(eligible)
