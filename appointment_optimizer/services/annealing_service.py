"""Single-solution local search with Metropolis acceptance and geometric cooling."""

from __future__ import annotations

import math
import random
import threading
from typing import Callable, Iterable, Optional

from appointment_optimizer.domain.models import Appointment, Resource
from appointment_optimizer.domain.problem import Genes, SchedulingProblem
from appointment_optimizer.domain.schedule import Schedule
from appointment_optimizer.domain.search_config import (
    AlgorithmName,
    AnnealingConfig,
    OptimizationOutcome,
    StopReason,
    validate_annealing_config,
)
from appointment_optimizer.utils.config import Settings, get_settings
from appointment_optimizer.utils.logger import format_fields, get_logger


logger = get_logger(__name__)

Move = Callable[[SchedulingProblem, list[Optional[str]], random.Random], None]


def assignment_energy(
    problem: SchedulingProblem,
    genes: Genes,
    conflict_penalty: float,
    unassigned_penalty: float,
) -> float:
    """Lower is better. Conflicts and gaps are penalized rather than forbidden."""
    unassigned = problem.size - problem.assigned_count(genes)
    return (
        problem.total_cost(genes)
        + conflict_penalty * problem.count_conflicts(genes)
        + unassigned_penalty * unassigned
    )


def accept_probability(delta: float, temperature: float) -> float:
    if delta < 0.0:
        return 1.0
    return math.exp(-delta / max(temperature, 1e-9))


class AnnealingOptimizer:
    """Simulated annealing over one candidate assignment.

    The best-energy assignment is tracked separately from the current one and
    is what the run returns.
    """

    name = AlgorithmName.SA

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config: Optional[AnnealingConfig] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._config = config or AnnealingConfig(
            initial_temperature=self._settings.annealing_initial_temperature,
            cooling_rate=self._settings.annealing_cooling_rate,
            min_temperature=self._settings.annealing_min_temperature,
            max_iterations=self._settings.annealing_max_iterations,
            conflict_penalty=self._settings.annealing_conflict_penalty,
            unassigned_penalty=self._settings.annealing_unassigned_penalty,
            max_multi_reassignments=self._settings.annealing_max_multi_reassignments,
            random_seed=self._settings.random_seed,
        )
        validate_annealing_config(self._config)
        self._moves: tuple[Move, ...] = (
            self._reassign_one,
            self._swap_two,
            self._reassign_several,
            self._shift_flexible,
        )

    @property
    def config(self) -> AnnealingConfig:
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

        def energy(genes: Genes) -> float:
            return assignment_energy(
                problem,
                genes,
                config.conflict_penalty,
                config.unassigned_penalty,
            )

        current = problem.random_genes(rng)
        current_energy = energy(current)
        best = list(current)
        best_energy = current_energy
        initial_energy = current_energy

        temperature = config.initial_temperature
        iteration = 0
        accepted = 0
        stop_reason = StopReason.MAX_ITERATIONS
        if problem.size == 0:
            stop_reason = StopReason.EMPTY_INPUT

        while stop_reason is not StopReason.EMPTY_INPUT and iteration < config.max_iterations:
            if cancel_event is not None and cancel_event.is_set():
                stop_reason = StopReason.CANCELLED
                break
            if temperature <= config.min_temperature:
                stop_reason = StopReason.MIN_TEMPERATURE
                break

            neighbor = list(current)
            move = rng.choice(self._moves)
            move(problem, neighbor, rng)
            neighbor_energy = energy(neighbor)
            delta = neighbor_energy - current_energy

            if delta < 0.0 or rng.random() < accept_probability(delta, temperature):
                current = neighbor
                current_energy = neighbor_energy
                accepted += 1
                if current_energy < best_energy:
                    best = list(current)
                    best_energy = current_energy

            temperature *= config.cooling_rate
            iteration += 1

        schedule = problem.build_schedule_from_genes(self.name.value, best)
        logger.info(
            "Annealing search completed | %s",
            format_fields(
                stop_reason=stop_reason.value,
                iterations=iteration,
                accepted=accepted,
                initial_energy=initial_energy,
                best_energy=best_energy,
                final_temperature=temperature,
                assigned=len(schedule.assignments),
            ),
        )
        return OptimizationOutcome(
            schedule=schedule,
            iteration_count=iteration,
            initial_objective=float(initial_energy),
            best_objective=float(best_energy),
            stop_reason=stop_reason,
        )

    @staticmethod
    def _reassign_at(
        problem: SchedulingProblem,
        genes: list[Optional[str]],
        index: int,
        rng: random.Random,
    ) -> None:
        appointment = problem.appointments[index]
        options = [
            resource_id
            for resource_id in problem.eligible_resources(appointment.appointment_id)
            if resource_id != genes[index]
        ]
        if options:
            genes[index] = rng.choice(options)

    def _reassign_one(
        self,
        problem: SchedulingProblem,
        genes: list[Optional[str]],
        rng: random.Random,
    ) -> None:
        self._reassign_at(problem, genes, rng.randrange(problem.size), rng)

    def _swap_two(
        self,
        problem: SchedulingProblem,
        genes: list[Optional[str]],
        rng: random.Random,
    ) -> None:
        if problem.size < 2:
            self._reassign_one(problem, genes, rng)
            return
        first, second = rng.sample(range(problem.size), 2)
        first_resource, second_resource = genes[first], genes[second]
        if first_resource is None or second_resource is None or first_resource == second_resource:
            return
        first_id = problem.appointments[first].appointment_id
        second_id = problem.appointments[second].appointment_id
        if problem.is_eligible(first_id, second_resource) and problem.is_eligible(
            second_id, first_resource
        ):
            genes[first], genes[second] = second_resource, first_resource

    def _reassign_several(
        self,
        problem: SchedulingProblem,
        genes: list[Optional[str]],
        rng: random.Random,
    ) -> None:
        count = min(self._config.max_multi_reassignments, problem.size)
        for index in rng.sample(range(problem.size), count):
            self._reassign_at(problem, genes, index, rng)

    def _shift_flexible(
        self,
        problem: SchedulingProblem,
        genes: list[Optional[str]],
        rng: random.Random,
    ) -> None:
        flexible = [
            index
            for index, appointment in enumerate(problem.appointments)
            if appointment.is_flexible
        ]
        if not flexible:
            self._reassign_one(problem, genes, rng)
            return
        self._reassign_at(problem, genes, rng.choice(flexible), rng)
