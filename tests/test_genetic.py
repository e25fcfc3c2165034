from __future__ import annotations

import random
import threading
from datetime import datetime, timedelta

import pytest

from appointment_optimizer.domain.models import Appointment, Resource
from appointment_optimizer.domain.problem import SchedulingProblem
from appointment_optimizer.domain.search_config import GeneticConfig, StopReason
from appointment_optimizer.services.genetic_service import (
    GeneticOptimizer,
    chromosome_fitness,
    cost_efficiency,
)


BASE = datetime(2026, 3, 2, 9, 0)


def _appointment(appointment_id: str, offset: int = 0, minutes: int = 60, **overrides) -> Appointment:
    fields = {
        "appointment_id": appointment_id,
        "title": appointment_id,
        "start": BASE + timedelta(minutes=offset),
        "duration": timedelta(minutes=minutes),
    }
    fields.update(overrides)
    return Appointment(**fields)


def _resource(resource_id: str, capabilities=(), cost_per_hour: float = 60.0, **overrides) -> Resource:
    fields = {
        "resource_id": resource_id,
        "name": resource_id,
        "capabilities": frozenset(capabilities),
        "cost_per_hour": cost_per_hour,
    }
    fields.update(overrides)
    return Resource(**fields)


def _optimizer(**overrides) -> GeneticOptimizer:
    defaults = {
        "population_size": 20,
        "max_generations": 25,
        "crossover_rate": 0.8,
        "mutation_rate": 0.3,
        "gene_mutation_rate": 0.2,
        "elite_fraction": 0.1,
        "tournament_size": 5,
        "convergence_epsilon": 0.01,
        "random_seed": 11,
    }
    defaults.update(overrides)
    return GeneticOptimizer(config=GeneticConfig(**defaults))


def _clinic_day() -> tuple[list[Appointment], list[Resource]]:
    appointments = [
        _appointment(
            f"a{index}",
            offset=40 * index,
            required_capabilities={"exam"} if index % 2 else set(),
        )
        for index in range(8)
    ]
    resources = [
        _resource("exam-1", {"exam"}, cost_per_hour=50.0),
        _resource("exam-2", {"exam"}, cost_per_hour=70.0),
        _resource("consult", cost_per_hour=30.0),
    ]
    return appointments, resources


def test_cost_efficiency_is_squashed_into_unit_interval() -> None:
    assert cost_efficiency(0.0, 10.0) == 0.0
    assert cost_efficiency(3.0, 0.0) == pytest.approx(0.75)
    assert 0.0 <= cost_efficiency(1e9, 1.0) < 1.0


def test_fitness_stays_within_zero_and_one_hundred() -> None:
    appointments, resources = _clinic_day()
    problem = SchedulingProblem(appointments, resources)
    rng = random.Random(3)
    for _ in range(20):
        assert 0.0 <= chromosome_fitness(problem, problem.random_genes(rng)) <= 100.0


def test_best_fitness_never_worse_than_initial_population() -> None:
    appointments, resources = _clinic_day()

    outcome = _optimizer().run(appointments, resources)

    assert outcome.best_objective >= outcome.initial_objective
    assert 0.0 <= outcome.schedule.efficiency_score <= 100.0


def test_same_seed_reproduces_same_schedule() -> None:
    appointments, resources = _clinic_day()
    optimizer = _optimizer()

    first = optimizer.optimize(appointments, resources, seed=99)
    second = optimizer.optimize(appointments, resources, seed=99)

    assert first == second


def test_assigned_resources_always_hold_required_capabilities() -> None:
    appointments, resources = _clinic_day()
    resources_by_id = {item.resource_id: item for item in resources}

    schedule = _optimizer().optimize(appointments, resources)

    for appointment in appointments:
        resource_id = schedule.resource_for(appointment.appointment_id)
        if resource_id is not None:
            assert resources_by_id[resource_id].has_capabilities(appointment.required_capabilities)
    assert set(schedule.assignments) | set(schedule.unassigned_appointment_ids) == {
        item.appointment_id for item in appointments
    }


def test_capability_holder_is_chosen_over_cheaper_resource() -> None:
    schedule = _optimizer().optimize(
        [_appointment("a1", required_capabilities={"X"})],
        [_resource("cheap", cost_per_hour=1.0), _resource("capable", {"X"}, cost_per_hour=500.0)],
    )
    assert schedule.resource_for("a1") == "capable"


def test_identical_windows_are_either_unassigned_or_counted_as_conflict() -> None:
    schedule = _optimizer().optimize(
        [_appointment("first", required_capabilities={"X"}), _appointment("second", required_capabilities={"X"})],
        [_resource("only", {"X"})],
    )
    assert len(schedule.assignments) <= 1 or schedule.conflict_count == 1


def test_zero_resources_leaves_everything_unassigned() -> None:
    appointments = [_appointment(f"a{index}", offset=60 * index) for index in range(3)]

    schedule = _optimizer().optimize(appointments, [])

    assert schedule.assignments == {}
    assert schedule.unassigned_appointment_ids == ("a0", "a1", "a2")
    assert schedule.total_cost == 0.0


def test_empty_input_short_circuits() -> None:
    outcome = _optimizer().run([], [_resource("r1")])
    assert outcome.stop_reason is StopReason.EMPTY_INPUT
    assert outcome.iteration_count == 0


def test_uniform_population_is_detected_as_converged() -> None:
    # A single eligible resource per appointment makes every chromosome identical.
    appointments = [_appointment("a1", required_capabilities={"X"})]

    outcome = _optimizer().run(appointments, [_resource("r1", {"X"})])

    assert outcome.stop_reason is StopReason.CONVERGED
    assert outcome.iteration_count == 0


def test_cancellation_returns_best_initial_chromosome() -> None:
    appointments, resources = _clinic_day()
    cancel_event = threading.Event()
    cancel_event.set()

    outcome = _optimizer().run(appointments, resources, cancel_event=cancel_event)

    assert outcome.stop_reason is StopReason.CANCELLED
    assert outcome.best_objective == outcome.initial_objective
