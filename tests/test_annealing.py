from __future__ import annotations

import math
import threading
from datetime import datetime, timedelta

import pytest

from appointment_optimizer.domain.models import Appointment, Resource
from appointment_optimizer.domain.problem import SchedulingProblem
from appointment_optimizer.domain.search_config import AnnealingConfig, StopReason
from appointment_optimizer.services.annealing_service import (
    AnnealingOptimizer,
    accept_probability,
    assignment_energy,
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


def _optimizer(**overrides) -> AnnealingOptimizer:
    defaults = {
        "initial_temperature": 1000.0,
        "cooling_rate": 0.95,
        "min_temperature": 0.1,
        "max_iterations": 2000,
        "conflict_penalty": 100.0,
        "unassigned_penalty": 200.0,
        "max_multi_reassignments": 3,
        "random_seed": 5,
    }
    defaults.update(overrides)
    return AnnealingOptimizer(config=AnnealingConfig(**defaults))


def _busy_morning() -> tuple[list[Appointment], list[Resource]]:
    appointments = [
        _appointment(
            f"a{index}",
            offset=30 * index,
            is_flexible=index % 3 == 0,
            flexibility_window=timedelta(minutes=15),
        )
        for index in range(8)
    ]
    resources = [
        _resource("room-a", cost_per_hour=40.0),
        _resource("room-b", cost_per_hour=60.0),
        _resource("room-c", cost_per_hour=80.0),
    ]
    return appointments, resources


def test_energy_penalizes_conflicts_and_gaps() -> None:
    problem = SchedulingProblem(
        [_appointment("a1"), _appointment("a2"), _appointment("a3", required_capabilities={"X"})],
        [_resource("r1", cost_per_hour=60.0)],
    )
    energy = assignment_energy(problem, ["r1", "r1", None], 100.0, 200.0)
    assert energy == pytest.approx(60.0 + 60.0 + 100.0 + 200.0)


def test_metropolis_acceptance_probability() -> None:
    assert accept_probability(-5.0, 10.0) == 1.0
    assert accept_probability(10.0, 10.0) == pytest.approx(math.exp(-1.0))
    assert accept_probability(1000.0, 0.5) < 1e-6


def test_best_energy_never_worse_than_initial_solution() -> None:
    appointments, resources = _busy_morning()

    outcome = _optimizer().run(appointments, resources)

    assert outcome.best_objective <= outcome.initial_objective
    assert 0.0 <= outcome.schedule.efficiency_score <= 100.0


def test_cooling_stops_at_temperature_floor() -> None:
    appointments, resources = _busy_morning()

    outcome = _optimizer().run(appointments, resources)

    expected = math.ceil(math.log(0.1 / 1000.0) / math.log(0.95))
    assert outcome.stop_reason is StopReason.MIN_TEMPERATURE
    assert abs(outcome.iteration_count - expected) <= 1


def test_iteration_cap_stops_search() -> None:
    appointments, resources = _busy_morning()

    outcome = _optimizer(max_iterations=10).run(appointments, resources)

    assert outcome.stop_reason is StopReason.MAX_ITERATIONS
    assert outcome.iteration_count == 10


def test_same_seed_reproduces_same_schedule() -> None:
    appointments, resources = _busy_morning()
    optimizer = _optimizer()

    assert optimizer.optimize(appointments, resources, seed=21) == optimizer.optimize(
        appointments, resources, seed=21
    )


def test_assigned_resources_always_hold_required_capabilities() -> None:
    appointments = [
        _appointment("a1", required_capabilities={"X"}),
        _appointment("a2", offset=60, required_capabilities={"Y"}),
        _appointment("a3", offset=120),
    ]
    resources = [
        _resource("rx", {"X"}),
        _resource("ry", {"Y"}),
        _resource("cheap", cost_per_hour=1.0),
    ]
    resources_by_id = {item.resource_id: item for item in resources}

    schedule = _optimizer().optimize(appointments, resources)

    for appointment in appointments:
        resource_id = schedule.resource_for(appointment.appointment_id)
        if resource_id is not None:
            assert resources_by_id[resource_id].has_capabilities(appointment.required_capabilities)
    assert schedule.resource_for("a1") == "rx"
    assert schedule.resource_for("a2") == "ry"


def test_zero_resources_leaves_everything_unassigned() -> None:
    appointments = [_appointment(f"a{index}", offset=60 * index) for index in range(3)]

    schedule = _optimizer().optimize(appointments, [])

    assert schedule.assignments == {}
    assert schedule.unassigned_appointment_ids == ("a0", "a1", "a2")
    assert schedule.total_cost == 0.0


def test_identical_windows_are_either_unassigned_or_counted_as_conflict() -> None:
    schedule = _optimizer().optimize(
        [_appointment("first", required_capabilities={"X"}), _appointment("second", required_capabilities={"X"})],
        [_resource("only", {"X"})],
    )
    assert len(schedule.assignments) <= 1 or schedule.conflict_count == 1


def test_cancellation_returns_initial_solution() -> None:
    appointments, resources = _busy_morning()
    cancel_event = threading.Event()
    cancel_event.set()

    outcome = _optimizer().run(appointments, resources, cancel_event=cancel_event)

    assert outcome.stop_reason is StopReason.CANCELLED
    assert outcome.iteration_count == 0
    assert outcome.best_objective == outcome.initial_objective
