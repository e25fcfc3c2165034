"""Deterministic depth-first assignment search with a bounded attempt counter."""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

from appointment_optimizer.domain.constraints import conflicts_in_time
from appointment_optimizer.domain.models import Appointment, Resource
from appointment_optimizer.domain.problem import SchedulingProblem
from appointment_optimizer.domain.schedule import Schedule
from appointment_optimizer.domain.search_config import (
    AlgorithmName,
    BacktrackingConfig,
    OptimizationOutcome,
    StopReason,
    validate_backtracking_config,
)
from appointment_optimizer.utils.config import Settings, get_settings
from appointment_optimizer.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


def search_order(appointments: Iterable[Appointment]) -> list[Appointment]:
    """Highest priority level first, then highest score; ties keep input order."""
    return sorted(
        appointments,
        key=lambda appointment: (-appointment.priority_level, -appointment.score),
    )


@dataclass
class _Frame:
    depth: int
    appointment: Appointment
    candidates: list[str]
    position: int = 0
    skipped: bool = False
    committed: Optional[str] = None


@dataclass
class _SearchState:
    """Partial assignment plus per-resource bookings for O(1) undo."""

    assignments: dict[str, str] = field(default_factory=dict)
    bookings: dict[str, list[Appointment]] = field(default_factory=lambda: defaultdict(list))
    cost: float = 0.0

    def commit(self, problem: SchedulingProblem, appointment: Appointment, resource_id: str) -> None:
        self.assignments[appointment.appointment_id] = resource_id
        self.bookings[resource_id].append(appointment)
        self.cost += problem.assignment_cost(appointment.appointment_id, resource_id)

    def release(self, problem: SchedulingProblem, appointment: Appointment, resource_id: str) -> None:
        del self.assignments[appointment.appointment_id]
        self.bookings[resource_id].pop()
        self.cost -= problem.assignment_cost(appointment.appointment_id, resource_id)


class BacktrackingOptimizer:
    """Exhaustive search that always returns a (possibly partial) schedule.

    Each level tries the open candidates for one appointment in preference
    order, then a branch that leaves it unassigned. Branches that cannot beat
    the best leaf on assigned count are pruned. The first leaf assigning every
    feasible appointment ends the search; otherwise the best leaf (most
    assignments, then lowest cost) found before exhaustion, the attempt cap or
    cancellation is returned.
    """

    name = AlgorithmName.CSP

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config: Optional[BacktrackingConfig] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._config = config or BacktrackingConfig(
            max_attempts=self._settings.backtracking_max_attempts,
        )
        validate_backtracking_config(self._config)

    @property
    def config(self) -> BacktrackingConfig:
        return self._config

    def optimize(
        self,
        appointments: Iterable[Appointment],
        resources: Iterable[Resource],
        cancel_event: Optional[threading.Event] = None,
    ) -> Schedule:
        return self.run(appointments, resources, cancel_event=cancel_event).schedule

    def run(
        self,
        appointments: Iterable[Appointment],
        resources: Iterable[Resource],
        cancel_event: Optional[threading.Event] = None,
    ) -> OptimizationOutcome:
        problem = SchedulingProblem(appointments, resources)
        infeasible = set(problem.infeasible_ids)
        ordered = [
            appointment
            for appointment in search_order(problem.appointments)
            if appointment.appointment_id not in infeasible
        ]

        state = _SearchState()
        best_assignments: dict[str, str] = {}
        best_count = -1
        best_cost = 0.0

        def record_leaf() -> None:
            nonlocal best_assignments, best_count, best_cost
            count = len(state.assignments)
            if count > best_count or (count == best_count and state.cost < best_cost):
                best_assignments = dict(state.assignments)
                best_count = count
                best_cost = state.cost

        attempts = 0
        stop_reason = StopReason.EXHAUSTED
        total = len(ordered)

        if total == 0:
            record_leaf()
            stop_reason = StopReason.EMPTY_INPUT
            stack: list[_Frame] = []
        else:
            attempts = 1
            stack = [self._open_frame(problem, state, ordered, 0)]

        while stack:
            if cancel_event is not None and cancel_event.is_set():
                record_leaf()
                stop_reason = StopReason.CANCELLED
                break

            frame = stack[-1]
            if frame.committed is not None:
                state.release(problem, frame.appointment, frame.committed)
                frame.committed = None

            remaining = total - frame.depth
            if frame.position < len(frame.candidates):
                if len(state.assignments) + remaining <= best_count:
                    stack.pop()
                    continue
                resource_id = frame.candidates[frame.position]
                frame.position += 1
                state.commit(problem, frame.appointment, resource_id)
                frame.committed = resource_id
            elif not frame.skipped:
                frame.skipped = True
                if len(state.assignments) + remaining - 1 <= best_count:
                    stack.pop()
                    continue
            else:
                stack.pop()
                continue

            next_depth = frame.depth + 1
            if next_depth == total:
                record_leaf()
                if len(state.assignments) == total:
                    stop_reason = StopReason.COMPLETED
                    break
                continue

            attempts += 1
            if attempts > self._config.max_attempts:
                record_leaf()
                stop_reason = StopReason.ATTEMPT_LIMIT
                logger.warning(
                    "Backtracking attempt limit reached | %s",
                    format_fields(max_attempts=self._config.max_attempts, best_assigned=best_count),
                )
                break
            stack.append(self._open_frame(problem, state, ordered, next_depth))

        schedule = problem.build_schedule(self.name.value, best_assignments)
        logger.info(
            "Backtracking search completed | %s",
            format_fields(
                stop_reason=stop_reason.value,
                attempts=attempts,
                assigned=len(schedule.assignments),
                unassigned=len(schedule.unassigned_appointment_ids),
                infeasible=len(schedule.infeasible_appointment_ids),
                total_cost=schedule.total_cost,
            ),
        )
        return OptimizationOutcome(
            schedule=schedule,
            iteration_count=attempts,
            initial_objective=0.0,
            best_objective=float(len(best_assignments)),
            stop_reason=stop_reason,
        )

    def _open_frame(
        self,
        problem: SchedulingProblem,
        state: _SearchState,
        ordered: list[Appointment],
        depth: int,
    ) -> _Frame:
        appointment = ordered[depth]
        candidates = [
            resource_id
            for resource_id in problem.candidates_by_preference(appointment)
            if self._is_open(problem, state, appointment, resource_id)
        ]
        logger.debug(
            "Backtracking level opened | %s",
            format_fields(
                depth=depth,
                appointment_id=appointment.appointment_id,
                candidates=len(candidates),
            ),
        )
        return _Frame(depth=depth, appointment=appointment, candidates=candidates)

    @staticmethod
    def _is_open(
        problem: SchedulingProblem,
        state: _SearchState,
        appointment: Appointment,
        resource_id: str,
    ) -> bool:
        for booked in state.bookings.get(resource_id, ()):
            if conflicts_in_time(appointment, booked):
                return False
        for other_id in problem.exclusive_with(resource_id):
            for booked in state.bookings.get(other_id, ()):
                if conflicts_in_time(appointment, booked):
                    return False
        return True
