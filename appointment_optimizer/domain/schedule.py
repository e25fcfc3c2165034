"""Schedule artifact and its derived metrics."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence
from uuid import uuid4

from appointment_optimizer.domain.constraints import count_conflicts, resource_cost
from appointment_optimizer.domain.models import (
    Appointment,
    Resource,
    ensure_consistent_timezones,
)


UTILIZATION_WEIGHT = 0.4
CONFLICT_WEIGHT = 0.4
ASSIGNMENT_WEIGHT = 0.2
CONFLICT_PENALTY_STEP = 0.1


def conflict_penalty(conflict_count: int) -> float:
    """1.0 for a conflict-free schedule, dropping 0.1 per conflict down to 0."""
    return max(0.0, 1.0 - CONFLICT_PENALTY_STEP * conflict_count)


@dataclass(frozen=True)
class ScheduleMetrics:
    total_appointments: int
    assigned_appointments: int
    unassigned_appointments: int
    conflict_count: int
    total_cost: float
    total_score: float
    average_cost: float
    average_score: float
    utilization_rate: float
    efficiency_score: float
    scheduled_minutes: float
    available_minutes: float
    resource_utilization: dict[str, int]
    priority_distribution: dict[str, int]
    type_distribution: dict[str, int]

    @property
    def assignment_rate(self) -> float:
        if self.total_appointments == 0:
            return 0.0
        return 100.0 * self.assigned_appointments / self.total_appointments

    @property
    def conflict_rate(self) -> float:
        if self.assigned_appointments == 0:
            return 0.0
        return 100.0 * self.conflict_count / self.assigned_appointments

    @property
    def most_utilized_resource(self) -> Optional[str]:
        if not self.resource_utilization:
            return None
        return max(sorted(self.resource_utilization), key=self.resource_utilization.__getitem__)

    @property
    def least_utilized_resource(self) -> Optional[str]:
        if not self.resource_utilization:
            return None
        return min(sorted(self.resource_utilization), key=self.resource_utilization.__getitem__)


def _schedule_window(
    appointments: Sequence[Appointment],
) -> tuple[Optional[datetime], Optional[datetime]]:
    if not appointments:
        return None, None
    return (
        min(appointment.start for appointment in appointments),
        max(appointment.end for appointment in appointments),
    )


def compute_schedule_metrics(
    *,
    appointments: Sequence[Appointment],
    assignments: Mapping[str, str],
    resources_by_id: Mapping[str, Resource],
    conflict_count: int,
    window_start: Optional[datetime],
    window_end: Optional[datetime],
) -> ScheduleMetrics:
    """Single derivation step for every aggregate reported on a schedule."""
    assigned = [
        appointment
        for appointment in appointments
        if appointment.appointment_id in assignments
    ]
    total = len(appointments)
    assigned_count = len(assigned)

    total_cost = sum(
        resource_cost(resources_by_id[assignments[appointment.appointment_id]], appointment.duration)
        for appointment in assigned
    )
    total_score = sum(appointment.score for appointment in assigned)
    scheduled_minutes = sum(appointment.duration_minutes for appointment in assigned)

    resource_counts = Counter(assignments[appointment.appointment_id] for appointment in assigned)
    window_minutes = 0.0
    if window_start is not None and window_end is not None:
        window_minutes = (window_end - window_start).total_seconds() / 60.0
    available_minutes = window_minutes * len(resource_counts)
    if available_minutes > 0.0:
        utilization_rate = min(1.0, scheduled_minutes / available_minutes)
    else:
        utilization_rate = 0.0

    assignment_fraction = assigned_count / total if total else 0.0
    efficiency = 100.0 * (
        UTILIZATION_WEIGHT * utilization_rate
        + CONFLICT_WEIGHT * conflict_penalty(conflict_count)
        + ASSIGNMENT_WEIGHT * assignment_fraction
    )

    return ScheduleMetrics(
        total_appointments=total,
        assigned_appointments=assigned_count,
        unassigned_appointments=total - assigned_count,
        conflict_count=conflict_count,
        total_cost=float(total_cost),
        total_score=float(total_score),
        average_cost=float(total_cost / assigned_count) if assigned_count else 0.0,
        average_score=float(total_score / assigned_count) if assigned_count else 0.0,
        utilization_rate=float(utilization_rate),
        efficiency_score=float(min(100.0, max(0.0, efficiency))),
        scheduled_minutes=float(scheduled_minutes),
        available_minutes=float(available_minutes),
        resource_utilization=dict(resource_counts),
        priority_distribution=dict(
            Counter(appointment.priority.value for appointment in assigned)
        ),
        type_distribution=dict(
            Counter(appointment.appointment_type.value for appointment in assigned)
        ),
    )


@dataclass(frozen=True)
class Schedule:
    """Finalized output of one optimization run. Never mutated after creation."""

    algorithm: str
    appointments: tuple[Appointment, ...]
    assignments: dict[str, str]
    unassigned_appointment_ids: tuple[str, ...]
    infeasible_appointment_ids: tuple[str, ...]
    total_cost: float
    total_score: float
    conflict_count: int
    metrics: ScheduleMetrics
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    schedule_id: str = field(default_factory=lambda: uuid4().hex, compare=False)

    @property
    def efficiency_score(self) -> float:
        return self.metrics.efficiency_score

    @property
    def assigned_appointment_ids(self) -> tuple[str, ...]:
        return tuple(
            appointment.appointment_id
            for appointment in self.appointments
            if appointment.appointment_id in self.assignments
        )

    def resource_for(self, appointment_id: str) -> Optional[str]:
        return self.assignments.get(appointment_id)

    def appointments_for_resource(self, resource_id: str) -> list[Appointment]:
        return sorted(
            (
                appointment
                for appointment in self.appointments
                if self.assignments.get(appointment.appointment_id) == resource_id
            ),
            key=lambda appointment: (appointment.start, appointment.appointment_id),
        )

    def has_conflicts(self) -> bool:
        return self.conflict_count > 0


class ScheduleBuilder:
    """Collects assignments for one run and finalizes them exactly once."""

    def __init__(
        self,
        algorithm: str,
        appointments: Iterable[Appointment],
        resources: Iterable[Resource],
    ) -> None:
        self._algorithm = algorithm
        self._appointments = tuple(appointments)
        self._appointment_ids = {appointment.appointment_id for appointment in self._appointments}
        self._resources_by_id = {resource.resource_id: resource for resource in resources}
        ensure_consistent_timezones(self._appointments, self._resources_by_id.values())
        self._assignments: dict[str, str] = {}
        self._infeasible: set[str] = set()
        self._finalized = False

    def assign(self, appointment_id: str, resource_id: str) -> "ScheduleBuilder":
        self._ensure_open()
        if appointment_id not in self._appointment_ids:
            raise ValueError(f"Unknown appointment_id={appointment_id}")
        if resource_id not in self._resources_by_id:
            raise ValueError(f"Unknown resource_id={resource_id}")
        if appointment_id in self._assignments:
            raise ValueError(f"appointment_id={appointment_id} is already assigned")
        self._assignments[appointment_id] = resource_id
        return self

    def mark_infeasible(self, appointment_id: str) -> "ScheduleBuilder":
        self._ensure_open()
        if appointment_id not in self._appointment_ids:
            raise ValueError(f"Unknown appointment_id={appointment_id}")
        self._infeasible.add(appointment_id)
        return self

    def finalize(self) -> Schedule:
        self._ensure_open()
        self._finalized = True

        assignments = {
            appointment.appointment_id: self._assignments[appointment.appointment_id]
            for appointment in self._appointments
            if appointment.appointment_id in self._assignments
        }
        unassigned = tuple(
            appointment.appointment_id
            for appointment in self._appointments
            if appointment.appointment_id not in assignments
        )
        infeasible = tuple(
            appointment_id for appointment_id in unassigned if appointment_id in self._infeasible
        )
        conflict_count = count_conflicts(self._appointments, assignments, self._resources_by_id)
        window_start, window_end = _schedule_window(self._appointments)
        metrics = compute_schedule_metrics(
            appointments=self._appointments,
            assignments=assignments,
            resources_by_id=self._resources_by_id,
            conflict_count=conflict_count,
            window_start=window_start,
            window_end=window_end,
        )
        return Schedule(
            algorithm=self._algorithm,
            appointments=self._appointments,
            assignments=assignments,
            unassigned_appointment_ids=unassigned,
            infeasible_appointment_ids=infeasible,
            total_cost=metrics.total_cost,
            total_score=metrics.total_score,
            conflict_count=conflict_count,
            metrics=metrics,
            window_start=window_start,
            window_end=window_end,
        )

    def _ensure_open(self) -> None:
        if self._finalized:
            raise RuntimeError("Schedule has already been finalized")
