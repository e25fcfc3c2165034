"""Per-invocation index over one (appointments, resources) snapshot."""

from __future__ import annotations

import random
from typing import Iterable, Mapping, Optional, Sequence

from appointment_optimizer.domain.constraints import (
    count_conflicts,
    is_eligible,
    ordering_cost,
    resource_cost,
    resources_exclusive,
)
from appointment_optimizer.domain.models import (
    Appointment,
    Resource,
    ensure_consistent_timezones,
)
from appointment_optimizer.domain.schedule import Schedule, ScheduleBuilder


Genes = Sequence[Optional[str]]


def _reject_duplicates(ids: Iterable[str], label: str) -> None:
    seen: set[str] = set()
    for item in ids:
        if item in seen:
            raise ValueError(f"Duplicate {label}={item}")
        seen.add(item)


class SchedulingProblem:
    """Immutable view of the inputs plus precomputed eligibility.

    Each optimizer run builds its own instance, so input lists are copied into
    tuples and never mutated. Candidate assignments are expressed as gene
    lists aligned with `appointments` (None meaning unassigned).
    """

    def __init__(
        self,
        appointments: Iterable[Appointment],
        resources: Iterable[Resource],
    ) -> None:
        self.appointments: tuple[Appointment, ...] = tuple(appointments)
        self.resources: tuple[Resource, ...] = tuple(resources)
        _reject_duplicates((item.appointment_id for item in self.appointments), "appointment_id")
        _reject_duplicates((item.resource_id for item in self.resources), "resource_id")
        ensure_consistent_timezones(self.appointments, self.resources)

        self.appointments_by_id = {item.appointment_id: item for item in self.appointments}
        self.resources_by_id = {item.resource_id: item for item in self.resources}
        self.resource_index = {
            resource.resource_id: index for index, resource in enumerate(self.resources)
        }
        self._eligible: dict[str, tuple[str, ...]] = {
            appointment.appointment_id: tuple(
                resource.resource_id
                for resource in self.resources
                if is_eligible(appointment, resource)
            )
            for appointment in self.appointments
        }
        self._costs: dict[tuple[str, str], float] = {
            (appointment.appointment_id, resource_id): resource_cost(
                self.resources_by_id[resource_id], appointment.duration
            )
            for appointment in self.appointments
            for resource_id in self._eligible[appointment.appointment_id]
        }
        self._exclusive: dict[str, frozenset[str]] = {
            resource.resource_id: frozenset(
                other.resource_id
                for other in self.resources
                if resources_exclusive(resource, other)
            )
            for resource in self.resources
        }
        self.infeasible_ids: tuple[str, ...] = tuple(
            appointment.appointment_id
            for appointment in self.appointments
            if not self._eligible[appointment.appointment_id]
        )

    @property
    def size(self) -> int:
        return len(self.appointments)

    def eligible_resources(self, appointment_id: str) -> tuple[str, ...]:
        return self._eligible[appointment_id]

    def is_eligible(self, appointment_id: str, resource_id: str) -> bool:
        return resource_id in self._eligible[appointment_id]

    def exclusive_with(self, resource_id: str) -> frozenset[str]:
        return self._exclusive[resource_id]

    def candidates_by_preference(self, appointment: Appointment) -> list[str]:
        """Eligible resources ordered by cost minus capability bonus, then input order."""
        return sorted(
            self._eligible[appointment.appointment_id],
            key=lambda resource_id: (
                ordering_cost(appointment, self.resources_by_id[resource_id]),
                self.resource_index[resource_id],
            ),
        )

    def assignment_cost(self, appointment_id: str, resource_id: str) -> float:
        cached = self._costs.get((appointment_id, resource_id))
        if cached is not None:
            return cached
        return resource_cost(
            self.resources_by_id[resource_id],
            self.appointments_by_id[appointment_id].duration,
        )

    def random_genes(self, rng: random.Random) -> list[Optional[str]]:
        genes: list[Optional[str]] = []
        for appointment in self.appointments:
            eligible = self._eligible[appointment.appointment_id]
            genes.append(rng.choice(eligible) if eligible else None)
        return genes

    def to_assignments(self, genes: Genes) -> dict[str, str]:
        return {
            appointment.appointment_id: resource_id
            for appointment, resource_id in zip(self.appointments, genes)
            if resource_id is not None
        }

    def total_cost(self, genes: Genes) -> float:
        return sum(
            self.assignment_cost(appointment.appointment_id, resource_id)
            for appointment, resource_id in zip(self.appointments, genes)
            if resource_id is not None
        )

    def total_score(self, genes: Genes) -> float:
        return sum(
            appointment.score
            for appointment, resource_id in zip(self.appointments, genes)
            if resource_id is not None
        )

    def assigned_count(self, genes: Genes) -> int:
        return sum(1 for resource_id in genes if resource_id is not None)

    def count_conflicts(self, genes: Genes) -> int:
        return count_conflicts(self.appointments, self.to_assignments(genes), self.resources_by_id)

    def build_schedule(self, algorithm: str, assignments: Mapping[str, str]) -> Schedule:
        builder = ScheduleBuilder(algorithm, self.appointments, self.resources)
        for appointment in self.appointments:
            resource_id = assignments.get(appointment.appointment_id)
            if resource_id is not None:
                builder.assign(appointment.appointment_id, resource_id)
        for appointment_id in self.infeasible_ids:
            builder.mark_infeasible(appointment_id)
        return builder.finalize()

    def build_schedule_from_genes(self, algorithm: str, genes: Genes) -> Schedule:
        return self.build_schedule(algorithm, self.to_assignments(genes))
