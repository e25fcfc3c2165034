"""Constraint evaluation shared by every optimizer.

All functions here are pure. Optimizers, the schedule builder and the
independent validator call into this module instead of re-implementing
eligibility, overlap or cost rules.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import timedelta
from itertools import combinations
from typing import Mapping, Optional, Sequence

from appointment_optimizer.domain.models import Appointment, Resource


CAPABILITY_MATCH_BONUS = 1.0
PREFERRED_CAPABILITY_BONUS = 0.5


def is_eligible(appointment: Appointment, resource: Resource) -> bool:
    """Active, capability superset and availability window containment."""
    if not resource.is_active:
        return False
    if not resource.has_capabilities(appointment.required_capabilities):
        return False
    return resource.is_available_for(appointment.start, appointment.end)


def conflicts_in_time(first: Appointment, second: Appointment) -> bool:
    """Half-open interval overlap; an appointment never conflicts with itself."""
    if first.appointment_id == second.appointment_id:
        return False
    return first.start < second.end and second.start < first.end


def resource_cost(resource: Resource, duration: timedelta) -> float:
    return resource.cost_for(duration)


def capability_match_bonus(appointment: Appointment, resource: Resource) -> float:
    bonus = 0.0
    if resource.has_capabilities(appointment.required_capabilities):
        bonus += CAPABILITY_MATCH_BONUS
    if appointment.preferred_capabilities & resource.capabilities:
        bonus += PREFERRED_CAPABILITY_BONUS
    return bonus


def ordering_cost(appointment: Appointment, resource: Resource) -> float:
    """Lower is tried first: cheaper and better-matching resources lead."""
    return resource_cost(resource, appointment.duration) - capability_match_bonus(
        appointment, resource
    )


def resources_exclusive(first: Resource, second: Resource) -> bool:
    return first.excludes(second)


def conflicting_pairs(
    appointments: Sequence[Appointment],
    assignments: Mapping[str, Optional[str]],
    resources_by_id: Optional[Mapping[str, Resource]] = None,
) -> list[tuple[str, str]]:
    """Return each conflicting unordered pair of assigned appointments once.

    Two appointments conflict when their windows overlap and they share a
    resource, or (when `resources_by_id` is supplied) sit on mutually
    exclusive resources.
    """
    booked_by_resource: dict[str, list[Appointment]] = defaultdict(list)
    for appointment in appointments:
        resource_id = assignments.get(appointment.appointment_id)
        if resource_id is not None:
            booked_by_resource[resource_id].append(appointment)

    for booked in booked_by_resource.values():
        booked.sort(key=lambda item: (item.start, item.appointment_id))

    pairs: list[tuple[str, str]] = []
    for resource_id in sorted(booked_by_resource):
        booked = booked_by_resource[resource_id]
        for index, first in enumerate(booked):
            for second in booked[index + 1:]:
                if second.start >= first.end:
                    break
                if conflicts_in_time(first, second):
                    pairs.append((first.appointment_id, second.appointment_id))

    if resources_by_id:
        for left_id, right_id in combinations(sorted(booked_by_resource), 2):
            left = resources_by_id.get(left_id)
            right = resources_by_id.get(right_id)
            if left is None or right is None or not resources_exclusive(left, right):
                continue
            for first in booked_by_resource[left_id]:
                for second in booked_by_resource[right_id]:
                    if conflicts_in_time(first, second):
                        pairs.append((first.appointment_id, second.appointment_id))
    return pairs


def count_conflicts(
    appointments: Sequence[Appointment],
    assignments: Mapping[str, Optional[str]],
    resources_by_id: Optional[Mapping[str, Resource]] = None,
) -> int:
    return len(conflicting_pairs(appointments, assignments, resources_by_id))
