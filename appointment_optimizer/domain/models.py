"""Domain models for appointments and the resources that serve them."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


PRIORITY_LEVELS: dict[Priority, int] = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.URGENT: 4,
}

PRIORITY_MULTIPLIERS: dict[Priority, float] = {
    Priority.LOW: 1.0,
    Priority.MEDIUM: 1.5,
    Priority.HIGH: 2.0,
    Priority.URGENT: 3.0,
}


class AppointmentType(str, Enum):
    CONSULTATION = "CONSULTATION"
    FOLLOW_UP = "FOLLOW_UP"
    TREATMENT = "TREATMENT"
    EMERGENCY = "EMERGENCY"
    SURGERY = "SURGERY"
    DIAGNOSTIC = "DIAGNOSTIC"
    THERAPY = "THERAPY"
    VACCINATION = "VACCINATION"


class AppointmentStatus(str, Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    UNSCHEDULED = "UNSCHEDULED"


class ResourceType(str, Enum):
    ROOM = "ROOM"
    EQUIPMENT = "EQUIPMENT"
    STAFF = "STAFF"
    VEHICLE = "VEHICLE"
    VIRTUAL = "VIRTUAL"


def is_timezone_aware(value: datetime) -> bool:
    return value.tzinfo is not None and value.utcoffset() is not None


def ensure_consistent_timezones(
    appointments: Iterable[Appointment],
    resources: Iterable[Resource],
) -> None:
    """Reject a snapshot that mixes timezone-aware and naive datetimes."""
    awareness: dict[bool, str] = {}
    for appointment in appointments:
        awareness.setdefault(
            is_timezone_aware(appointment.start),
            f"appointment_id={appointment.appointment_id}",
        )
    for resource in resources:
        for bound in (resource.available_from, resource.available_to):
            if bound is not None:
                awareness.setdefault(
                    is_timezone_aware(bound), f"resource_id={resource.resource_id}"
                )
    if len(awareness) > 1:
        raise ValueError(
            "Cannot mix timezone-aware and naive datetimes: "
            f"aware at {awareness[True]}, naive at {awareness[False]}"
        )


def _as_frozenset(values: Iterable[str] | None) -> frozenset[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        return frozenset({values})
    return frozenset(values)


@dataclass(frozen=True)
class Appointment:
    """A schedulable unit of work.

    `end` is always derived from `start + duration`; status changes produce a
    new value through `with_status`.
    """

    appointment_id: str
    title: str
    start: datetime
    duration: timedelta
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    priority: Priority = Priority.MEDIUM
    description: str = ""
    status: AppointmentStatus = AppointmentStatus.PENDING
    assigned_resource_id: Optional[str] = None
    client_id: Optional[str] = None
    required_capabilities: frozenset[str] = field(default_factory=frozenset)
    preferred_capabilities: frozenset[str] = field(default_factory=frozenset)
    is_flexible: bool = False
    flexibility_window: timedelta = timedelta(0)
    importance_score: float = 1.0

    def __post_init__(self) -> None:
        if not str(self.appointment_id).strip():
            raise ValueError("appointment_id must be non-empty")
        if self.duration < timedelta(0):
            raise ValueError(
                f"duration must be >= 0 for appointment_id={self.appointment_id}"
            )
        if not (math.isfinite(self.importance_score) and self.importance_score > 0.0):
            raise ValueError(
                f"importance_score must be a finite number > 0 for appointment_id={self.appointment_id}"
            )
        if self.flexibility_window < timedelta(0):
            raise ValueError(
                f"flexibility_window must be >= 0 for appointment_id={self.appointment_id}"
            )
        object.__setattr__(
            self, "required_capabilities", _as_frozenset(self.required_capabilities)
        )
        object.__setattr__(
            self, "preferred_capabilities", _as_frozenset(self.preferred_capabilities)
        )

    @property
    def end(self) -> datetime:
        return self.start + self.duration

    @property
    def duration_minutes(self) -> float:
        return self.duration.total_seconds() / 60.0

    @property
    def priority_level(self) -> int:
        return PRIORITY_LEVELS[self.priority]

    @property
    def score(self) -> float:
        return self.importance_score * PRIORITY_MULTIPLIERS[self.priority]

    def overlaps(self, other: "Appointment") -> bool:
        if self.appointment_id == other.appointment_id:
            return False
        return self.start < other.end and other.start < self.end

    def can_start_at(self, new_start: datetime) -> bool:
        if not self.is_flexible:
            return new_start == self.start
        return abs(new_start - self.start) <= self.flexibility_window

    def with_status(
        self,
        status: AppointmentStatus,
        assigned_resource_id: Optional[str] = None,
    ) -> "Appointment":
        return replace(self, status=status, assigned_resource_id=assigned_resource_id)


@dataclass(frozen=True)
class Resource:
    resource_id: str
    name: str
    resource_type: ResourceType = ResourceType.ROOM
    capabilities: frozenset[str] = field(default_factory=frozenset)
    cost_per_hour: float = 0.0
    capacity: int = 1
    is_active: bool = True
    available_from: Optional[datetime] = None
    available_to: Optional[datetime] = None
    conflicts: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not str(self.resource_id).strip():
            raise ValueError("resource_id must be non-empty")
        if not (math.isfinite(self.cost_per_hour) and self.cost_per_hour >= 0.0):
            raise ValueError(
                f"cost_per_hour must be a finite number >= 0 for resource_id={self.resource_id}"
            )
        if self.capacity < 1:
            raise ValueError(f"capacity must be >= 1 for resource_id={self.resource_id}")
        if (
            self.available_from is not None
            and self.available_to is not None
            and is_timezone_aware(self.available_from)
            != is_timezone_aware(self.available_to)
        ):
            raise ValueError(
                f"available_from and available_to must both be timezone-aware or both naive "
                f"for resource_id={self.resource_id}"
            )
        if (
            self.available_from is not None
            and self.available_to is not None
            and self.available_from > self.available_to
        ):
            raise ValueError(
                f"available_from must not be after available_to for resource_id={self.resource_id}"
            )
        object.__setattr__(self, "capabilities", _as_frozenset(self.capabilities))
        object.__setattr__(self, "conflicts", _as_frozenset(self.conflicts))

    def has_capabilities(self, required: Iterable[str]) -> bool:
        return self.capabilities.issuperset(required)

    def is_available_for(self, start: datetime, end: datetime) -> bool:
        if not self.is_active:
            return False
        if self.available_from is not None and start < self.available_from:
            return False
        if self.available_to is not None and end > self.available_to:
            return False
        return True

    def cost_for(self, duration: timedelta) -> float:
        return self.cost_per_hour * (duration.total_seconds() / 60.0) / 60.0

    def excludes(self, other: "Resource") -> bool:
        if self.resource_id == other.resource_id:
            return False
        return other.resource_id in self.conflicts or self.resource_id in other.conflicts
