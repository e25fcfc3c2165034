"""Service layer that runs optimizers over stored data and persists accepted schedules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Union

from appointment_optimizer.domain.models import Appointment, AppointmentStatus, Resource
from appointment_optimizer.domain.schedule import Schedule
from appointment_optimizer.domain.search_config import AlgorithmName
from appointment_optimizer.services.comparison_service import (
    ComparisonResult,
    ComparisonService,
    ValidationReport,
)
from appointment_optimizer.utils.config import Settings, get_settings
from appointment_optimizer.utils.logger import format_fields, get_logger


logger = get_logger(__name__)

SCHEDULABLE_STATUSES = (
    AppointmentStatus.PENDING,
    AppointmentStatus.UNSCHEDULED,
    AppointmentStatus.SCHEDULED,
)


class ScheduleRejectedError(Exception):
    """Raised when no candidate schedule passes validation without errors."""

    def __init__(self, message: str, report: Optional[ValidationReport] = None) -> None:
        super().__init__(message)
        self.report = report


class SchedulingRepository(Protocol):
    def list_appointments(
        self,
        statuses: Optional[Sequence[AppointmentStatus]] = None,
    ) -> list[Appointment]:
        ...

    def list_resources(self, active_only: bool = False) -> list[Resource]:
        ...

    def save_schedule(self, schedule: Schedule) -> str:
        ...


@dataclass(frozen=True)
class SchedulingRun:
    schedule: Schedule
    report: ValidationReport
    accepted: bool
    persisted_schedule_id: Optional[str]


class AppointmentSchedulingService:
    """Loads stored appointments/resources, optimizes and persists accepted schedules.

    The optimizers never see the repository; they receive plain tuples loaded
    here. Schedules with validation errors are never persisted.
    """

    def __init__(
        self,
        repository: SchedulingRepository,
        comparison_service: Optional[ComparisonService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._comparison_service = comparison_service or ComparisonService(settings=self._settings)

    def _load_inputs(self) -> tuple[list[Appointment], list[Resource]]:
        appointments = self._repository.list_appointments(statuses=SCHEDULABLE_STATUSES)
        resources = self._repository.list_resources()
        return appointments, resources

    def run_stored(self, algorithm: Union[str, AlgorithmName]) -> SchedulingRun:
        appointments, resources = self._load_inputs()
        schedule = self._comparison_service.optimize(algorithm, appointments, resources)
        report = self._comparison_service.validate(schedule, resources)
        return self._persist_if_valid(schedule, report)

    def compare_stored(self) -> dict[str, ComparisonResult]:
        appointments, resources = self._load_inputs()
        return self._comparison_service.compare_all(appointments, resources)

    def schedule_best(self) -> SchedulingRun:
        """Persist the highest-efficiency schedule among those without errors."""
        appointments, resources = self._load_inputs()
        results = self._comparison_service.compare_all(appointments, resources)

        best: Optional[tuple[ComparisonResult, ValidationReport]] = None
        last_report: Optional[ValidationReport] = None
        for name in AlgorithmName:
            result = results.get(name.value)
            if result is None:
                continue
            report = self._comparison_service.validate(result.schedule, resources)
            last_report = report
            if not report.is_valid:
                logger.warning(
                    "Candidate schedule rejected | %s",
                    format_fields(algorithm=name.value, errors=len(report.errors)),
                )
                continue
            if best is None or result.efficiency_score > best[0].efficiency_score:
                best = (result, report)

        if best is None:
            raise ScheduleRejectedError(
                "Every candidate schedule failed validation",
                report=last_report,
            )
        return self._persist_if_valid(best[0].schedule, best[1])

    def _persist_if_valid(self, schedule: Schedule, report: ValidationReport) -> SchedulingRun:
        if not report.is_valid:
            logger.warning(
                "Schedule rejected | %s",
                format_fields(
                    algorithm=schedule.algorithm,
                    errors=len(report.errors),
                    warnings=len(report.warnings),
                ),
            )
            return SchedulingRun(
                schedule=schedule,
                report=report,
                accepted=False,
                persisted_schedule_id=None,
            )
        schedule_id = self._repository.save_schedule(schedule)
        logger.info(
            "Schedule accepted | %s",
            format_fields(
                schedule_id=schedule_id,
                algorithm=schedule.algorithm,
                assigned=len(schedule.assignments),
                warnings=len(report.warnings),
            ),
        )
        return SchedulingRun(
            schedule=schedule,
            report=report,
            accepted=True,
            persisted_schedule_id=schedule_id,
        )
