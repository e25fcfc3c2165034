"""HTTP controller layer for optimization, comparison and validation."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, ValidationInfo, field_validator

from appointment_optimizer.controllers.dependencies import (
    get_comparison_service,
    get_scheduling_service,
)
from appointment_optimizer.domain.models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    Priority,
    Resource,
    ResourceType,
    is_timezone_aware,
)
from appointment_optimizer.domain.schedule import Schedule, ScheduleBuilder
from appointment_optimizer.services.comparison_service import (
    ComparisonResult,
    ComparisonService,
    UnknownAlgorithmError,
    ValidationReport,
)
from appointment_optimizer.services.scheduling_service import (
    AppointmentSchedulingService,
    ScheduleRejectedError,
    SchedulingRun,
)
from appointment_optimizer.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["optimization"])


class AppointmentPayload(BaseModel):
    """Input DTO validated before entering service layer."""

    appointment_id: str = Field(min_length=1)
    title: str = ""
    description: str = ""
    start: datetime
    duration_minutes: float = Field(ge=0.0)
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    priority: Priority = Priority.MEDIUM
    status: AppointmentStatus = AppointmentStatus.PENDING
    client_id: Optional[str] = None
    required_capabilities: list[str] = Field(default_factory=list)
    preferred_capabilities: list[str] = Field(default_factory=list)
    is_flexible: bool = False
    flexibility_window_minutes: float = Field(default=0.0, ge=0.0)
    importance_score: float = Field(default=1.0, gt=0.0)

    def to_domain(self) -> Appointment:
        return Appointment(
            appointment_id=self.appointment_id,
            title=self.title,
            description=self.description,
            start=self.start,
            duration=timedelta(minutes=self.duration_minutes),
            appointment_type=self.appointment_type,
            priority=self.priority,
            status=self.status,
            client_id=self.client_id,
            required_capabilities=frozenset(self.required_capabilities),
            preferred_capabilities=frozenset(self.preferred_capabilities),
            is_flexible=self.is_flexible,
            flexibility_window=timedelta(minutes=self.flexibility_window_minutes),
            importance_score=self.importance_score,
        )


class ResourcePayload(BaseModel):
    resource_id: str = Field(min_length=1)
    name: str = ""
    resource_type: ResourceType = ResourceType.ROOM
    capabilities: list[str] = Field(default_factory=list)
    cost_per_hour: float = Field(default=0.0, ge=0.0)
    capacity: int = Field(default=1, ge=1)
    is_active: bool = True
    available_from: Optional[datetime] = None
    available_to: Optional[datetime] = None
    conflicts: list[str] = Field(default_factory=list)

    @field_validator("available_to")
    @classmethod
    def validate_window_order(
        cls,
        value: Optional[datetime],
        info: ValidationInfo,
    ) -> Optional[datetime]:
        available_from = info.data.get("available_from")
        if value is None or available_from is None:
            return value
        if is_timezone_aware(available_from) != is_timezone_aware(value):
            raise ValueError(
                "available_from and available_to must both be timezone-aware or both naive"
            )
        if available_from > value:
            raise ValueError("available_from must not be after available_to")
        return value

    def to_domain(self) -> Resource:
        return Resource(
            resource_id=self.resource_id,
            name=self.name or self.resource_id,
            resource_type=self.resource_type,
            capabilities=frozenset(self.capabilities),
            cost_per_hour=self.cost_per_hour,
            capacity=self.capacity,
            is_active=self.is_active,
            available_from=self.available_from,
            available_to=self.available_to,
            conflicts=frozenset(self.conflicts),
        )


class OptimizationRequest(BaseModel):
    appointments: list[AppointmentPayload] = Field(default_factory=list)
    resources: list[ResourcePayload] = Field(default_factory=list)

    @field_validator("appointments")
    @classmethod
    def validate_unique_appointments(
        cls,
        value: list[AppointmentPayload],
    ) -> list[AppointmentPayload]:
        ids = [item.appointment_id for item in value]
        if len(ids) != len(set(ids)):
            raise ValueError("appointment_id values must be unique")
        return value

    @field_validator("resources")
    @classmethod
    def validate_unique_resources(cls, value: list[ResourcePayload]) -> list[ResourcePayload]:
        ids = [item.resource_id for item in value]
        if len(ids) != len(set(ids)):
            raise ValueError("resource_id values must be unique")
        return value

    def to_domain(self) -> tuple[list[Appointment], list[Resource]]:
        return (
            [item.to_domain() for item in self.appointments],
            [item.to_domain() for item in self.resources],
        )


class ValidateScheduleRequest(OptimizationRequest):
    assignments: dict[str, str] = Field(default_factory=dict)


class ScheduleResponse(BaseModel):
    schedule_id: str
    algorithm: str
    assignments: dict[str, str]
    unassigned_appointment_ids: list[str]
    infeasible_appointment_ids: list[str]
    total_cost: float = Field(ge=0.0)
    total_score: float = Field(ge=0.0)
    conflict_count: int = Field(ge=0)
    efficiency_score: float = Field(ge=0.0, le=100.0)
    utilization_rate: float = Field(ge=0.0, le=1.0)
    assignment_rate: float = Field(ge=0.0, le=100.0)

    @classmethod
    def from_domain(cls, schedule: Schedule) -> "ScheduleResponse":
        return cls(
            schedule_id=schedule.schedule_id,
            algorithm=schedule.algorithm,
            assignments=dict(schedule.assignments),
            unassigned_appointment_ids=list(schedule.unassigned_appointment_ids),
            infeasible_appointment_ids=list(schedule.infeasible_appointment_ids),
            total_cost=schedule.total_cost,
            total_score=schedule.total_score,
            conflict_count=schedule.conflict_count,
            efficiency_score=schedule.efficiency_score,
            utilization_rate=schedule.metrics.utilization_rate,
            assignment_rate=schedule.metrics.assignment_rate,
        )


class ComparisonResultResponse(BaseModel):
    algorithm_name: str
    execution_time_ms: float = Field(ge=0.0)
    iteration_count: int = Field(ge=0)
    efficiency_score: float = Field(ge=0.0, le=100.0)
    total_cost: float = Field(ge=0.0)
    conflict_count: int = Field(ge=0)
    schedule: ScheduleResponse

    @classmethod
    def from_domain(cls, result: ComparisonResult) -> "ComparisonResultResponse":
        return cls(
            algorithm_name=result.algorithm_name,
            execution_time_ms=result.execution_time_ms,
            iteration_count=result.iteration_count,
            efficiency_score=result.efficiency_score,
            total_cost=result.total_cost,
            conflict_count=result.conflict_count,
            schedule=ScheduleResponse.from_domain(result.schedule),
        )


class ComparisonReportResponse(BaseModel):
    best_algorithm: str
    worst_algorithm: str
    average_efficiency: float
    efficiency_std: float = Field(ge=0.0)
    average_cost: float
    average_conflicts: float


class CompareResponse(BaseModel):
    results: dict[str, ComparisonResultResponse]
    winner: Optional[str]
    report: ComparisonReportResponse


class ValidationResponse(BaseModel):
    is_valid: bool
    errors: list[str]
    warnings: list[str]

    @classmethod
    def from_domain(cls, report: ValidationReport) -> "ValidationResponse":
        return cls(
            is_valid=report.is_valid,
            errors=list(report.errors),
            warnings=list(report.warnings),
        )


class SchedulingRunResponse(BaseModel):
    accepted: bool
    persisted_schedule_id: Optional[str]
    schedule: ScheduleResponse
    validation: ValidationResponse

    @classmethod
    def from_domain(cls, run: SchedulingRun) -> "SchedulingRunResponse":
        return cls(
            accepted=run.accepted,
            persisted_schedule_id=run.persisted_schedule_id,
            schedule=ScheduleResponse.from_domain(run.schedule),
            validation=ValidationResponse.from_domain(run.report),
        )


@router.get("/algorithms", status_code=status.HTTP_200_OK)
def list_algorithms(
    service: ComparisonService = Depends(get_comparison_service),
) -> dict[str, list[str]]:
    return {"algorithms": service.available_algorithms()}


@router.post(
    "/optimize/{algorithm}",
    response_model=ScheduleResponse,
    status_code=status.HTTP_200_OK,
)
def optimize(
    algorithm: str,
    payload: OptimizationRequest,
    service: ComparisonService = Depends(get_comparison_service),
) -> ScheduleResponse:
    """Run a single optimizer over the submitted snapshot."""
    try:
        appointments, resources = payload.to_domain()
        schedule = service.optimize(algorithm, appointments, resources)
        return ScheduleResponse.from_domain(schedule)
    except (UnknownAlgorithmError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.exception("Unexpected optimization failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to optimize schedule",
        ) from exc


@router.post(
    "/compare",
    response_model=CompareResponse,
    status_code=status.HTTP_200_OK,
)
def compare(
    payload: OptimizationRequest,
    service: ComparisonService = Depends(get_comparison_service),
) -> CompareResponse:
    """Run every optimizer on the same snapshot and rank the results."""
    try:
        appointments, resources = payload.to_domain()
        results = service.compare_all(appointments, resources)
        winner = service.select_winner(results)
        report = service.build_report(results)
        return CompareResponse(
            results={
                name: ComparisonResultResponse.from_domain(result)
                for name, result in results.items()
            },
            winner=winner.algorithm_name if winner is not None else None,
            report=ComparisonReportResponse(
                best_algorithm=report.best_algorithm,
                worst_algorithm=report.worst_algorithm,
                average_efficiency=report.average_efficiency,
                efficiency_std=report.efficiency_std,
                average_cost=report.average_cost,
                average_conflicts=report.average_conflicts,
            ),
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.exception("Unexpected comparison failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compare algorithms",
        ) from exc


@router.post(
    "/validate",
    response_model=ValidationResponse,
    status_code=status.HTTP_200_OK,
)
def validate(
    payload: ValidateScheduleRequest,
    service: ComparisonService = Depends(get_comparison_service),
) -> ValidationResponse:
    """Re-check a client-supplied assignment map from scratch."""
    try:
        appointments, resources = payload.to_domain()
        builder = ScheduleBuilder("SUBMITTED", appointments, resources)
        for appointment_id, resource_id in payload.assignments.items():
            builder.assign(appointment_id, resource_id)
        report = service.validate(builder.finalize(), resources)
        return ValidationResponse.from_domain(report)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc


@router.post(
    "/schedules/best",
    response_model=SchedulingRunResponse,
    status_code=status.HTTP_200_OK,
)
def schedule_best(
    service: AppointmentSchedulingService = Depends(get_scheduling_service),
) -> SchedulingRunResponse:
    """Compare all algorithms on stored data and persist the best valid schedule."""
    try:
        return SchedulingRunResponse.from_domain(service.schedule_best())
    except ScheduleRejectedError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except RuntimeError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc


@router.post(
    "/schedules/{algorithm}",
    response_model=SchedulingRunResponse,
    status_code=status.HTTP_200_OK,
)
def schedule_stored(
    algorithm: str,
    service: AppointmentSchedulingService = Depends(get_scheduling_service),
) -> SchedulingRunResponse:
    """Optimize stored appointments with one algorithm; persist it when valid."""
    try:
        run = service.run_stored(algorithm)
    except (UnknownAlgorithmError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except RuntimeError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    if not run.accepted:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": "Schedule failed validation",
                "errors": list(run.report.errors),
            },
        )
    return SchedulingRunResponse.from_domain(run)
