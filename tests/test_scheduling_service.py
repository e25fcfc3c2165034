from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from appointment_optimizer.domain.models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    Priority,
    Resource,
    ResourceType,
)
from appointment_optimizer.domain.schedule import ScheduleBuilder
from appointment_optimizer.domain.search_config import (
    AlgorithmName,
    OptimizationOutcome,
    StopReason,
)
from appointment_optimizer.repository.data_repository import DataRepository
from appointment_optimizer.services.comparison_service import ComparisonService
from appointment_optimizer.services.scheduling_service import (
    AppointmentSchedulingService,
    ScheduleRejectedError,
)
from appointment_optimizer.utils.config import get_settings


BASE = datetime(2026, 3, 2, 9, 0)


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        genetic_population_size=12,
        genetic_max_generations=15,
        annealing_max_iterations=200,
        random_seed=3,
    )


def _appointment(appointment_id: str, offset: int = 0, minutes: int = 60, **overrides) -> Appointment:
    fields = {
        "appointment_id": appointment_id,
        "title": appointment_id,
        "start": BASE + timedelta(minutes=offset),
        "duration": timedelta(minutes=minutes),
    }
    fields.update(overrides)
    return Appointment(**fields)


def _seed(repository: DataRepository) -> None:
    repository.save_resources(
        [
            Resource(
                resource_id="room-1",
                name="Room 1",
                capabilities=frozenset({"exam"}),
                cost_per_hour=50.0,
            ),
            Resource(
                resource_id="room-2",
                name="Room 2",
                capabilities=frozenset({"exam", "xray"}),
                cost_per_hour=90.0,
            ),
        ]
    )
    repository.save_appointments(
        [
            _appointment("a1", required_capabilities={"exam"}),
            _appointment("a2", offset=30, required_capabilities={"xray"}),
            _appointment("a3", offset=90, required_capabilities={"exam"}),
            _appointment("cancelled", offset=200, status=AppointmentStatus.CANCELLED),
        ]
    )


class _DoubleBookingOptimizer:
    """Returns a schedule that puts every appointment on the first resource."""

    name = AlgorithmName.CSP

    def run(self, appointments, resources, cancel_event=None) -> OptimizationOutcome:
        appointments = list(appointments)
        resources = list(resources)
        builder = ScheduleBuilder(self.name.value, appointments, resources)
        for appointment in appointments:
            builder.assign(appointment.appointment_id, resources[0].resource_id)
        return OptimizationOutcome(
            schedule=builder.finalize(),
            iteration_count=1,
            initial_objective=0.0,
            best_objective=0.0,
            stop_reason=StopReason.COMPLETED,
        )


def test_repository_round_trips_appointments_and_resources(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "round_trip.db")
    repository = DataRepository(settings)
    repository.initialize_database()

    resource = Resource(
        resource_id="scanner",
        name="CT Scanner",
        resource_type=ResourceType.EQUIPMENT,
        capabilities=frozenset({"ct", "contrast"}),
        cost_per_hour=250.0,
        capacity=2,
        is_active=True,
        available_from=BASE,
        available_to=BASE + timedelta(hours=10),
        conflicts=frozenset({"mobile-ct"}),
    )
    appointment = _appointment(
        "scan-1",
        minutes=45,
        appointment_type=AppointmentType.DIAGNOSTIC,
        priority=Priority.URGENT,
        description="Follow-up scan",
        client_id="client-9",
        required_capabilities={"ct"},
        preferred_capabilities={"contrast"},
        is_flexible=True,
        flexibility_window=timedelta(minutes=20),
        importance_score=2.5,
    )
    repository.save_resource(resource)
    repository.save_appointment(appointment)

    assert repository.list_resources() == [resource]
    assert repository.get_appointment("scan-1") == appointment
    assert repository.get_resource("missing") is None
    assert repository.delete_appointment("scan-1")
    assert repository.list_appointments() == []


def test_run_stored_persists_accepted_schedule(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "run_stored.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    _seed(repository)
    service = AppointmentSchedulingService(repository=repository, settings=settings)

    run = service.run_stored("CSP")

    assert run.accepted
    assert run.report.is_valid
    assert "cancelled" not in {item.appointment_id for item in run.schedule.appointments}
    assert repository.count_schedules() == 1
    persisted = repository.get_schedule_assignments(run.persisted_schedule_id)
    assert persisted == {"a1": "room-1", "a2": "room-2", "a3": "room-1"}

    stored = {item.appointment_id: item for item in repository.list_appointments()}
    assert stored["a2"].status is AppointmentStatus.SCHEDULED
    assert stored["a2"].assigned_resource_id == "room-2"
    assert stored["cancelled"].status is AppointmentStatus.CANCELLED


def test_schedule_with_errors_is_not_persisted(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "rejected.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    _seed(repository)
    comparison_service = ComparisonService(
        settings=settings,
        optimizers={AlgorithmName.CSP: _DoubleBookingOptimizer()},
    )
    service = AppointmentSchedulingService(
        repository=repository,
        comparison_service=comparison_service,
        settings=settings,
    )

    run = service.run_stored("CSP")

    assert not run.accepted
    assert run.persisted_schedule_id is None
    assert repository.count_schedules() == 0
    with pytest.raises(ScheduleRejectedError):
        service.schedule_best()


def test_schedule_best_persists_highest_efficiency_valid_schedule(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "best.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    _seed(repository)
    service = AppointmentSchedulingService(repository=repository, settings=settings)

    comparison = service.compare_stored()
    run = service.schedule_best()

    assert sorted(comparison) == ["CSP", "GA", "SA"]
    assert run.accepted
    assert run.report.is_valid
    assert run.schedule.algorithm in comparison
    assert repository.count_schedules() == 1
    assert repository.get_schedule_assignments(run.persisted_schedule_id)
