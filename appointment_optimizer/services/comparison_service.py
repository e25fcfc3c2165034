"""Runs every optimizer on one snapshot, ranks the results and re-validates schedules."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Protocol, Union

import pandas as pd

from appointment_optimizer.domain.constraints import conflicting_pairs, is_eligible
from appointment_optimizer.domain.models import (
    Appointment,
    Resource,
    ensure_consistent_timezones,
)
from appointment_optimizer.domain.schedule import Schedule
from appointment_optimizer.domain.search_config import AlgorithmName, OptimizationOutcome
from appointment_optimizer.services.annealing_service import AnnealingOptimizer
from appointment_optimizer.services.backtracking_service import BacktrackingOptimizer
from appointment_optimizer.services.genetic_service import GeneticOptimizer
from appointment_optimizer.utils.config import Settings, get_settings
from appointment_optimizer.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


class UnknownAlgorithmError(Exception):
    """Raised when a caller requests an algorithm that is not registered."""


class Optimizer(Protocol):
    name: AlgorithmName

    def run(
        self,
        appointments: Iterable[Appointment],
        resources: Iterable[Resource],
        cancel_event: Optional[threading.Event] = None,
    ) -> OptimizationOutcome:
        ...


@dataclass(frozen=True)
class ComparisonResult:
    algorithm_name: str
    schedule: Schedule
    execution_time_ms: float
    iteration_count: int
    efficiency_score: float
    total_cost: float
    conflict_count: int


@dataclass(frozen=True)
class ValidationReport:
    errors: tuple[str, ...]
    warnings: tuple[str, ...]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


@dataclass(frozen=True)
class ComparisonReport:
    best_algorithm: str
    worst_algorithm: str
    average_efficiency: float
    efficiency_std: float
    average_cost: float
    average_conflicts: float
    algorithm_count: int


def validate_schedule(schedule: Schedule, resources: Iterable[Resource]) -> ValidationReport:
    """Re-check a schedule from scratch against the supplied resources.

    Nothing the optimizer reported about itself is trusted. Hard violations
    become errors; unassigned appointments and metric mismatches become warnings.
    """
    resources_by_id = {resource.resource_id: resource for resource in resources}
    appointments_by_id = {
        appointment.appointment_id: appointment for appointment in schedule.appointments
    }
    ensure_consistent_timezones(schedule.appointments, resources_by_id.values())
    errors: list[str] = []
    warnings: list[str] = []

    input_ids = set(appointments_by_id)
    assigned_ids = set(schedule.assignments)
    unassigned_ids = set(schedule.unassigned_appointment_ids)
    overlap = assigned_ids & unassigned_ids
    if overlap:
        errors.append(
            f"Appointments both assigned and unassigned: {', '.join(sorted(overlap))}"
        )
    missing = input_ids - assigned_ids - unassigned_ids
    if missing:
        errors.append(
            f"Appointments missing from schedule: {', '.join(sorted(missing))}"
        )
    if len(unassigned_ids) != len(schedule.unassigned_appointment_ids):
        errors.append("Unassigned appointment list contains duplicates")

    valid_assignments: dict[str, str] = {}
    for appointment_id, resource_id in schedule.assignments.items():
        appointment = appointments_by_id.get(appointment_id)
        if appointment is None:
            errors.append(f"Assignment references unknown appointment {appointment_id}")
            continue
        resource = resources_by_id.get(resource_id)
        if resource is None:
            errors.append(
                f"Appointment {appointment_id} is assigned to unknown resource {resource_id}"
            )
            continue
        valid_assignments[appointment_id] = resource_id
        if is_eligible(appointment, resource):
            continue
        if not resource.is_active:
            errors.append(
                f"Appointment {appointment_id} is assigned to inactive resource {resource_id}"
            )
        if not resource.has_capabilities(appointment.required_capabilities):
            lacking = sorted(appointment.required_capabilities - resource.capabilities)
            errors.append(
                f"Resource {resource_id} lacks capabilities {lacking} "
                f"required by appointment {appointment_id}"
            )
        if resource.is_active and not resource.is_available_for(appointment.start, appointment.end):
            errors.append(
                f"Appointment {appointment_id} falls outside the availability "
                f"window of resource {resource_id}"
            )

    for first_id, second_id in conflicting_pairs(
        schedule.appointments, valid_assignments, resources_by_id
    ):
        first_resource = valid_assignments[first_id]
        second_resource = valid_assignments[second_id]
        if first_resource == second_resource:
            errors.append(
                f"Resource {first_resource} is double-booked by appointments "
                f"{first_id} and {second_id}"
            )
        else:
            errors.append(
                f"Appointments {first_id} and {second_id} overlap on mutually "
                f"exclusive resources {first_resource} and {second_resource}"
            )

    for appointment_id in schedule.unassigned_appointment_ids:
        appointment = appointments_by_id.get(appointment_id)
        if appointment is None:
            errors.append(f"Unassigned list references unknown appointment {appointment_id}")
            continue
        if any(is_eligible(appointment, resource) for resource in resources_by_id.values()):
            warnings.append(f"Appointment {appointment_id} is unassigned")
        else:
            warnings.append(
                f"Appointment {appointment_id} is unassigned: no eligible resource exists"
            )

    recomputed_conflicts = len(conflicting_pairs(schedule.appointments, valid_assignments, resources_by_id))
    if recomputed_conflicts != schedule.conflict_count:
        warnings.append(
            f"Reported conflict count {schedule.conflict_count} differs from "
            f"recomputed {recomputed_conflicts}"
        )

    return ValidationReport(errors=tuple(errors), warnings=tuple(warnings))


def results_frame(results: Mapping[str, ComparisonResult]) -> pd.DataFrame:
    rows = [
        {
            "algorithm": result.algorithm_name,
            "efficiency_score": result.efficiency_score,
            "total_cost": result.total_cost,
            "conflict_count": result.conflict_count,
            "execution_time_ms": result.execution_time_ms,
            "iteration_count": result.iteration_count,
            "assigned": len(result.schedule.assignments),
            "unassigned": len(result.schedule.unassigned_appointment_ids),
        }
        for result in results.values()
    ]
    return pd.DataFrame(
        rows,
        columns=[
            "algorithm",
            "efficiency_score",
            "total_cost",
            "conflict_count",
            "execution_time_ms",
            "iteration_count",
            "assigned",
            "unassigned",
        ],
    )


def build_comparison_report(results: Mapping[str, ComparisonResult]) -> ComparisonReport:
    if not results:
        raise ValueError("At least one comparison result is required")
    frame = results_frame(results)
    efficiency = frame["efficiency_score"].astype(float)
    return ComparisonReport(
        best_algorithm=str(frame.loc[efficiency.idxmax(), "algorithm"]),
        worst_algorithm=str(frame.loc[efficiency.idxmin(), "algorithm"]),
        average_efficiency=float(efficiency.mean()),
        efficiency_std=float(efficiency.std(ddof=0)),
        average_cost=float(frame["total_cost"].mean()),
        average_conflicts=float(frame["conflict_count"].mean()),
        algorithm_count=int(len(frame)),
    )


def resolve_algorithm(name: Union[str, AlgorithmName]) -> AlgorithmName:
    if isinstance(name, AlgorithmName):
        return name
    try:
        return AlgorithmName(str(name).strip().upper())
    except ValueError as exc:
        known = ", ".join(item.value for item in AlgorithmName)
        raise UnknownAlgorithmError(
            f"Unknown algorithm '{name}'. Available algorithms: {known}"
        ) from exc


class ComparisonService:
    """Harness over the registered optimizers.

    Each optimizer receives the same immutable snapshot. With parallel
    execution enabled, one worker thread runs per algorithm and all results
    are joined before the comparison map is returned.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        optimizers: Optional[Mapping[AlgorithmName, Optimizer]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        if optimizers is None:
            optimizers = {
                AlgorithmName.CSP: BacktrackingOptimizer(settings=self._settings),
                AlgorithmName.GA: GeneticOptimizer(settings=self._settings),
                AlgorithmName.SA: AnnealingOptimizer(settings=self._settings),
            }
        self._optimizers: dict[AlgorithmName, Optimizer] = {
            name: optimizers[name] for name in AlgorithmName if name in optimizers
        }

    def available_algorithms(self) -> list[str]:
        return [name.value for name in self._optimizers]

    def get_optimizer(self, name: Union[str, AlgorithmName]) -> Optimizer:
        algorithm = resolve_algorithm(name)
        optimizer = self._optimizers.get(algorithm)
        if optimizer is None:
            raise UnknownAlgorithmError(f"Algorithm '{algorithm.value}' is not registered")
        return optimizer

    def optimize(
        self,
        name: Union[str, AlgorithmName],
        appointments: Iterable[Appointment],
        resources: Iterable[Resource],
        cancel_event: Optional[threading.Event] = None,
    ) -> Schedule:
        return self.run_algorithm(name, appointments, resources, cancel_event).schedule

    def run_algorithm(
        self,
        name: Union[str, AlgorithmName],
        appointments: Iterable[Appointment],
        resources: Iterable[Resource],
        cancel_event: Optional[threading.Event] = None,
    ) -> ComparisonResult:
        optimizer = self.get_optimizer(name)
        started = time.perf_counter()
        outcome = optimizer.run(appointments, resources, cancel_event=cancel_event)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        schedule = outcome.schedule
        result = ComparisonResult(
            algorithm_name=optimizer.name.value,
            schedule=schedule,
            execution_time_ms=elapsed_ms,
            iteration_count=outcome.iteration_count,
            efficiency_score=schedule.efficiency_score,
            total_cost=schedule.total_cost,
            conflict_count=schedule.conflict_count,
        )
        logger.info(
            "Algorithm run completed | %s",
            format_fields(
                algorithm=result.algorithm_name,
                execution_time_ms=result.execution_time_ms,
                iterations=result.iteration_count,
                efficiency=result.efficiency_score,
                conflicts=result.conflict_count,
            ),
        )
        return result

    def compare_all(
        self,
        appointments: Iterable[Appointment],
        resources: Iterable[Resource],
        cancel_event: Optional[threading.Event] = None,
        parallel: Optional[bool] = None,
    ) -> dict[str, ComparisonResult]:
        appointment_snapshot = tuple(appointments)
        resource_snapshot = tuple(resources)
        run_parallel = self._settings.comparison_parallel if parallel is None else parallel
        names = list(self._optimizers)

        if run_parallel and len(names) > 1:
            workers = max(1, min(self._settings.comparison_max_workers, len(names)))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = {
                    name: executor.submit(
                        self.run_algorithm,
                        name,
                        appointment_snapshot,
                        resource_snapshot,
                        cancel_event,
                    )
                    for name in names
                }
                results = {name.value: futures[name].result() for name in names}
        else:
            results = {
                name.value: self.run_algorithm(
                    name, appointment_snapshot, resource_snapshot, cancel_event
                )
                for name in names
            }

        logger.info(
            "Comparison completed | %s",
            format_fields(
                algorithms=",".join(results),
                appointments=len(appointment_snapshot),
                resources=len(resource_snapshot),
                parallel=run_parallel,
            ),
        )
        return results

    @staticmethod
    def select_winner(results: Mapping[str, ComparisonResult]) -> Optional[ComparisonResult]:
        """Highest efficiency wins; ties go to the earlier algorithm in CSP, GA, SA order."""
        winner: Optional[ComparisonResult] = None
        for name in AlgorithmName:
            result = results.get(name.value)
            if result is None:
                continue
            if winner is None or result.efficiency_score > winner.efficiency_score:
                winner = result
        return winner

    def optimize_with_all(
        self,
        appointments: Iterable[Appointment],
        resources: Iterable[Resource],
        cancel_event: Optional[threading.Event] = None,
    ) -> Schedule:
        results = self.compare_all(appointments, resources, cancel_event)
        winner = self.select_winner(results)
        if winner is None:
            raise UnknownAlgorithmError("No algorithms are registered")
        return winner.schedule

    @staticmethod
    def validate(schedule: Schedule, resources: Iterable[Resource]) -> ValidationReport:
        return validate_schedule(schedule, resources)

    @staticmethod
    def build_report(results: Mapping[str, ComparisonResult]) -> ComparisonReport:
        return build_comparison_report(results)
