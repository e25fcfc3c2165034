"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from appointment_optimizer.services.comparison_service import ComparisonService
from appointment_optimizer.services.scheduling_service import AppointmentSchedulingService
from appointment_optimizer.utils.config import get_settings


def get_comparison_service(request: Request) -> ComparisonService:
    service = getattr(request.app.state, "comparison_service", None)
    if service is None:
        service = ComparisonService(settings=get_settings())
        request.app.state.comparison_service = service
    return service


def get_scheduling_service(request: Request) -> AppointmentSchedulingService:
    service = getattr(request.app.state, "scheduling_service", None)
    if service is None:
        repository = getattr(request.app.state, "repository", None)
        if repository is not None:
            service = AppointmentSchedulingService(
                repository=repository,
                comparison_service=get_comparison_service(request),
                settings=get_settings(),
            )
            request.app.state.scheduling_service = service
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduling service is not initialized",
        )
    return service
