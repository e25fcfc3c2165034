"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the repository and services, registers routers, and runs startup
initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from appointment_optimizer.controllers.optimization_controller import router as optimization_router
from appointment_optimizer.repository.data_repository import DataRepository
from appointment_optimizer.services.comparison_service import ComparisonService
from appointment_optimizer.services.scheduling_service import AppointmentSchedulingService
from appointment_optimizer.utils.config import Settings, get_settings
from appointment_optimizer.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service is created here and exposed through app.state, so each
    dependency is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Repository (SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services (optimizers never touch the repository) ---
    comparison_service = ComparisonService(settings=settings)
    scheduling_service = AppointmentSchedulingService(
        repository=repository,
        comparison_service=comparison_service,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(optimization_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.comparison_service = comparison_service
    app.state.scheduling_service = scheduling_service

    return app


def _startup(app: FastAPI) -> None:
    """Idempotent startup sequence. Safe to re-run on server restarts."""
    repository: DataRepository = app.state.repository
    comparison_service: ComparisonService = app.state.comparison_service

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info(
        "Startup complete | algorithms=%s",
        ",".join(comparison_service.available_algorithms()),
    )


# Module-level app object for uvicorn
app = create_app()
