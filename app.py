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

from backend.controllers.allocation_controller import router as allocation_router
from backend.controllers.auth_controller import router as auth_router
from backend.repository.data_repository import DataRepository
from backend.services.allocation_service import AllocationRunController, AllocationStateStore
from backend.services.auth_service import AuthService
from backend.services.report_service import ReportService
from backend.services.solver_service import AllocationSolver
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every dependency is created here and exposed through app.state; the
    allocation state holder lives as long as the app, not the module.
    """
    settings = settings or get_settings()

    repository = DataRepository(settings)
    allocation_state = AllocationStateStore()
    solver = AllocationSolver(repository=repository)
    allocation_controller = AllocationRunController(
        repository=repository,
        settings=settings,
        solver=solver,
        state=allocation_state,
    )
    report_service = ReportService(state=allocation_state, settings=settings)
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(auth_router)
    app.include_router(allocation_router)

    app.state.repository = repository
    app.state.allocation_state = allocation_state
    app.state.allocation_controller = allocation_controller
    app.state.report_service = report_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist (and legacy statuses be normalized) before seeding.
      2. Demo rooms and applicants are seeded only into an empty database.
      3. Allocation state starts idle with no last result.
    """
    repository: DataRepository = app.state.repository
    allocation_state: AllocationStateStore = app.state.allocation_state

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo rooms and applicants (skipped if Rooms not empty)")
        repository.seed_demo_data_if_empty()

    allocation_state.reset()
    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()
