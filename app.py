"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the repository and pickup service, registers routers, and
creates the schema on startup.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from pickup_backend.controllers.guide_controller import router as guide_router
from pickup_backend.controllers.pickup_controller import router as pickup_router
from pickup_backend.repository.data_repository import DataRepository
from pickup_backend.services.pickup_service import PickupDistributionService
from pickup_backend.utils.config import Settings, get_settings
from pickup_backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Services are attached to app.state so controllers resolve them through
    dependencies; tests pass their own Settings to point at a temp database.
    """
    settings = settings or get_settings()

    # --- Repository (SQLite document store) ---
    repository = DataRepository(settings)

    # --- Services ---
    pickup_service = PickupDistributionService(
        repository=repository,
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

    # --- Routers ---
    app.include_router(guide_router)
    app.include_router(pickup_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.pickup_service = pickup_service

    return app


def _startup(app: FastAPI) -> None:
    """Idempotent startup sequence. Safe to re-run on server restarts."""
    repository: DataRepository = app.state.repository
    settings: Settings = app.state.settings

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info(
        "Startup complete | max_passengers_per_bus=%s | strategy=%s",
        settings.max_passengers_per_bus,
        settings.distribution_strategy,
    )


# Module-level app object for uvicorn
app = create_app()
