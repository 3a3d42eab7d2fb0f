"""
app.py: FastAPI application factory.

This is the ASGI application object imported by uvicorn. It wires the cost
sharing service and registers the splitting router.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from fastapi import FastAPI

from billshare.controllers.split_controller import router as split_router
from billshare.services.allocation_service import CostSharingService
from billshare.utils.config import Settings, get_settings
from billshare.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    The service is stored on app.state so controllers resolve it through
    dependencies instead of module globals.
    """
    resolved_settings = settings or get_settings()

    app = FastAPI(
        title=resolved_settings.app_name,
        version=resolved_settings.app_version,
    )
    app.include_router(split_router)
    app.state.cost_sharing_service = CostSharingService(settings=resolved_settings)

    logger.info(
        "Application created | name=%s | version=%s | round_charges=%s",
        resolved_settings.app_name,
        resolved_settings.app_version,
        resolved_settings.round_charges,
    )
    return app


# Module-level app object for uvicorn
app = create_app()
