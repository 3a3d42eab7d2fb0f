"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import Request

from billshare.services.allocation_service import CostSharingService
from billshare.utils.config import get_settings


def get_cost_sharing_service(request: Request) -> CostSharingService:
    service = getattr(request.app.state, "cost_sharing_service", None)
    if service is None:
        service = CostSharingService(settings=get_settings())
        request.app.state.cost_sharing_service = service
    return service
