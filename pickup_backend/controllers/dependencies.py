"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from pickup_backend.services.pickup_service import PickupDistributionService


def get_pickup_service(request: Request) -> PickupDistributionService:
    service = getattr(request.app.state, "pickup_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pickup service is not initialized",
        )
    return service
