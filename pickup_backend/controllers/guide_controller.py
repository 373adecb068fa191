"""HTTP controller layer for the guide roster."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from pickup_backend.controllers.dependencies import get_pickup_service
from pickup_backend.domain.models import Guide
from pickup_backend.repository.data_repository import PersistenceError
from pickup_backend.services.pickup_service import (
    GuideCapacityConflictError,
    PickupDistributionService,
    PickupValidationError,
)
from pickup_backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["guides"])


class GuideRequest(BaseModel):
    guide_id: str = Field(min_length=1)
    display_name: str = Field(min_length=1)
    bus_capacity: int | None = Field(default=None, gt=0)

    @field_validator("guide_id", "display_name")
    @classmethod
    def strip_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class GuideResponse(BaseModel):
    guide_id: str
    display_name: str
    bus_capacity: int | None = None

    @classmethod
    def from_domain(cls, guide: Guide) -> "GuideResponse":
        return cls(
            guide_id=guide.guide_id,
            display_name=guide.display_name,
            bus_capacity=guide.bus_capacity,
        )


@router.post(
    "/guides",
    response_model=GuideResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_guide(
    payload: GuideRequest,
    service: PickupDistributionService = Depends(get_pickup_service),
) -> GuideResponse:
    """Add a guide to the roster, or update name and bus size of an existing one."""
    try:
        guide = service.register_guide(
            guide_id=payload.guide_id,
            display_name=payload.display_name,
            bus_capacity=payload.bus_capacity,
        )
        return GuideResponse.from_domain(guide)
    except PickupValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except GuideCapacityConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "status": "capacity_exceeded",
                "message": str(exc),
                "guide_id": exc.guide_id,
                "date": exc.date,
                "total_passengers": exc.total_passengers,
                "capacity": exc.capacity,
            },
        ) from exc
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc


@router.get(
    "/guides",
    response_model=list[GuideResponse],
    status_code=status.HTTP_200_OK,
)
async def list_guides(
    service: PickupDistributionService = Depends(get_pickup_service),
) -> list[GuideResponse]:
    try:
        return [GuideResponse.from_domain(guide) for guide in service.list_guides()]
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
