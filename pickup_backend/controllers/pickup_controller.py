"""HTTP controller layer for daily pickup manifests."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator

from pickup_backend.controllers.dependencies import get_pickup_service
from pickup_backend.domain.models import (
    AssignmentLedger,
    AssignmentOutcome,
    AssignmentStatus,
    Booking,
    GuideManifest,
    PickupStats,
)
from pickup_backend.repository.data_repository import PersistenceError
from pickup_backend.services.pickup_service import (
    GuideNotFoundError,
    LedgerNotFoundError,
    PickupDistributionService,
    PickupValidationError,
)
from pickup_backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/pickups", tags=["pickups"])


class BookingPayload(BaseModel):
    """Already-parsed booking as delivered by the booking source."""

    id: str = Field(min_length=1)
    customer_full_name: str
    pickup_place_name: str
    pickup_time: datetime
    guest_count: int = Field(ge=1)
    phone_number: str = ""
    email: str = ""
    confirmation_code: str | None = None
    is_arrived: bool = False
    is_no_show: bool = False
    paid_on_arrival: bool = False
    is_unpaid: bool = False
    amount_to_pay_on_arrival: float | None = Field(default=None, ge=0.0)

    def to_domain(self) -> Booking:
        return Booking(
            booking_id=self.id,
            customer_full_name=self.customer_full_name,
            pickup_place_name=self.pickup_place_name,
            pickup_time=self.pickup_time,
            guest_count=self.guest_count,
            phone_number=self.phone_number,
            email=self.email,
            confirmation_code=self.confirmation_code,
            is_arrived=self.is_arrived,
            is_no_show=self.is_no_show,
            paid_on_arrival=self.paid_on_arrival,
            is_unpaid=self.is_unpaid,
            amount_to_pay_on_arrival=self.amount_to_pay_on_arrival,
        )

    @classmethod
    def from_domain(cls, booking: Booking) -> "BookingPayload":
        return cls(
            id=booking.booking_id,
            customer_full_name=booking.customer_full_name,
            pickup_place_name=booking.pickup_place_name,
            pickup_time=booking.pickup_time,
            guest_count=booking.guest_count,
            phone_number=booking.phone_number,
            email=booking.email,
            confirmation_code=booking.confirmation_code,
            is_arrived=booking.is_arrived,
            is_no_show=booking.is_no_show,
            paid_on_arrival=booking.paid_on_arrival,
            is_unpaid=booking.is_unpaid,
            amount_to_pay_on_arrival=booking.amount_to_pay_on_arrival,
        )


class ImportBookingsRequest(BaseModel):
    bookings: list[BookingPayload]


class ManifestResponse(BaseModel):
    guide_id: str
    guide_name: str
    total_passengers: int = Field(ge=0)
    capacity: int | None = None
    over_capacity: bool = False
    bookings: list[BookingPayload]

    @classmethod
    def from_domain(
        cls,
        manifest: GuideManifest,
        capacity: int | None = None,
    ) -> "ManifestResponse":
        return cls(
            guide_id=manifest.guide_id,
            guide_name=manifest.guide_name,
            total_passengers=manifest.total_passengers,
            capacity=capacity,
            over_capacity=capacity is not None and manifest.total_passengers > capacity,
            bookings=[BookingPayload.from_domain(item) for item in manifest.bookings],
        )


class StatsResponse(BaseModel):
    total_bookings: int = Field(ge=0)
    total_passengers: int = Field(ge=0)
    assigned_bookings: int = Field(ge=0)
    unassigned_bookings: int = Field(ge=0)
    assigned_passengers: int = Field(ge=0)
    unassigned_passengers: int = Field(ge=0)
    no_shows: int = Field(ge=0)
    arrived: int = Field(ge=0)
    passengers_by_guide: dict[str, int]

    @classmethod
    def from_domain(cls, stats: PickupStats) -> "StatsResponse":
        return cls(
            total_bookings=stats.total_bookings,
            total_passengers=stats.total_passengers,
            assigned_bookings=stats.assigned_bookings,
            unassigned_bookings=stats.unassigned_bookings,
            assigned_passengers=stats.assigned_passengers,
            unassigned_passengers=stats.unassigned_passengers,
            no_shows=stats.no_shows,
            arrived=stats.arrived,
            passengers_by_guide=dict(stats.passengers_by_guide),
        )


class LedgerResponse(BaseModel):
    date: str
    manifests: list[ManifestResponse]
    unassigned: list[BookingPayload]
    stats: StatsResponse

    @classmethod
    def from_domain(
        cls,
        ledger: AssignmentLedger,
        capacities: dict[str, int] | None = None,
    ) -> "LedgerResponse":
        capacities = capacities or {}
        return cls(
            date=ledger.date,
            manifests=[
                ManifestResponse.from_domain(item, capacities.get(item.guide_id))
                for item in ledger.manifests()
            ],
            unassigned=[BookingPayload.from_domain(item) for item in ledger.unassigned()],
            stats=StatsResponse.from_domain(ledger.stats()),
        )


class DistributeRequest(BaseModel):
    bookings: list[BookingPayload] | None = None
    guide_ids: list[str] | None = None
    strategy: Literal["first_fit_decreasing", "cp_sat"] | None = None

    @field_validator("guide_ids")
    @classmethod
    def validate_guide_ids(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        if len(set(value)) != len(value):
            raise ValueError("guide_ids must not repeat")
        return value


class DistributeResponse(BaseModel):
    strategy: str
    guides_used: int = Field(ge=0)
    fully_assigned: bool
    stranded_booking_ids: list[str]
    oversized_booking_ids: list[str]
    ledger: LedgerResponse


class AssignRequest(BaseModel):
    booking_id: str = Field(min_length=1)
    guide_id: str = Field(default="", description="Empty string unassigns the booking")


class MoveRequest(BaseModel):
    booking_id: str = Field(min_length=1)
    from_guide_id: str | None = None
    to_guide_id: str = ""


class BookingStatusRequest(BaseModel):
    is_arrived: bool | None = None
    is_no_show: bool | None = None
    paid_on_arrival: bool | None = None

    @model_validator(mode="after")
    def require_one_flag(self) -> "BookingStatusRequest":
        if self.is_arrived is None and self.is_no_show is None and self.paid_on_arrival is None:
            raise ValueError("at least one status flag must be provided")
        return self


class ManualBookingRequest(BaseModel):
    customer_full_name: str = Field(min_length=1)
    pickup_place_name: str = Field(min_length=1)
    guest_count: int = Field(default=1, ge=1)
    pickup_time: datetime | None = None
    phone_number: str = ""
    email: str = ""

    @field_validator("customer_full_name", "pickup_place_name")
    @classmethod
    def strip_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class PickupPlaceRequest(BaseModel):
    pickup_place_name: str = Field(min_length=1)


class ReorderRequest(BaseModel):
    booking_ids: list[str]


class OutcomeResponse(BaseModel):
    status: str
    booking_id: str | None = None
    guide_id: str | None = None
    guest_count: int | None = None
    remaining_capacity: int | None = None
    message: str = ""
    ledger: LedgerResponse | None = None


class CapacityCheckResponse(BaseModel):
    guide_id: str
    additional_guests: int = Field(ge=0)
    current_passengers: int = Field(ge=0)
    capacity: int = Field(gt=0)
    remaining_capacity: int = Field(ge=0)
    allowed: bool
    oversized: bool


_OUTCOME_HTTP_STATUS = {
    AssignmentStatus.CAPACITY_EXCEEDED: status.HTTP_409_CONFLICT,
    AssignmentStatus.OVERSIZED_BOOKING: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AssignmentStatus.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AssignmentStatus.PERSISTENCE_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _outcome_response(outcome: AssignmentOutcome) -> OutcomeResponse:
    """Return the body for a successful edit, or raise the matching HTTP error."""
    if not outcome.succeeded:
        detail: dict[str, Any] = {
            "status": outcome.status.value,
            "message": outcome.message,
            "booking_id": outcome.booking_id,
            "guide_id": outcome.guide_id,
            "guest_count": outcome.guest_count,
            "remaining_capacity": outcome.remaining_capacity,
            "retryable": outcome.status is AssignmentStatus.PERSISTENCE_FAILURE,
        }
        raise HTTPException(status_code=_OUTCOME_HTTP_STATUS[outcome.status], detail=detail)
    return OutcomeResponse(
        status=outcome.status.value,
        booking_id=outcome.booking_id,
        guide_id=outcome.guide_id,
        guest_count=outcome.guest_count,
        remaining_capacity=outcome.remaining_capacity,
        message=outcome.message,
        ledger=LedgerResponse.from_domain(outcome.ledger) if outcome.ledger else None,
    )


def _service_error(exc: Exception) -> HTTPException:
    if isinstance(exc, PickupValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, (LedgerNotFoundError, GuideNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, PersistenceError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": str(exc), "retryable": True},
        )
    logger.exception("Unexpected pickup workflow failure")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Pickup operation failed",
    )


@router.get("/{pickup_date}", response_model=LedgerResponse, status_code=status.HTTP_200_OK)
async def get_pickup_list(
    pickup_date: date,
    service: PickupDistributionService = Depends(get_pickup_service),
) -> LedgerResponse:
    """Current manifests, unassigned pool and totals for one day."""
    try:
        ledger = service.get_ledger(pickup_date.isoformat())
        return LedgerResponse.from_domain(ledger, service.capacity_by_guide(ledger))
    except Exception as exc:
        raise _service_error(exc) from exc


@router.put(
    "/{pickup_date}/bookings",
    response_model=LedgerResponse,
    status_code=status.HTTP_200_OK,
)
async def import_bookings(
    pickup_date: date,
    payload: ImportBookingsRequest,
    service: PickupDistributionService = Depends(get_pickup_service),
) -> LedgerResponse:
    try:
        ledger = service.import_bookings(
            pickup_date.isoformat(),
            [item.to_domain() for item in payload.bookings],
        )
        return LedgerResponse.from_domain(ledger)
    except Exception as exc:
        raise _service_error(exc) from exc


@router.post(
    "/{pickup_date}/distribute",
    response_model=DistributeResponse,
    status_code=status.HTTP_200_OK,
)
async def distribute_bookings(
    pickup_date: date,
    payload: DistributeRequest,
    service: PickupDistributionService = Depends(get_pickup_service),
) -> DistributeResponse:
    """Auto-distribute the whole day; unplaced bookings are listed, not an error."""
    try:
        result = service.distribute(
            pickup_date.isoformat(),
            bookings=(
                [item.to_domain() for item in payload.bookings]
                if payload.bookings is not None
                else None
            ),
            guide_ids=payload.guide_ids,
            strategy=payload.strategy,
        )
    except Exception as exc:
        raise _service_error(exc) from exc
    return DistributeResponse(
        strategy=result.strategy,
        guides_used=result.guides_used,
        fully_assigned=result.fully_assigned,
        stranded_booking_ids=list(result.stranded_booking_ids),
        oversized_booking_ids=list(result.oversized_booking_ids),
        ledger=LedgerResponse.from_domain(result.ledger),
    )


@router.post("/{pickup_date}/assign", response_model=OutcomeResponse)
async def assign_booking(
    pickup_date: date,
    payload: AssignRequest,
    service: PickupDistributionService = Depends(get_pickup_service),
) -> OutcomeResponse:
    try:
        outcome = service.assign_booking(
            pickup_date.isoformat(),
            payload.booking_id,
            payload.guide_id,
        )
    except Exception as exc:
        raise _service_error(exc) from exc
    return _outcome_response(outcome)


@router.post("/{pickup_date}/move", response_model=OutcomeResponse)
async def move_booking(
    pickup_date: date,
    payload: MoveRequest,
    service: PickupDistributionService = Depends(get_pickup_service),
) -> OutcomeResponse:
    try:
        outcome = service.move_booking(
            pickup_date.isoformat(),
            payload.booking_id,
            payload.from_guide_id,
            payload.to_guide_id,
        )
    except Exception as exc:
        raise _service_error(exc) from exc
    return _outcome_response(outcome)


@router.get(
    "/{pickup_date}/guides/{guide_id}/capacity",
    response_model=CapacityCheckResponse,
)
async def check_capacity(
    pickup_date: date,
    guide_id: str,
    additional_guests: int = Query(ge=0),
    service: PickupDistributionService = Depends(get_pickup_service),
) -> CapacityCheckResponse:
    """Read-only seat check used by pickers before attempting an assignment."""
    try:
        check = service.validate_passenger_count(
            pickup_date.isoformat(),
            guide_id,
            additional_guests,
        )
    except Exception as exc:
        raise _service_error(exc) from exc
    return CapacityCheckResponse(
        guide_id=check.guide_id,
        additional_guests=check.additional_guests,
        current_passengers=check.current_passengers,
        capacity=check.capacity,
        remaining_capacity=check.remaining_capacity,
        allowed=check.allowed,
        oversized=check.oversized,
    )


@router.patch("/{pickup_date}/bookings/{booking_id}/status", response_model=OutcomeResponse)
async def update_booking_status(
    pickup_date: date,
    booking_id: str,
    payload: BookingStatusRequest,
    service: PickupDistributionService = Depends(get_pickup_service),
) -> OutcomeResponse:
    try:
        outcome = service.update_booking_status(
            pickup_date.isoformat(),
            booking_id,
            is_arrived=payload.is_arrived,
            is_no_show=payload.is_no_show,
            paid_on_arrival=payload.paid_on_arrival,
        )
    except Exception as exc:
        raise _service_error(exc) from exc
    return _outcome_response(outcome)


@router.patch(
    "/{pickup_date}/bookings/{booking_id}/pickup-place",
    response_model=OutcomeResponse,
)
async def update_pickup_place(
    pickup_date: date,
    booking_id: str,
    payload: PickupPlaceRequest,
    service: PickupDistributionService = Depends(get_pickup_service),
) -> OutcomeResponse:
    try:
        outcome = service.update_pickup_place(
            pickup_date.isoformat(),
            booking_id,
            payload.pickup_place_name,
        )
    except Exception as exc:
        raise _service_error(exc) from exc
    return _outcome_response(outcome)


@router.post(
    "/{pickup_date}/bookings",
    response_model=OutcomeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_manual_booking(
    pickup_date: date,
    payload: ManualBookingRequest,
    service: PickupDistributionService = Depends(get_pickup_service),
) -> OutcomeResponse:
    """Add a booking the booking source does not know about; it starts unassigned."""
    try:
        outcome = service.create_manual_booking(
            pickup_date.isoformat(),
            customer_full_name=payload.customer_full_name,
            pickup_place_name=payload.pickup_place_name,
            guest_count=payload.guest_count,
            pickup_time=payload.pickup_time,
            phone_number=payload.phone_number,
            email=payload.email,
        )
    except Exception as exc:
        raise _service_error(exc) from exc
    return _outcome_response(outcome)


@router.delete("/{pickup_date}/bookings/{booking_id}", response_model=OutcomeResponse)
async def delete_booking(
    pickup_date: date,
    booking_id: str,
    service: PickupDistributionService = Depends(get_pickup_service),
) -> OutcomeResponse:
    try:
        outcome = service.delete_booking(pickup_date.isoformat(), booking_id)
    except Exception as exc:
        raise _service_error(exc) from exc
    return _outcome_response(outcome)


@router.put("/{pickup_date}/guides/{guide_id}/order", response_model=OutcomeResponse)
async def reorder_manifest(
    pickup_date: date,
    guide_id: str,
    payload: ReorderRequest,
    service: PickupDistributionService = Depends(get_pickup_service),
) -> OutcomeResponse:
    try:
        outcome = service.reorder_manifest(pickup_date.isoformat(), guide_id, payload.booking_ids)
    except Exception as exc:
        raise _service_error(exc) from exc
    return _outcome_response(outcome)


@router.delete("/{pickup_date}/guides/{guide_id}/order", response_model=OutcomeResponse)
async def reset_manifest_order(
    pickup_date: date,
    guide_id: str,
    service: PickupDistributionService = Depends(get_pickup_service),
) -> OutcomeResponse:
    """Drop a guide's custom pickup order in favour of alphabetical by place."""
    try:
        outcome = service.reset_manifest_order(pickup_date.isoformat(), guide_id)
    except Exception as exc:
        raise _service_error(exc) from exc
    return _outcome_response(outcome)
