"""Domain models for pickup bookings, guide manifests and the daily ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

from pickup_backend.domain.constraints import can_add


MANUAL_BOOKING_PREFIX = "manual_"


class LedgerIntegrityError(ValueError):
    """Raised when a ledger mutation would break uniqueness or capacity."""


def _require(data: Mapping[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None:
        raise ValueError(f"booking field '{key}' is required")
    return value


@dataclass(frozen=True)
class Booking:
    booking_id: str
    customer_full_name: str
    pickup_place_name: str
    pickup_time: datetime
    guest_count: int
    phone_number: str = ""
    email: str = ""
    confirmation_code: Optional[str] = None
    is_arrived: bool = False
    is_no_show: bool = False
    paid_on_arrival: bool = False
    is_unpaid: bool = False
    amount_to_pay_on_arrival: Optional[float] = None

    def __post_init__(self) -> None:
        if not isinstance(self.booking_id, str) or not self.booking_id.strip():
            raise ValueError("booking_id must be a non-empty string")
        if not isinstance(self.pickup_time, datetime):
            raise ValueError("pickup_time must be a datetime")
        if self.pickup_time.tzinfo is not None:
            # Pickup times are stored naive; aware values are pinned to UTC.
            object.__setattr__(
                self,
                "pickup_time",
                self.pickup_time.astimezone(timezone.utc).replace(tzinfo=None),
            )
        if isinstance(self.guest_count, bool) or not isinstance(self.guest_count, int):
            raise ValueError("guest_count must be an integer")
        if self.guest_count < 1:
            raise ValueError("guest_count must be >= 1")
        if self.amount_to_pay_on_arrival is not None and self.amount_to_pay_on_arrival < 0:
            raise ValueError("amount_to_pay_on_arrival must be >= 0")

    @property
    def is_manual(self) -> bool:
        return self.booking_id.startswith(MANUAL_BOOKING_PREFIX)

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.booking_id,
            "customerFullName": self.customer_full_name,
            "pickupPlaceName": self.pickup_place_name,
            "pickupTime": self.pickup_time.isoformat(),
            "numberOfGuests": self.guest_count,
            "phoneNumber": self.phone_number,
            "email": self.email,
            "confirmationCode": self.confirmation_code,
            "isArrived": self.is_arrived,
            "isNoShow": self.is_no_show,
            "paidOnArrival": self.paid_on_arrival,
            "isUnpaid": self.is_unpaid,
            "amountToPayOnArrival": self.amount_to_pay_on_arrival,
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "Booking":
        pickup_time = _require(data, "pickupTime")
        if isinstance(pickup_time, str):
            try:
                pickup_time = datetime.fromisoformat(pickup_time)
            except ValueError as exc:
                raise ValueError("pickupTime must be an ISO-8601 timestamp") from exc
        amount = data.get("amountToPayOnArrival")
        return cls(
            booking_id=str(_require(data, "id")),
            customer_full_name=str(_require(data, "customerFullName")),
            pickup_place_name=str(_require(data, "pickupPlaceName")),
            pickup_time=pickup_time,
            guest_count=_require(data, "numberOfGuests"),
            phone_number=str(data.get("phoneNumber") or ""),
            email=str(data.get("email") or ""),
            confirmation_code=data.get("confirmationCode"),
            is_arrived=bool(data.get("isArrived", False)),
            is_no_show=bool(data.get("isNoShow", False)),
            paid_on_arrival=bool(data.get("paidOnArrival", False)),
            is_unpaid=bool(data.get("isUnpaid", False)),
            amount_to_pay_on_arrival=float(amount) if amount is not None else None,
        )


@dataclass(frozen=True)
class Guide:
    guide_id: str
    display_name: str
    bus_capacity: Optional[int] = None

    def __post_init__(self) -> None:
        # "" is reserved as the unassign sentinel.
        if not isinstance(self.guide_id, str) or not self.guide_id.strip():
            raise ValueError("guide_id must be a non-empty string")
        if self.bus_capacity is not None and self.bus_capacity <= 0:
            raise ValueError("bus_capacity must be > 0")


@dataclass(frozen=True)
class GuideManifest:
    guide_id: str
    guide_name: str
    date: str
    bookings: tuple[Booking, ...] = ()

    @property
    def booking_ids(self) -> tuple[str, ...]:
        return tuple(booking.booking_id for booking in self.bookings)

    @property
    def total_passengers(self) -> int:
        return sum(booking.guest_count for booking in self.bookings)


@dataclass(frozen=True)
class PickupStats:
    total_bookings: int
    total_passengers: int
    assigned_bookings: int
    unassigned_bookings: int
    assigned_passengers: int
    unassigned_passengers: int
    no_shows: int
    arrived: int
    passengers_by_guide: dict[str, int] = field(default_factory=dict)


class AssignmentLedger:
    """All manifests plus the unassigned pool for one calendar date.

    Manifests are the only stored assignment state; per-guide totals, the
    booking-to-guide lookup and the unassigned pool are derived on read.
    Mutators validate before touching state, so a rejected call leaves the
    ledger exactly as it was.
    """

    def __init__(
        self,
        date: str,
        bookings: Iterable[Booking] = (),
        manifests: Optional[Mapping[str, Sequence[str]]] = None,
        guide_names: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._date = date
        self._bookings: dict[str, Booking] = {}
        for booking in bookings:
            if booking.booking_id in self._bookings:
                raise LedgerIntegrityError(
                    f"booking {booking.booking_id} appears twice for {date}"
                )
            self._bookings[booking.booking_id] = booking

        self._manifests: dict[str, list[str]] = {}
        self._guide_names: dict[str, str] = dict(guide_names or {})
        seen: set[str] = set()
        for guide_id, booking_ids in (manifests or {}).items():
            for booking_id in booking_ids:
                if booking_id not in self._bookings:
                    raise LedgerIntegrityError(
                        f"manifest {guide_id} references unknown booking {booking_id}"
                    )
                if booking_id in seen:
                    raise LedgerIntegrityError(
                        f"booking {booking_id} is assigned to more than one guide"
                    )
                seen.add(booking_id)
            if booking_ids:
                self._manifests[guide_id] = list(booking_ids)

    @property
    def date(self) -> str:
        return self._date

    def bookings(self) -> list[Booking]:
        return list(self._bookings.values())

    def booking(self, booking_id: str) -> Optional[Booking]:
        return self._bookings.get(booking_id)

    def guide_ids(self) -> list[str]:
        return list(self._manifests)

    def guide_name(self, guide_id: str) -> str:
        return self._guide_names.get(guide_id, guide_id)

    def guide_for(self, booking_id: str) -> Optional[str]:
        for guide_id, booking_ids in self._manifests.items():
            if booking_id in booking_ids:
                return guide_id
        return None

    def manifest_for(self, guide_id: str) -> GuideManifest:
        return GuideManifest(
            guide_id=guide_id,
            guide_name=self.guide_name(guide_id),
            date=self._date,
            bookings=tuple(
                self._bookings[booking_id]
                for booking_id in self._manifests.get(guide_id, [])
            ),
        )

    def manifests(self) -> list[GuideManifest]:
        return [self.manifest_for(guide_id) for guide_id in self._manifests]

    def unassigned(self) -> list[Booking]:
        assigned = {
            booking_id
            for booking_ids in self._manifests.values()
            for booking_id in booking_ids
        }
        return [
            booking
            for booking_id, booking in self._bookings.items()
            if booking_id not in assigned
        ]

    def total_passengers(self, guide_id: str) -> int:
        return self.manifest_for(guide_id).total_passengers

    def stats(self) -> PickupStats:
        manifests = self.manifests()
        unassigned = self.unassigned()
        all_bookings = self.bookings()
        assigned_passengers = sum(manifest.total_passengers for manifest in manifests)
        return PickupStats(
            total_bookings=len(all_bookings),
            total_passengers=sum(booking.guest_count for booking in all_bookings),
            assigned_bookings=len(all_bookings) - len(unassigned),
            unassigned_bookings=len(unassigned),
            assigned_passengers=assigned_passengers,
            unassigned_passengers=sum(booking.guest_count for booking in unassigned),
            no_shows=sum(1 for booking in all_bookings if booking.is_no_show),
            arrived=sum(1 for booking in all_bookings if booking.is_arrived),
            passengers_by_guide={
                manifest.guide_id: manifest.total_passengers for manifest in manifests
            },
        )

    # --- mutators ---

    def insert(self, booking_id: str, guide_id: str, guide_name: str, capacity: int) -> None:
        """Append an unassigned booking to a guide's manifest."""
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise LedgerIntegrityError(f"unknown booking {booking_id}")
        current = self.guide_for(booking_id)
        if current is not None:
            raise LedgerIntegrityError(
                f"booking {booking_id} is already assigned to {current}"
            )
        if not can_add(self.total_passengers(guide_id), booking.guest_count, capacity):
            raise LedgerIntegrityError(
                f"booking {booking_id} would exceed capacity {capacity} for {guide_id}"
            )
        self._manifests.setdefault(guide_id, []).append(booking_id)
        self._guide_names[guide_id] = guide_name

    def remove(self, booking_id: str) -> Optional[str]:
        """Drop a booking from its manifest; returns the guide it left, if any."""
        guide_id = self.guide_for(booking_id)
        if guide_id is None:
            return None
        remaining = [item for item in self._manifests[guide_id] if item != booking_id]
        if remaining:
            self._manifests[guide_id] = remaining
        else:
            # Guides without bookings are not kept in ledger state.
            del self._manifests[guide_id]
        return guide_id

    def add(self, booking: Booking) -> None:
        """Put a new booking into the unassigned pool."""
        if booking.booking_id in self._bookings:
            raise LedgerIntegrityError(
                f"booking {booking.booking_id} already exists for {self._date}"
            )
        self._bookings[booking.booking_id] = booking

    def discard(self, booking_id: str) -> Optional[str]:
        """Delete a booking outright; returns the guide it was assigned to, if any."""
        if booking_id not in self._bookings:
            raise LedgerIntegrityError(f"unknown booking {booking_id}")
        guide_id = self.remove(booking_id)
        del self._bookings[booking_id]
        return guide_id

    def replace_booking(self, booking: Booking) -> None:
        """Swap in an updated record; party size is frozen once in the ledger."""
        existing = self._bookings.get(booking.booking_id)
        if existing is None:
            raise LedgerIntegrityError(f"unknown booking {booking.booking_id}")
        if existing.guest_count != booking.guest_count:
            raise LedgerIntegrityError(
                f"guest count of booking {booking.booking_id} cannot change"
            )
        self._bookings[booking.booking_id] = booking

    def reorder(self, guide_id: str, booking_ids: Sequence[str]) -> None:
        current = self._manifests.get(guide_id, [])
        if sorted(current) != sorted(booking_ids) or len(set(booking_ids)) != len(booking_ids):
            raise LedgerIntegrityError(
                f"new order for {guide_id} must list exactly its current bookings"
            )
        if current:
            self._manifests[guide_id] = list(booking_ids)

    def copy(self) -> "AssignmentLedger":
        return AssignmentLedger(
            date=self._date,
            bookings=self._bookings.values(),
            manifests=self._manifests,
            guide_names=self._guide_names,
        )

    # --- serialization ---

    def to_document(self) -> dict[str, Any]:
        return {
            "date": self._date,
            "bookings": [booking.to_document() for booking in self._bookings.values()],
            "manifests": [
                {
                    "guideId": manifest.guide_id,
                    "guideName": manifest.guide_name,
                    "bookingIds": list(manifest.booking_ids),
                    "totalPassengers": manifest.total_passengers,
                }
                for manifest in self.manifests()
            ],
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "AssignmentLedger":
        manifests = document.get("manifests") or []
        # totalPassengers is written for readers only and recomputed here.
        return cls(
            date=str(document["date"]),
            bookings=[Booking.from_document(item) for item in document.get("bookings") or []],
            manifests={str(item["guideId"]): list(item["bookingIds"]) for item in manifests},
            guide_names={
                str(item["guideId"]): str(item.get("guideName") or item["guideId"])
                for item in manifests
            },
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AssignmentLedger):
            return NotImplemented
        return (
            self._date == other._date
            and list(self._bookings.items()) == list(other._bookings.items())
            and self._manifests == other._manifests
        )

    def __repr__(self) -> str:
        manifests = {key: list(value) for key, value in self._manifests.items()}
        return (
            f"AssignmentLedger(date={self._date!r}, bookings={len(self._bookings)}, "
            f"manifests={manifests!r})"
        )


class AssignmentStatus(str, Enum):
    OK = "ok"
    NOOP = "noop"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    OVERSIZED_BOOKING = "oversized_booking"
    NOT_FOUND = "not_found"
    PERSISTENCE_FAILURE = "persistence_failure"


@dataclass(frozen=True)
class AssignmentOutcome:
    """Result of a single ledger edit; rejections carry the untouched ledger."""

    status: AssignmentStatus
    ledger: Optional[AssignmentLedger]
    booking_id: Optional[str] = None
    guide_id: Optional[str] = None
    guest_count: Optional[int] = None
    remaining_capacity: Optional[int] = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status in (AssignmentStatus.OK, AssignmentStatus.NOOP)


@dataclass(frozen=True)
class CapacityCheck:
    guide_id: str
    additional_guests: int
    current_passengers: int
    capacity: int
    remaining_capacity: int
    allowed: bool
    oversized: bool


@dataclass(frozen=True)
class DistributionResult:
    ledger: AssignmentLedger
    strategy: str
    stranded_booking_ids: tuple[str, ...] = ()
    oversized_booking_ids: tuple[str, ...] = ()

    @property
    def guides_used(self) -> int:
        return len(self.ledger.guide_ids())

    @property
    def fully_assigned(self) -> bool:
        return not self.stranded_booking_ids and not self.oversized_booking_ids
