"""Pickup manifest orchestration over the document store.

Every edit is one reload -> mutate -> save unit against the date's current
stored ledger. The store offers no transactions or compare-and-swap, so two
admins editing the same day concurrently resolve as last-writer-wins; the
unit only keeps the window between read and write short.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, time
from typing import Callable, Optional, Sequence

from pickup_backend.domain.constraints import DistributionConfig
from pickup_backend.domain.models import (
    MANUAL_BOOKING_PREFIX,
    AssignmentLedger,
    AssignmentOutcome,
    AssignmentStatus,
    Booking,
    CapacityCheck,
    DistributionResult,
    Guide,
    LedgerIntegrityError,
    PickupStats,
)
from pickup_backend.repository.data_repository import DataRepository, PersistenceError
from pickup_backend.services import distribution_service, manifest_service
from pickup_backend.services.distribution_service import (
    DistributionValidationError,
    validate_date,
)
from pickup_backend.utils.config import Settings, get_settings
from pickup_backend.utils.logger import format_event, get_logger


logger = get_logger(__name__)

UNASSIGNED_GUIDE_ID = ""

LedgerEdit = Callable[[AssignmentLedger], AssignmentOutcome]


class PickupServiceError(Exception):
    """Base exception for pickup workflow failures."""


class PickupValidationError(PickupServiceError):
    """Raised when caller input is malformed."""


class LedgerNotFoundError(PickupServiceError):
    """Raised when a date has no stored pickup list."""


class GuideNotFoundError(PickupServiceError):
    """Raised when a roster reference names an unknown guide."""


class GuideCapacityConflictError(PickupServiceError):
    """Raised when a new bus size would leave a stored manifest over capacity."""

    def __init__(self, guide_id: str, date: str, total_passengers: int, capacity: int) -> None:
        super().__init__(
            f"Guide {guide_id} already carries {total_passengers} passengers on {date}; "
            f"a {capacity}-seat bus is too small"
        )
        self.guide_id = guide_id
        self.date = date
        self.total_passengers = total_passengers
        self.capacity = capacity


class PickupDistributionService:
    """Business logic orchestration for daily pickup manifests."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    # --- roster ---

    def register_guide(
        self,
        guide_id: str,
        display_name: str,
        bus_capacity: Optional[int] = None,
    ) -> Guide:
        try:
            guide = Guide(guide_id=guide_id, display_name=display_name, bus_capacity=bus_capacity)
        except ValueError as exc:
            raise PickupValidationError(str(exc)) from exc

        # Shrinking a bus must not strand committed passengers over the limit.
        capacity = self._config_for([guide]).capacity_for(guide.guide_id, guide.bus_capacity)
        busiest = max(
            self._repository.list_ledgers(),
            key=lambda ledger: ledger.total_passengers(guide.guide_id),
            default=None,
        )
        if busiest is not None and busiest.total_passengers(guide.guide_id) > capacity:
            raise GuideCapacityConflictError(
                guide_id=guide.guide_id,
                date=busiest.date,
                total_passengers=busiest.total_passengers(guide.guide_id),
                capacity=capacity,
            )
        return self._repository.upsert_guide(guide)

    def list_guides(self) -> list[Guide]:
        return self._repository.list_guides()

    def _config_for(
        self,
        guides: Sequence[Guide],
        strategy: Optional[str] = None,
    ) -> DistributionConfig:
        return DistributionConfig(
            default_capacity=self._settings.max_passengers_per_bus,
            guide_capacities={
                guide.guide_id: guide.bus_capacity
                for guide in guides
                if guide.bus_capacity is not None
            },
            strategy=strategy or self._settings.distribution_strategy,
            solver_max_time_seconds=self._settings.distribution_solver_max_time_seconds,
            solver_random_seed=self._settings.distribution_solver_random_seed,
        )

    # --- reads ---

    def _validated_date(self, date: str) -> str:
        try:
            validate_date(date)
        except DistributionValidationError as exc:
            raise PickupValidationError(str(exc)) from exc
        return date

    def get_ledger(self, date: str) -> AssignmentLedger:
        """Return the stored ledger, or an empty one for a date nobody has touched."""
        self._validated_date(date)
        ledger = self._repository.load_ledger(date) or AssignmentLedger(date=date)
        capacities = self.capacity_by_guide(ledger)
        for guide_id, capacity in capacities.items():
            total = ledger.total_passengers(guide_id)
            if total > capacity:
                # Possible only after MAX_PASSENGERS_PER_BUS was lowered.
                logger.warning(
                    format_event(
                        "Stored manifest over capacity",
                        date=date,
                        guide_id=guide_id,
                        total_passengers=total,
                        capacity=capacity,
                    )
                )
        return ledger

    def capacity_by_guide(self, ledger: AssignmentLedger) -> dict[str, int]:
        """Current seat limit for every guide holding bookings in ``ledger``."""
        roster = {guide.guide_id: guide for guide in self._repository.list_guides()}
        config = self._config_for(list(roster.values()))
        return {
            guide_id: config.capacity_for(
                guide_id,
                roster[guide_id].bus_capacity if guide_id in roster else None,
            )
            for guide_id in ledger.guide_ids()
        }

    def get_stats(self, date: str) -> PickupStats:
        return self.get_ledger(date).stats()

    def validate_passenger_count(
        self,
        date: str,
        guide_id: str,
        additional_guests: int,
    ) -> CapacityCheck:
        """Same arithmetic as assign_booking, without writing anything."""
        ledger = self.get_ledger(date)
        guide = self._repository.get_guide(guide_id)
        if guide is None:
            raise GuideNotFoundError(f"Guide {guide_id} is not on the roster")
        roster = self._repository.list_guides()
        try:
            return distribution_service.validate_passenger_count(
                ledger,
                guide,
                additional_guests,
                self._config_for(roster),
            )
        except DistributionValidationError as exc:
            raise PickupValidationError(str(exc)) from exc

    # --- bulk writes ---

    def import_bookings(self, date: str, bookings: Sequence[Booking]) -> AssignmentLedger:
        """Merge the booking source's list for ``date`` into the stored ledger."""
        self._validated_date(date)
        current = self._repository.load_ledger(date) or AssignmentLedger(date=date)
        try:
            merged = manifest_service.merge_bookings(current, bookings)
        except LedgerIntegrityError as exc:
            raise PickupValidationError(str(exc)) from exc
        self._repository.save_ledger(merged)
        logger.info(
            format_event(
                "Bookings imported",
                date=date,
                bookings=len(merged.bookings()),
                unassigned=len(merged.unassigned()),
            )
        )
        return merged

    def distribute(
        self,
        date: str,
        *,
        bookings: Optional[Sequence[Booking]] = None,
        guide_ids: Optional[Sequence[str]] = None,
        strategy: Optional[str] = None,
    ) -> DistributionResult:
        """Rebuild the whole day's ledger and store it in a single write.

        ``bookings`` is merged into the stored list first, exactly as
        import_bookings does, so recorded flags and manual bookings survive.
        """
        self._validated_date(date)
        stored = self._repository.load_ledger(date)
        if bookings is None:
            if stored is None:
                raise LedgerNotFoundError(f"No pickup list stored for {date}")
            day_bookings = stored.bookings()
        else:
            try:
                day_bookings = manifest_service.merge_bookings(
                    stored or AssignmentLedger(date=date), bookings
                ).bookings()
            except LedgerIntegrityError as exc:
                raise PickupValidationError(str(exc)) from exc

        roster = self._repository.list_guides()
        guides = self._resolve_roster(roster, guide_ids)
        try:
            result = distribution_service.distribute(
                date=date,
                bookings=day_bookings,
                guides=guides,
                # Whole-roster config so "oversized" matches single-booking edits.
                config=self._config_for(roster, strategy),
            )
        except DistributionValidationError as exc:
            raise PickupValidationError(str(exc)) from exc

        self._repository.save_ledger(result.ledger)
        if not result.fully_assigned:
            logger.warning(
                format_event(
                    "Distribution left bookings unplaced",
                    date=date,
                    stranded=list(result.stranded_booking_ids),
                    oversized=list(result.oversized_booking_ids),
                )
            )
        return result

    def _resolve_roster(
        self,
        roster: list[Guide],
        guide_ids: Optional[Sequence[str]],
    ) -> list[Guide]:
        if guide_ids is None:
            return roster
        by_id = {guide.guide_id: guide for guide in roster}
        missing = [guide_id for guide_id in guide_ids if guide_id not in by_id]
        if missing:
            raise GuideNotFoundError(f"Unknown guide ids: {', '.join(missing)}")
        if len(set(guide_ids)) != len(guide_ids):
            raise PickupValidationError("guide_ids must not repeat")
        return [by_id[guide_id] for guide_id in guide_ids]

    # --- single-booking edits ---

    def _commit(self, date: str, edit: LedgerEdit, operation: str) -> AssignmentOutcome:
        """Run one reload -> edit -> save unit against the stored ledger."""
        self._validated_date(date)
        try:
            ledger = self._repository.load_ledger(date) or AssignmentLedger(date=date)
        except PersistenceError as exc:
            logger.warning(format_event(f"{operation} aborted on load", date=date, error=exc))
            return AssignmentOutcome(
                status=AssignmentStatus.PERSISTENCE_FAILURE,
                ledger=None,
                message=str(exc),
            )

        outcome = edit(ledger)
        if outcome.status is not AssignmentStatus.OK:
            if not outcome.succeeded:
                logger.info(
                    format_event(
                        f"{operation} rejected",
                        date=date,
                        booking_id=outcome.booking_id,
                        guide_id=outcome.guide_id,
                        status=outcome.status.value,
                    )
                )
            return outcome

        try:
            self._repository.save_ledger(outcome.ledger)
        except PersistenceError as exc:
            logger.warning(format_event(f"{operation} not saved", date=date, error=exc))
            return replace(
                outcome,
                status=AssignmentStatus.PERSISTENCE_FAILURE,
                ledger=ledger,
                message=str(exc),
            )

        logger.info(
            format_event(
                f"{operation} committed",
                date=date,
                booking_id=outcome.booking_id,
                guide_id=outcome.guide_id,
            )
        )
        return outcome

    def _lookup_guide(self, guide_id: Optional[str]) -> tuple[Optional[Guide], bool]:
        """Resolve a destination guide; the empty id means the unassigned pool."""
        if not guide_id:
            return None, True
        guide = self._repository.get_guide(guide_id)
        return guide, guide is not None

    def _guide_not_found(self, booking_id: str, guide_id: str) -> AssignmentOutcome:
        return AssignmentOutcome(
            status=AssignmentStatus.NOT_FOUND,
            ledger=None,
            booking_id=booking_id,
            guide_id=guide_id,
            message=f"Guide {guide_id} is not on the roster",
        )

    def assign_booking(self, date: str, booking_id: str, guide_id: str) -> AssignmentOutcome:
        """Assign to ``guide_id``; ``""`` unassigns."""
        try:
            guide, found = self._lookup_guide(guide_id)
            roster = self._repository.list_guides()
        except PersistenceError as exc:
            return AssignmentOutcome(
                status=AssignmentStatus.PERSISTENCE_FAILURE,
                ledger=None,
                booking_id=booking_id,
                message=str(exc),
            )
        if not found:
            return self._guide_not_found(booking_id, guide_id)
        config = self._config_for(roster)
        return self._commit(
            date,
            lambda ledger: distribution_service.assign_booking(ledger, booking_id, guide, config),
            "Assign booking",
        )

    def unassign_booking(self, date: str, booking_id: str) -> AssignmentOutcome:
        return self.assign_booking(date, booking_id, UNASSIGNED_GUIDE_ID)

    def move_booking(
        self,
        date: str,
        booking_id: str,
        from_guide_id: Optional[str],
        to_guide_id: str,
    ) -> AssignmentOutcome:
        try:
            guide, found = self._lookup_guide(to_guide_id)
            roster = self._repository.list_guides()
        except PersistenceError as exc:
            return AssignmentOutcome(
                status=AssignmentStatus.PERSISTENCE_FAILURE,
                ledger=None,
                booking_id=booking_id,
                message=str(exc),
            )
        if not found:
            return self._guide_not_found(booking_id, to_guide_id)
        config = self._config_for(roster)
        return self._commit(
            date,
            lambda ledger: distribution_service.move_booking(
                ledger, booking_id, from_guide_id, guide, config
            ),
            "Move booking",
        )

    def update_booking_status(
        self,
        date: str,
        booking_id: str,
        *,
        is_arrived: Optional[bool] = None,
        is_no_show: Optional[bool] = None,
        paid_on_arrival: Optional[bool] = None,
    ) -> AssignmentOutcome:
        return self._commit(
            date,
            lambda ledger: manifest_service.update_booking_status(
                ledger,
                booking_id,
                is_arrived=is_arrived,
                is_no_show=is_no_show,
                paid_on_arrival=paid_on_arrival,
            ),
            "Update booking status",
        )

    def update_pickup_place(
        self,
        date: str,
        booking_id: str,
        pickup_place_name: str,
    ) -> AssignmentOutcome:
        if not pickup_place_name.strip():
            raise PickupValidationError("pickup_place_name must be non-empty")
        return self._commit(
            date,
            lambda ledger: manifest_service.update_pickup_place(
                ledger, booking_id, pickup_place_name
            ),
            "Update pickup place",
        )

    def reorder_manifest(
        self,
        date: str,
        guide_id: str,
        booking_ids: Sequence[str],
    ) -> AssignmentOutcome:
        try:
            return self._commit(
                date,
                lambda ledger: manifest_service.reorder_manifest(ledger, guide_id, booking_ids),
                "Reorder manifest",
            )
        except LedgerIntegrityError as exc:
            raise PickupValidationError(str(exc)) from exc

    def reset_manifest_order(self, date: str, guide_id: str) -> AssignmentOutcome:
        return self._commit(
            date,
            lambda ledger: manifest_service.reset_manifest_order(ledger, guide_id),
            "Reset manifest order",
        )

    # --- manual bookings ---

    def create_manual_booking(
        self,
        date: str,
        *,
        customer_full_name: str,
        pickup_place_name: str,
        guest_count: int = 1,
        pickup_time: Optional[datetime] = None,
        phone_number: str = "",
        email: str = "",
    ) -> AssignmentOutcome:
        """Add a walk-in or phone booking; without a time it is picked up at 09:00."""
        self._validated_date(date)
        if not customer_full_name.strip() or not pickup_place_name.strip():
            raise PickupValidationError("customer_full_name and pickup_place_name must be non-empty")
        day = datetime.strptime(date, "%Y-%m-%d").date()
        try:
            booking = Booking(
                booking_id=f"{MANUAL_BOOKING_PREFIX}{uuid.uuid4().hex}",
                customer_full_name=customer_full_name.strip(),
                pickup_place_name=pickup_place_name.strip(),
                pickup_time=pickup_time or datetime.combine(day, time(9, 0)),
                guest_count=guest_count,
                phone_number=phone_number,
                email=email,
            )
        except ValueError as exc:
            raise PickupValidationError(str(exc)) from exc
        return self._commit(
            date,
            lambda ledger: manifest_service.add_booking(ledger, booking),
            "Create manual booking",
        )

    def delete_booking(self, date: str, booking_id: str) -> AssignmentOutcome:
        return self._commit(
            date,
            lambda ledger: manifest_service.delete_booking(ledger, booking_id),
            "Delete booking",
        )
