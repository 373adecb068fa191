"""Ledger edits that never change who owns a booking."""

from __future__ import annotations

from dataclasses import replace
from typing import Optional, Sequence

from pickup_backend.domain.models import (
    AssignmentLedger,
    AssignmentOutcome,
    AssignmentStatus,
    Booking,
    LedgerIntegrityError,
)


def _booking_not_found(ledger: AssignmentLedger, booking_id: str) -> AssignmentOutcome:
    return AssignmentOutcome(
        status=AssignmentStatus.NOT_FOUND,
        ledger=ledger,
        booking_id=booking_id,
        message=f"Booking {booking_id} is not on the {ledger.date} pickup list",
    )


def _apply_booking_update(
    ledger: AssignmentLedger,
    booking_id: str,
    updated: Booking,
) -> AssignmentOutcome:
    current = ledger.booking(booking_id)
    if updated == current:
        return AssignmentOutcome(
            status=AssignmentStatus.NOOP,
            ledger=ledger,
            booking_id=booking_id,
            guide_id=ledger.guide_for(booking_id),
        )
    working = ledger.copy()
    working.replace_booking(updated)
    return AssignmentOutcome(
        status=AssignmentStatus.OK,
        ledger=working,
        booking_id=booking_id,
        guide_id=working.guide_for(booking_id),
        guest_count=updated.guest_count,
    )


def update_booking_status(
    ledger: AssignmentLedger,
    booking_id: str,
    *,
    is_arrived: Optional[bool] = None,
    is_no_show: Optional[bool] = None,
    paid_on_arrival: Optional[bool] = None,
) -> AssignmentOutcome:
    """Set arrival/no-show/payment flags; ``None`` leaves a flag untouched."""
    booking = ledger.booking(booking_id)
    if booking is None:
        return _booking_not_found(ledger, booking_id)
    updated = replace(
        booking,
        is_arrived=booking.is_arrived if is_arrived is None else is_arrived,
        is_no_show=booking.is_no_show if is_no_show is None else is_no_show,
        paid_on_arrival=(
            booking.paid_on_arrival if paid_on_arrival is None else paid_on_arrival
        ),
    )
    return _apply_booking_update(ledger, booking_id, updated)


def update_pickup_place(
    ledger: AssignmentLedger,
    booking_id: str,
    pickup_place_name: str,
) -> AssignmentOutcome:
    booking = ledger.booking(booking_id)
    if booking is None:
        return _booking_not_found(ledger, booking_id)
    return _apply_booking_update(
        ledger,
        booking_id,
        replace(booking, pickup_place_name=pickup_place_name),
    )


def reorder_manifest(
    ledger: AssignmentLedger,
    guide_id: str,
    booking_ids: Sequence[str],
) -> AssignmentOutcome:
    """Apply a guide's own pickup sequence; it must be a permutation."""
    if not ledger.manifest_for(guide_id).bookings:
        return AssignmentOutcome(
            status=AssignmentStatus.NOT_FOUND,
            ledger=ledger,
            guide_id=guide_id,
            message=f"Guide {guide_id} has no pickups on {ledger.date}",
        )
    working = ledger.copy()
    working.reorder(guide_id, list(booking_ids))
    if working == ledger:
        return AssignmentOutcome(status=AssignmentStatus.NOOP, ledger=ledger, guide_id=guide_id)
    return AssignmentOutcome(status=AssignmentStatus.OK, ledger=working, guide_id=guide_id)


def reset_manifest_order(ledger: AssignmentLedger, guide_id: str) -> AssignmentOutcome:
    """Restore alphabetical order by pickup place, then pickup time."""
    manifest = ledger.manifest_for(guide_id)
    ordered = sorted(
        manifest.bookings,
        key=lambda booking: (booking.pickup_place_name.casefold(), booking.pickup_time),
    )
    return reorder_manifest(ledger, guide_id, [booking.booking_id for booking in ordered])


def add_booking(ledger: AssignmentLedger, booking: Booking) -> AssignmentOutcome:
    """Add a booking the source does not know about; it starts unassigned."""
    working = ledger.copy()
    working.add(booking)
    return AssignmentOutcome(
        status=AssignmentStatus.OK,
        ledger=working,
        booking_id=booking.booking_id,
        guest_count=booking.guest_count,
    )


def delete_booking(ledger: AssignmentLedger, booking_id: str) -> AssignmentOutcome:
    """Drop a booking from the day entirely, freeing its seats."""
    booking = ledger.booking(booking_id)
    if booking is None:
        return _booking_not_found(ledger, booking_id)
    working = ledger.copy()
    guide_id = working.discard(booking_id)
    return AssignmentOutcome(
        status=AssignmentStatus.OK,
        ledger=working,
        booking_id=booking_id,
        guide_id=guide_id,
        guest_count=booking.guest_count,
        message=f"Booking {booking_id} deleted",
    )


def merge_bookings(
    ledger: AssignmentLedger,
    incoming: Sequence[Booking],
) -> AssignmentLedger:
    """Refresh a ledger from the booking source's current list.

    Known bookings keep the stored record (flags, party size, assignment)
    and new ones join the unassigned pool. Bookings the source no longer
    lists, manual ones included, stay where they are; only delete_booking
    takes a booking off the day.
    """
    incoming_ids = [booking.booking_id for booking in incoming]
    if len(set(incoming_ids)) != len(incoming_ids):
        raise LedgerIntegrityError("incoming booking ids must be unique")

    known = set(incoming_ids)
    merged = [ledger.booking(booking.booking_id) or booking for booking in incoming]
    merged.extend(booking for booking in ledger.bookings() if booking.booking_id not in known)
    manifests = {manifest.guide_id: list(manifest.booking_ids) for manifest in ledger.manifests()}
    return AssignmentLedger(
        date=ledger.date,
        bookings=merged,
        manifests=manifests,
        guide_names={guide_id: ledger.guide_name(guide_id) for guide_id in manifests},
    )
