from __future__ import annotations

from datetime import datetime

import pytest

from pickup_backend.domain.constraints import DistributionConfig
from pickup_backend.domain.models import AssignmentLedger, AssignmentStatus, Booking, Guide
from pickup_backend.services.distribution_service import (
    DistributionValidationError,
    assign_booking,
    move_booking,
    validate_passenger_count,
)


CONFIG = DistributionConfig()
G1 = Guide(guide_id="g1", display_name="Siggi")
G2 = Guide(guide_id="g2", display_name="Gunna")


def _booking(booking_id: str, guests: int, **extra) -> Booking:
    return Booking(
        booking_id=booking_id,
        customer_full_name=f"Customer {booking_id}",
        pickup_place_name="Harpa",
        pickup_time=datetime(2026, 2, 14, 20, 30),
        guest_count=guests,
        **extra,
    )


def _ledger(bookings, manifests=None) -> AssignmentLedger:
    return AssignmentLedger(date="2026-02-14", bookings=bookings, manifests=manifests or {})


def test_exact_fill_is_accepted_and_next_party_rejected():
    ledger = _ledger(
        [_booking("seventeen", 17), _booking("two", 2), _booking("one", 1)],
        {"g1": ["seventeen"]},
    )

    filled = assign_booking(ledger, "two", G1, CONFIG)

    assert filled.status is AssignmentStatus.OK
    assert filled.ledger.total_passengers("g1") == 19
    assert filled.remaining_capacity == 0

    rejected = assign_booking(filled.ledger, "one", G1, CONFIG)

    assert rejected.status is AssignmentStatus.CAPACITY_EXCEEDED
    assert rejected.guest_count == 1
    assert rejected.remaining_capacity == 0
    assert rejected.ledger == filled.ledger
    assert rejected.ledger.guide_for("one") is None


def test_rejected_assignment_does_not_mutate_input():
    ledger = _ledger([_booking("a", 15), _booking("b", 6)], {"g1": ["a"]})
    snapshot = ledger.copy()

    outcome = assign_booking(ledger, "b", G1, CONFIG)

    assert outcome.status is AssignmentStatus.CAPACITY_EXCEEDED
    assert outcome.remaining_capacity == 4
    assert ledger == snapshot


def test_successful_assignment_returns_new_ledger():
    ledger = _ledger([_booking("a", 3)])

    outcome = assign_booking(ledger, "a", G1, CONFIG)

    assert outcome.status is AssignmentStatus.OK
    assert outcome.ledger.guide_for("a") == "g1"
    assert ledger.guide_for("a") is None


def test_oversized_party_is_rejected_even_on_empty_bus():
    ledger = _ledger([_booking("huge", 20)])

    outcome = assign_booking(ledger, "huge", G1, CONFIG)

    assert outcome.status is AssignmentStatus.OVERSIZED_BOOKING
    assert outcome.remaining_capacity == 19
    assert outcome.ledger == ledger


def test_unassigning_an_unassigned_booking_is_noop():
    ledger = _ledger([_booking("a", 4)])

    outcome = assign_booking(ledger, "a", None, CONFIG)

    assert outcome.status is AssignmentStatus.NOOP
    assert outcome.succeeded
    assert outcome.ledger == ledger


def test_unassign_returns_booking_to_pool():
    ledger = _ledger([_booking("a", 4), _booking("b", 2)], {"g1": ["a", "b"]})

    outcome = assign_booking(ledger, "a", None, CONFIG)

    assert outcome.status is AssignmentStatus.OK
    assert [booking.booking_id for booking in outcome.ledger.unassigned()] == ["a"]
    assert outcome.ledger.manifest_for("g1").booking_ids == ("b",)


def test_unknown_booking_is_not_found():
    outcome = assign_booking(_ledger([_booking("a", 4)]), "ghost", G1, CONFIG)

    assert outcome.status is AssignmentStatus.NOT_FOUND


def test_move_to_same_guide_is_noop():
    ledger = _ledger([_booking("a", 4)], {"g1": ["a"]})

    outcome = move_booking(ledger, "a", "g1", G1, CONFIG)

    assert outcome.status is AssignmentStatus.NOOP
    assert outcome.ledger == ledger


def test_move_into_full_bus_keeps_source_manifest():
    ledger = _ledger(
        [_booking("a", 6), _booking("full", 19)],
        {"g1": ["a"], "g2": ["full"]},
    )

    outcome = move_booking(ledger, "a", "g1", G2, CONFIG)

    assert outcome.status is AssignmentStatus.CAPACITY_EXCEEDED
    assert outcome.ledger.guide_for("a") == "g1"
    assert outcome.ledger.total_passengers("g1") == 6


def test_move_between_guides_updates_both_totals():
    ledger = _ledger([_booking("a", 6), _booking("b", 10)], {"g1": ["a"], "g2": ["b"]})

    outcome = move_booking(ledger, "a", "g1", G2, CONFIG)

    assert outcome.status is AssignmentStatus.OK
    assert outcome.ledger.total_passengers("g1") == 0
    assert outcome.ledger.total_passengers("g2") == 16
    assert outcome.ledger.guide_ids() == ["g2"]


def test_move_from_stale_source_is_noop():
    ledger = _ledger([_booking("a", 6)], {"g2": ["a"]})

    outcome = move_booking(ledger, "a", "g1", G1, CONFIG)

    assert outcome.status is AssignmentStatus.NOOP
    assert outcome.guide_id == "g2"
    assert outcome.ledger == ledger


def test_reassignment_keeps_status_flags():
    ledger = _ledger(
        [_booking("a", 3, is_arrived=True, paid_on_arrival=True)],
        {"g1": ["a"]},
    )

    outcome = move_booking(ledger, "a", "g1", G2, CONFIG)
    moved = outcome.ledger.booking("a")

    assert moved.is_arrived
    assert moved.paid_on_arrival


def test_validate_passenger_count_matches_assign_arithmetic():
    ledger = _ledger([_booking("a", 15)], {"g1": ["a"]})

    fits = validate_passenger_count(ledger, G1, 4, CONFIG)
    too_many = validate_passenger_count(ledger, G1, 5, CONFIG)

    assert fits.allowed
    assert fits.remaining_capacity == 4
    assert not too_many.allowed
    assert not too_many.oversized
    assert validate_passenger_count(ledger, G2, 20, CONFIG).oversized


def test_validate_passenger_count_rejects_negative():
    with pytest.raises(DistributionValidationError):
        validate_passenger_count(_ledger([]), G1, -1, CONFIG)
