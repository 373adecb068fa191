from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from pickup_backend.domain.models import (
    AssignmentLedger,
    Booking,
    Guide,
    LedgerIntegrityError,
)


PICKUP_TIME = datetime(2026, 2, 14, 20, 30)


def _booking(booking_id: str, guests: int, place: str = "Harpa", **extra) -> Booking:
    return Booking(
        booking_id=booking_id,
        customer_full_name=f"Customer {booking_id}",
        pickup_place_name=place,
        pickup_time=PICKUP_TIME,
        guest_count=guests,
        **extra,
    )


def test_booking_rejects_empty_party():
    with pytest.raises(ValueError):
        _booking("b1", 0)


def test_booking_rejects_blank_id():
    with pytest.raises(ValueError):
        _booking("  ", 2)


def test_booking_document_requires_guest_count():
    with pytest.raises(ValueError):
        Booking.from_document(
            {
                "id": "b1",
                "customerFullName": "Anna",
                "pickupPlaceName": "Harpa",
                "pickupTime": PICKUP_TIME.isoformat(),
            }
        )


def test_aware_pickup_time_is_stored_as_naive_utc():
    utc_booking = Booking(
        booking_id="b1",
        customer_full_name="Customer b1",
        pickup_place_name="Harpa",
        pickup_time=datetime(2026, 2, 14, 20, 30, tzinfo=timezone.utc),
        guest_count=2,
    )
    shifted = Booking(
        booking_id="b2",
        customer_full_name="Customer b2",
        pickup_place_name="Harpa",
        pickup_time=datetime(2026, 2, 14, 22, 30, tzinfo=timezone(timedelta(hours=2))),
        guest_count=2,
    )

    assert utc_booking.pickup_time == PICKUP_TIME
    assert utc_booking.pickup_time.tzinfo is None
    assert shifted.pickup_time == PICKUP_TIME
    assert sorted([shifted.pickup_time, _booking("b3", 2).pickup_time]) == [PICKUP_TIME, PICKUP_TIME]


def test_manual_booking_is_recognised_by_id_prefix():
    assert _booking("manual_abc", 2).is_manual
    assert not _booking("bokun-17", 2).is_manual


def test_ledger_add_and_discard():
    ledger = AssignmentLedger(date="2026-02-14", bookings=[_booking("a", 3)], manifests={"g1": ["a"]})

    ledger.add(_booking("b", 2))
    with pytest.raises(LedgerIntegrityError):
        ledger.add(_booking("a", 1))

    assert ledger.discard("a") == "g1"
    assert ledger.booking("a") is None
    assert ledger.guide_ids() == []
    assert ledger.discard("b") is None
    with pytest.raises(LedgerIntegrityError):
        ledger.discard("ghost")


def test_guide_rejects_empty_id():
    with pytest.raises(ValueError):
        Guide(guide_id="", display_name="Nobody")


def test_ledger_totals_and_unassigned_are_derived():
    ledger = AssignmentLedger(
        date="2026-02-14",
        bookings=[_booking("b1", 4), _booking("b2", 3), _booking("b3", 2)],
        manifests={"g1": ["b1", "b3"]},
        guide_names={"g1": "Siggi"},
    )

    assert ledger.total_passengers("g1") == 6
    assert ledger.total_passengers("g2") == 0
    assert [booking.booking_id for booking in ledger.unassigned()] == ["b2"]
    assert ledger.guide_for("b3") == "g1"
    assert ledger.manifest_for("g1").guide_name == "Siggi"


def test_ledger_rejects_double_assignment_on_construction():
    with pytest.raises(LedgerIntegrityError):
        AssignmentLedger(
            date="2026-02-14",
            bookings=[_booking("b1", 4)],
            manifests={"g1": ["b1"], "g2": ["b1"]},
        )


def test_insert_over_capacity_leaves_ledger_unchanged():
    ledger = AssignmentLedger(
        date="2026-02-14",
        bookings=[_booking("b1", 17), _booking("b2", 3)],
        manifests={"g1": ["b1"]},
    )
    before = ledger.copy()

    with pytest.raises(LedgerIntegrityError):
        ledger.insert("b2", "g1", "Siggi", capacity=19)

    assert ledger == before


def test_removing_last_booking_drops_guide_from_ledger():
    ledger = AssignmentLedger(
        date="2026-02-14",
        bookings=[_booking("b1", 2)],
        manifests={"g1": ["b1"]},
    )

    assert ledger.remove("b1") == "g1"
    assert ledger.guide_ids() == []


def test_guest_count_is_frozen_inside_ledger():
    ledger = AssignmentLedger(date="2026-02-14", bookings=[_booking("b1", 2)])
    with pytest.raises(LedgerIntegrityError):
        ledger.replace_booking(_booking("b1", 5))


def test_document_restores_ledger_and_ignores_stored_totals():
    ledger = AssignmentLedger(
        date="2026-02-14",
        bookings=[_booking("b1", 4, is_arrived=True), _booking("b2", 3)],
        manifests={"g1": ["b2", "b1"]},
        guide_names={"g1": "Siggi"},
    )
    document = ledger.to_document()
    document["manifests"][0]["totalPassengers"] = 999

    restored = AssignmentLedger.from_document(document)

    assert restored == ledger
    assert restored.total_passengers("g1") == 7
    assert restored.manifest_for("g1").booking_ids == ("b2", "b1")
    assert restored.booking("b1").is_arrived


def test_stats_count_flags_and_assignment():
    ledger = AssignmentLedger(
        date="2026-02-14",
        bookings=[
            _booking("b1", 4, is_no_show=True),
            _booking("b2", 3, is_arrived=True),
            _booking("b3", 2),
        ],
        manifests={"g1": ["b1", "b2"]},
    )

    stats = ledger.stats()

    assert stats.total_bookings == 3
    assert stats.total_passengers == 9
    assert stats.assigned_bookings == 2
    assert stats.unassigned_passengers == 2
    assert stats.no_shows == 1
    assert stats.arrived == 1
    assert stats.passengers_by_guide == {"g1": 7}
