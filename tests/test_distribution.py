from __future__ import annotations

from datetime import datetime

import pytest

from pickup_backend.domain.constraints import DistributionConfig
from pickup_backend.domain.models import Booking, Guide
from pickup_backend.services.distribution_service import (
    DistributionValidationError,
    distribute,
)


TARGET_DATE = "2026-02-14"


def _booking(booking_id: str, guests: int) -> Booking:
    return Booking(
        booking_id=booking_id,
        customer_full_name=f"Customer {booking_id}",
        pickup_place_name="Harpa",
        pickup_time=datetime(2026, 2, 14, 20, 30),
        guest_count=guests,
    )


def _guides(count: int) -> list[Guide]:
    return [Guide(guide_id=f"g{index}", display_name=f"Guide {index}") for index in range(1, count + 1)]


def _assert_capacity_and_uniqueness(result, capacity: int = 19) -> None:
    seen: list[str] = []
    for manifest in result.ledger.manifests():
        assert manifest.total_passengers <= capacity
        seen.extend(manifest.booking_ids)
    assert len(seen) == len(set(seen))


def test_largest_parties_fill_first_bus_before_opening_next():
    bookings = [_booking("a", 10), _booking("b", 8), _booking("c", 6), _booking("d", 4)]

    result = distribute(
        date=TARGET_DATE,
        bookings=bookings,
        guides=_guides(2),
        config=DistributionConfig(),
    )

    ledger = result.ledger
    assert ledger.manifest_for("g1").booking_ids == ("a", "b")
    assert ledger.manifest_for("g2").booking_ids == ("c", "d")
    assert ledger.total_passengers("g1") == 18
    assert ledger.total_passengers("g2") == 10
    assert result.fully_assigned
    assert result.guides_used == 2
    _assert_capacity_and_uniqueness(result)


def test_party_larger_than_any_bus_is_reported_not_placed():
    bookings = [_booking("big", 25), _booking("small", 5)]

    result = distribute(
        date=TARGET_DATE,
        bookings=bookings,
        guides=_guides(3),
        config=DistributionConfig(),
    )

    assert result.oversized_booking_ids == ("big",)
    assert result.ledger.guide_for("big") is None
    assert result.ledger.manifest_for("g1").booking_ids == ("small",)
    assert [booking.booking_id for booking in result.ledger.unassigned()] == ["big"]
    assert not result.fully_assigned


def test_bookings_that_fit_nowhere_are_stranded():
    bookings = [_booking("a", 15), _booking("b", 12), _booking("c", 9)]

    result = distribute(
        date=TARGET_DATE,
        bookings=bookings,
        guides=_guides(1),
        config=DistributionConfig(),
    )

    assert result.ledger.manifest_for("g1").booking_ids == ("a",)
    assert result.stranded_booking_ids == ("b", "c")
    assert result.oversized_booking_ids == ()
    _assert_capacity_and_uniqueness(result)


def test_single_bus_strands_parties_that_no_longer_fit():
    bookings = [_booking("8", 8), _booking("7", 7), _booking("6", 6), _booking("5", 5)]

    result = distribute(
        date=TARGET_DATE,
        bookings=bookings,
        guides=_guides(1),
        config=DistributionConfig(default_capacity=19),
    )

    assert result.ledger.manifest_for("g1").booking_ids == ("8", "7")
    assert result.ledger.total_passengers("g1") == 15
    assert result.stranded_booking_ids == ("6", "5")
    assert result.oversized_booking_ids == ()
    assert not result.fully_assigned


def test_oversized_uses_largest_bus_in_config_not_only_selected_guides():
    bookings = [_booking("big", 30), _booking("small", 4)]

    result = distribute(
        date=TARGET_DATE,
        bookings=bookings,
        guides=_guides(1),
        config=DistributionConfig(guide_capacities={"coach": 40}),
    )

    assert result.oversized_booking_ids == ()
    assert result.stranded_booking_ids == ("big",)
    assert result.ledger.manifest_for("g1").booking_ids == ("small",)


def test_equal_parties_keep_incoming_order():
    bookings = [_booking("first", 7), _booking("second", 7), _booking("third", 7)]

    result = distribute(
        date=TARGET_DATE,
        bookings=bookings,
        guides=_guides(2),
        config=DistributionConfig(),
    )

    assert result.ledger.manifest_for("g1").booking_ids == ("first", "second")
    assert result.ledger.manifest_for("g2").booking_ids == ("third",)


def test_distribution_is_idempotent():
    bookings = [_booking(f"b{index}", guests) for index, guests in enumerate([9, 3, 7, 5, 11, 2, 6])]
    guides = _guides(3)

    first = distribute(date=TARGET_DATE, bookings=bookings, guides=guides, config=DistributionConfig())
    second = distribute(
        date=TARGET_DATE,
        bookings=first.ledger.bookings(),
        guides=guides,
        config=DistributionConfig(),
    )

    assert first.ledger == second.ledger
    _assert_capacity_and_uniqueness(first)


def test_per_guide_bus_capacity_is_respected():
    guides = [
        Guide(guide_id="mini", display_name="Minibus", bus_capacity=8),
        Guide(guide_id="coach", display_name="Coach", bus_capacity=40),
    ]
    bookings = [_booking("a", 10), _booking("b", 30), _booking("c", 5)]

    result = distribute(
        date=TARGET_DATE,
        bookings=bookings,
        guides=guides,
        config=DistributionConfig(guide_capacities={"mini": 8, "coach": 40}),
    )

    assert result.ledger.manifest_for("coach").booking_ids == ("b", "a")
    assert result.ledger.manifest_for("mini").booking_ids == ("c",)
    assert result.fully_assigned


def test_empty_roster_leaves_everything_unassigned():
    bookings = [_booking("a", 3), _booking("b", 25)]

    result = distribute(date=TARGET_DATE, bookings=bookings, guides=[], config=DistributionConfig())

    assert result.ledger.guide_ids() == []
    assert result.stranded_booking_ids == ("a",)
    assert result.oversized_booking_ids == ("b",)


def test_duplicate_booking_ids_raise():
    with pytest.raises(DistributionValidationError):
        distribute(
            date=TARGET_DATE,
            bookings=[_booking("a", 3), _booking("a", 4)],
            guides=_guides(1),
            config=DistributionConfig(),
        )


def test_malformed_date_raises():
    with pytest.raises(DistributionValidationError):
        distribute(date="14/02/2026", bookings=[], guides=_guides(1), config=DistributionConfig())
