from __future__ import annotations

from datetime import datetime

import pytest

pytest.importorskip("ortools")

from pickup_backend.domain.constraints import STRATEGY_CP_SAT, DistributionConfig
from pickup_backend.domain.models import Booking, Guide
from pickup_backend.services.distribution_service import (
    build_model,
    distribute,
    first_fit_decreasing,
)


def _booking(booking_id: str, guests: int) -> Booking:
    return Booking(
        booking_id=booking_id,
        customer_full_name=f"Customer {booking_id}",
        pickup_place_name="Hotel Borg",
        pickup_time=datetime(2026, 3, 1, 21, 0),
        guest_count=guests,
    )


def _guides(count: int) -> list[Guide]:
    return [Guide(guide_id=f"g{index}", display_name=f"Guide {index}") for index in range(1, count + 1)]


def _cp_sat_config() -> DistributionConfig:
    return DistributionConfig(strategy=STRATEGY_CP_SAT, solver_max_time_seconds=5)


def test_build_model_skips_pairs_that_cannot_fit():
    bookings = [_booking("a", 12), _booking("b", 5)]
    guides = [
        Guide(guide_id="mini", display_name="Minibus", bus_capacity=8),
        Guide(guide_id="coach", display_name="Coach"),
    ]

    artifacts = build_model(bookings=bookings, guides=guides, capacities=[8, 19])

    assert (0, 0) not in artifacts.variables
    assert (0, 1) in artifacts.variables
    assert set(artifacts.guide_used) == {0, 1}


def test_cp_sat_respects_capacity_and_uses_no_more_buses_than_greedy():
    # Largest-first opens a third bus here; an exact packing needs two.
    sizes = [7, 7, 6, 6, 6, 6]
    bookings = [_booking(f"b{index}", guests) for index, guests in enumerate(sizes)]
    guides = _guides(3)
    config = _cp_sat_config()

    greedy = first_fit_decreasing(bookings, guides, config)
    greedy_used = sum(1 for booking_ids in greedy.manifests.values() if booking_ids)
    result = distribute(date="2026-03-01", bookings=bookings, guides=guides, config=config)

    assert result.strategy == STRATEGY_CP_SAT
    assert result.fully_assigned
    assert result.guides_used <= greedy_used
    for manifest in result.ledger.manifests():
        assert manifest.total_passengers <= 19


def test_cp_sat_still_reports_oversized_parties():
    bookings = [_booking("big", 30), _booking("a", 4)]

    result = distribute(
        date="2026-03-01",
        bookings=bookings,
        guides=_guides(2),
        config=_cp_sat_config(),
    )

    assert result.oversized_booking_ids == ("big",)
    assert result.ledger.guide_for("a") == "g1"


def test_cp_sat_is_deterministic_for_fixed_seed():
    bookings = [_booking(f"b{index}", guests) for index, guests in enumerate([5, 9, 3, 8, 4, 6, 2])]
    guides = _guides(3)

    first = distribute(date="2026-03-01", bookings=bookings, guides=guides, config=_cp_sat_config())
    second = distribute(date="2026-03-01", bookings=bookings, guides=guides, config=_cp_sat_config())

    assert first.ledger == second.ledger
