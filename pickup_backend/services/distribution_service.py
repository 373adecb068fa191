"""Passenger-to-guide distribution: bulk bin packing and single-booking edits."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from ortools.sat.python import cp_model

from pickup_backend.domain.constraints import (
    STRATEGY_CP_SAT,
    DistributionConfig,
    can_add,
    is_oversized,
    remaining_capacity,
    validate_distribution_config,
)
from pickup_backend.domain.models import (
    AssignmentLedger,
    AssignmentOutcome,
    AssignmentStatus,
    Booking,
    CapacityCheck,
    DistributionResult,
    Guide,
)
from pickup_backend.utils.logger import format_event, get_logger


logger = get_logger(__name__)


class DistributionValidationError(Exception):
    """Raised when distribution inputs are malformed."""


@dataclass(frozen=True)
class Placement:
    manifests: dict[str, list[str]]
    stranded_booking_ids: list[str]
    oversized_booking_ids: list[str]


@dataclass(frozen=True)
class BuildArtifacts:
    model: Any
    variables: dict[tuple[int, int], Any]
    guide_used: dict[int, Any]


def validate_date(date_value: str) -> None:
    try:
        datetime.strptime(date_value, "%Y-%m-%d")
    except (TypeError, ValueError) as exc:
        raise DistributionValidationError("date must follow YYYY-MM-DD format") from exc


def _validate_inputs(
    bookings: Sequence[Booking],
    guides: Sequence[Guide],
    config: DistributionConfig,
) -> None:
    try:
        validate_distribution_config(config)
    except ValueError as exc:
        raise DistributionValidationError(str(exc)) from exc

    booking_ids = [booking.booking_id for booking in bookings]
    if len(set(booking_ids)) != len(booking_ids):
        raise DistributionValidationError("booking ids must be unique")
    guide_ids = [guide.guide_id for guide in guides]
    if len(set(guide_ids)) != len(guide_ids):
        raise DistributionValidationError("guide ids must be unique in the roster")


def _largest_first(bookings: Sequence[Booking]) -> list[Booking]:
    # sorted() is stable, so equal parties keep their incoming order.
    return sorted(bookings, key=lambda booking: -booking.guest_count)


def _roster_capacities(guides: Sequence[Guide], config: DistributionConfig) -> list[int]:
    return [config.capacity_for(guide.guide_id, guide.bus_capacity) for guide in guides]


def _split_oversized(
    ordered: list[Booking],
    capacities: list[int],
    config: DistributionConfig,
) -> tuple[list[Booking], list[str]]:
    # Same limit as _oversize_limit: the biggest bus anywhere in the config,
    # not just among the guides picked for this run.
    largest_bus = max([*capacities, config.max_capacity()])
    placeable: list[Booking] = []
    oversized: list[str] = []
    for booking in ordered:
        if is_oversized(booking.guest_count, largest_bus):
            oversized.append(booking.booking_id)
        else:
            placeable.append(booking)
    return placeable, oversized


def first_fit_decreasing(
    bookings: Sequence[Booking],
    guides: Sequence[Guide],
    config: DistributionConfig,
) -> Placement:
    """Place each party, largest first, on the first roster guide with room.

    Unused guides sit later in roster order with full capacity, so the same
    scan opens a new bus only when every bus already in use is too full.
    """
    capacities = _roster_capacities(guides, config)
    placeable, oversized = _split_oversized(_largest_first(bookings), capacities, config)

    totals = [0] * len(guides)
    manifests: dict[str, list[str]] = {guide.guide_id: [] for guide in guides}
    stranded: list[str] = []
    for booking in placeable:
        for index, guide in enumerate(guides):
            if can_add(totals[index], booking.guest_count, capacities[index]):
                totals[index] += booking.guest_count
                manifests[guide.guide_id].append(booking.booking_id)
                break
        else:
            stranded.append(booking.booking_id)

    return Placement(
        manifests=manifests,
        stranded_booking_ids=stranded,
        oversized_booking_ids=oversized,
    )


def build_model(
    *,
    bookings: Sequence[Booking],
    guides: Sequence[Guide],
    capacities: Sequence[int],
    hint: Optional[Placement] = None,
) -> BuildArtifacts:
    """Build a CP-SAT bin-packing model over placeable bookings."""
    model = cp_model.CpModel()
    variables: dict[tuple[int, int], Any] = {}
    guide_used: dict[int, Any] = {}

    for guide_index, guide in enumerate(guides):
        guide_used[guide_index] = model.NewBoolVar(f"used_{guide.guide_id}")
        for booking_index, booking in enumerate(bookings):
            if booking.guest_count > capacities[guide_index]:
                continue
            variables[(booking_index, guide_index)] = model.NewBoolVar(
                f"x_{booking.booking_id}_{guide.guide_id}"
            )

    for booking_index in range(len(bookings)):
        booking_vars = [
            var for (b_index, _), var in variables.items() if b_index == booking_index
        ]
        if booking_vars:
            model.Add(sum(booking_vars) <= 1)

    for guide_index in range(len(guides)):
        guide_terms = [
            bookings[b_index].guest_count * var
            for (b_index, g_index), var in variables.items()
            if g_index == guide_index
        ]
        if guide_terms:
            model.Add(sum(guide_terms) <= capacities[guide_index] * guide_used[guide_index])
        else:
            model.Add(guide_used[guide_index] == 0)

    # Opening any extra bus costs more than preferring an earlier roster slot,
    # and one more seated guest outweighs every bus cost combined.
    guide_costs = {index: len(guides) + index for index in range(len(guides))}
    seat_weight = sum(guide_costs.values()) + 1
    model.Maximize(
        sum(
            seat_weight * bookings[b_index].guest_count * var
            for (b_index, _), var in variables.items()
        )
        - sum(guide_costs[index] * used for index, used in guide_used.items())
    )

    if hint is not None:
        position = {booking.booking_id: index for index, booking in enumerate(bookings)}
        for guide_index, guide in enumerate(guides):
            hinted = {position[booking_id] for booking_id in hint.manifests[guide.guide_id]}
            model.AddHint(guide_used[guide_index], 1 if hinted else 0)
            for (b_index, g_index), var in variables.items():
                if g_index == guide_index:
                    model.AddHint(var, 1 if b_index in hinted else 0)

    return BuildArtifacts(model=model, variables=variables, guide_used=guide_used)


def solve_cp_sat(
    bookings: Sequence[Booking],
    guides: Sequence[Guide],
    config: DistributionConfig,
) -> Placement:
    """Exact packing; falls back to first-fit-decreasing if no solution is found."""
    capacities = _roster_capacities(guides, config)
    placeable, oversized = _split_oversized(_largest_first(bookings), capacities, config)
    greedy = first_fit_decreasing(bookings, guides, config)
    if not placeable or not guides:
        return greedy

    artifacts = build_model(
        bookings=placeable,
        guides=guides,
        capacities=capacities,
        hint=greedy,
    )
    solver = cp_model.CpSolver()
    solver.parameters.max_time_in_seconds = float(config.solver_max_time_seconds)
    solver.parameters.num_workers = 1
    solver.parameters.random_seed = config.solver_random_seed

    status = solver.Solve(artifacts.model)
    if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
        logger.warning(
            format_event("CP-SAT distribution failed; using greedy", status=solver.StatusName(status))
        )
        return greedy

    manifests: dict[str, list[str]] = {guide.guide_id: [] for guide in guides}
    placed: set[str] = set()
    # Iterating bookings in largest-first order keeps manifest order aligned
    # with the greedy strategy.
    for booking_index, booking in enumerate(placeable):
        for guide_index, guide in enumerate(guides):
            var = artifacts.variables.get((booking_index, guide_index))
            if var is not None and solver.Value(var) == 1:
                manifests[guide.guide_id].append(booking.booking_id)
                placed.add(booking.booking_id)
                break

    logger.debug(
        format_event(
            "CP-SAT distribution solved",
            status=solver.StatusName(status),
            objective=solver.ObjectiveValue(),
        )
    )
    return Placement(
        manifests=manifests,
        stranded_booking_ids=[
            booking.booking_id for booking in placeable if booking.booking_id not in placed
        ],
        oversized_booking_ids=oversized,
    )


def distribute(
    *,
    date: str,
    bookings: Sequence[Booking],
    guides: Sequence[Guide],
    config: DistributionConfig,
) -> DistributionResult:
    """Build a fresh ledger for ``date`` from the full booking list and roster."""
    validate_date(date)
    _validate_inputs(bookings, guides, config)

    if config.strategy == STRATEGY_CP_SAT:
        placement = solve_cp_sat(bookings, guides, config)
    else:
        placement = first_fit_decreasing(bookings, guides, config)

    ledger = AssignmentLedger(date=date, bookings=bookings)
    for guide in guides:
        capacity = config.capacity_for(guide.guide_id, guide.bus_capacity)
        for booking_id in placement.manifests[guide.guide_id]:
            ledger.insert(booking_id, guide.guide_id, guide.display_name, capacity)

    result = DistributionResult(
        ledger=ledger,
        strategy=config.strategy,
        stranded_booking_ids=tuple(placement.stranded_booking_ids),
        oversized_booking_ids=tuple(placement.oversized_booking_ids),
    )
    logger.info(
        format_event(
            "Distribution completed",
            date=date,
            strategy=config.strategy,
            bookings=len(bookings),
            guides_used=result.guides_used,
            stranded=list(result.stranded_booking_ids),
            oversized=list(result.oversized_booking_ids),
        )
    )
    return result


def _oversize_limit(guide: Guide, config: DistributionConfig) -> int:
    return max(config.max_capacity(), config.capacity_for(guide.guide_id, guide.bus_capacity))


def assign_booking(
    ledger: AssignmentLedger,
    booking_id: str,
    guide: Optional[Guide],
    config: DistributionConfig,
) -> AssignmentOutcome:
    """Place ``booking_id`` on ``guide``, or unassign it when ``guide`` is None.

    The input ledger is never mutated; the outcome carries either a new
    ledger or, on rejection, the one that was passed in.
    """
    booking = ledger.booking(booking_id)
    if booking is None:
        return AssignmentOutcome(
            status=AssignmentStatus.NOT_FOUND,
            ledger=ledger,
            booking_id=booking_id,
            guide_id=guide.guide_id if guide else None,
            message=f"Booking {booking_id} is not on the {ledger.date} pickup list",
        )

    current_guide_id = ledger.guide_for(booking_id)
    if guide is None:
        if current_guide_id is None:
            return AssignmentOutcome(
                status=AssignmentStatus.NOOP,
                ledger=ledger,
                booking_id=booking_id,
                guest_count=booking.guest_count,
            )
        working = ledger.copy()
        working.remove(booking_id)
        return AssignmentOutcome(
            status=AssignmentStatus.OK,
            ledger=working,
            booking_id=booking_id,
            guest_count=booking.guest_count,
            message=f"Booking {booking_id} removed from {current_guide_id}",
        )

    capacity = config.capacity_for(guide.guide_id, guide.bus_capacity)
    if current_guide_id == guide.guide_id:
        return AssignmentOutcome(
            status=AssignmentStatus.NOOP,
            ledger=ledger,
            booking_id=booking_id,
            guide_id=guide.guide_id,
            guest_count=booking.guest_count,
            remaining_capacity=remaining_capacity(
                ledger.total_passengers(guide.guide_id), capacity
            ),
        )

    # The destination cannot contain the booking here, so its total is
    # already the "without this booking" view.
    destination_total = ledger.total_passengers(guide.guide_id)
    remaining = remaining_capacity(destination_total, capacity)
    if is_oversized(booking.guest_count, _oversize_limit(guide, config)):
        return AssignmentOutcome(
            status=AssignmentStatus.OVERSIZED_BOOKING,
            ledger=ledger,
            booking_id=booking_id,
            guide_id=guide.guide_id,
            guest_count=booking.guest_count,
            remaining_capacity=remaining,
            message=(
                f"Booking {booking_id} has {booking.guest_count} guests; "
                f"no bus seats more than {_oversize_limit(guide, config)}"
            ),
        )
    if not can_add(destination_total, booking.guest_count, capacity):
        return AssignmentOutcome(
            status=AssignmentStatus.CAPACITY_EXCEEDED,
            ledger=ledger,
            booking_id=booking_id,
            guide_id=guide.guide_id,
            guest_count=booking.guest_count,
            remaining_capacity=remaining,
            message=(
                f"Cannot add {booking.guest_count} guests to {guide.display_name}: "
                f"only {remaining} of {capacity} seats left"
            ),
        )

    working = ledger.copy()
    working.remove(booking_id)
    working.insert(booking_id, guide.guide_id, guide.display_name, capacity)
    return AssignmentOutcome(
        status=AssignmentStatus.OK,
        ledger=working,
        booking_id=booking_id,
        guide_id=guide.guide_id,
        guest_count=booking.guest_count,
        remaining_capacity=remaining_capacity(
            working.total_passengers(guide.guide_id), capacity
        ),
    )


def move_booking(
    ledger: AssignmentLedger,
    booking_id: str,
    from_guide_id: Optional[str],
    to_guide: Optional[Guide],
    config: DistributionConfig,
) -> AssignmentOutcome:
    """Move a booking out of ``from_guide_id`` (None = unassigned pool).

    A booking that is no longer where the caller saw it is left alone and
    reported as a no-op, so replaying a move is harmless.
    """
    if ledger.booking(booking_id) is None:
        return assign_booking(ledger, booking_id, to_guide, config)

    current_guide_id = ledger.guide_for(booking_id)
    if current_guide_id != (from_guide_id or None):
        return AssignmentOutcome(
            status=AssignmentStatus.NOOP,
            ledger=ledger,
            booking_id=booking_id,
            guide_id=current_guide_id,
            message=f"Booking {booking_id} is not with {from_guide_id or 'the unassigned pool'}",
        )
    return assign_booking(ledger, booking_id, to_guide, config)


def validate_passenger_count(
    ledger: AssignmentLedger,
    guide: Guide,
    additional_guests: int,
    config: DistributionConfig,
) -> CapacityCheck:
    """Read-only preview of whether ``additional_guests`` fit on ``guide``."""
    if additional_guests < 0:
        raise DistributionValidationError("additional_guests must be >= 0")
    capacity = config.capacity_for(guide.guide_id, guide.bus_capacity)
    current = ledger.total_passengers(guide.guide_id)
    return CapacityCheck(
        guide_id=guide.guide_id,
        additional_guests=additional_guests,
        current_passengers=current,
        capacity=capacity,
        remaining_capacity=remaining_capacity(current, capacity),
        allowed=can_add(current, additional_guests, capacity),
        oversized=is_oversized(additional_guests, _oversize_limit(guide, config)),
    )
