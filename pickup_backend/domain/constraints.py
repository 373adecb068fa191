"""Capacity rules shared by interactive assignment and bulk distribution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional


DEFAULT_BUS_CAPACITY = 19

STRATEGY_FIRST_FIT_DECREASING = "first_fit_decreasing"
STRATEGY_CP_SAT = "cp_sat"
SUPPORTED_STRATEGIES = (STRATEGY_FIRST_FIT_DECREASING, STRATEGY_CP_SAT)


@dataclass(frozen=True)
class DistributionConfig:
    default_capacity: int = DEFAULT_BUS_CAPACITY
    guide_capacities: Mapping[str, int] = field(default_factory=dict)
    strategy: str = STRATEGY_FIRST_FIT_DECREASING
    solver_max_time_seconds: int = 10
    solver_random_seed: int = 42

    def capacity_for(self, guide_id: str, bus_capacity: Optional[int] = None) -> int:
        """Resolve a guide's seat limit: explicit override, then bus, then default."""
        if guide_id in self.guide_capacities:
            return self.guide_capacities[guide_id]
        if bus_capacity is not None:
            return bus_capacity
        return self.default_capacity

    def max_capacity(self) -> int:
        return max([self.default_capacity, *self.guide_capacities.values()])


def validate_distribution_config(config: DistributionConfig) -> None:
    if config.default_capacity <= 0:
        raise ValueError("default_capacity must be > 0")
    for guide_id, capacity in config.guide_capacities.items():
        if not guide_id:
            raise ValueError("guide_capacities keys must be non-empty guide ids")
        if capacity <= 0:
            raise ValueError(f"capacity for guide {guide_id} must be > 0")
    if config.strategy not in SUPPORTED_STRATEGIES:
        raise ValueError(
            f"strategy must be one of {', '.join(SUPPORTED_STRATEGIES)}"
        )
    if config.solver_max_time_seconds <= 0:
        raise ValueError("solver_max_time_seconds must be > 0")
    if config.solver_random_seed < 0:
        raise ValueError("solver_random_seed must be >= 0")


def can_add(current_passengers: int, guest_count: int, capacity: int) -> bool:
    """Return True iff ``guest_count`` more passengers still fit under ``capacity``."""
    return current_passengers + guest_count <= capacity


def is_oversized(guest_count: int, capacity: int) -> bool:
    """A party larger than the biggest bus can never be seated anywhere."""
    return guest_count > capacity


def remaining_capacity(current_passengers: int, capacity: int) -> int:
    return max(0, capacity - current_passengers)
