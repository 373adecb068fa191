"""Tests for capacity rules and distribution config validation."""

from __future__ import annotations

import pytest

from pickup_backend.domain.constraints import (
    DEFAULT_BUS_CAPACITY,
    DistributionConfig,
    can_add,
    is_oversized,
    remaining_capacity,
    validate_distribution_config,
)


def valid_config(**overrides) -> DistributionConfig:
    """Return a valid baseline DistributionConfig, optionally overriding fields."""
    defaults = {
        "default_capacity": 19,
        "guide_capacities": {},
        "strategy": "first_fit_decreasing",
        "solver_max_time_seconds": 10,
        "solver_random_seed": 42,
    }
    defaults.update(overrides)
    return DistributionConfig(**defaults)


# --- Baseline pass ---

def test_valid_config_passes():
    validate_distribution_config(valid_config())


def test_default_capacity_is_nineteen_seats():
    assert DEFAULT_BUS_CAPACITY == 19
    assert DistributionConfig().default_capacity == 19


# --- invalid configs ---

def test_zero_default_capacity_raises():
    with pytest.raises(ValueError):
        validate_distribution_config(valid_config(default_capacity=0))


def test_non_positive_guide_capacity_raises():
    with pytest.raises(ValueError):
        validate_distribution_config(valid_config(guide_capacities={"g1": 0}))


def test_unknown_strategy_raises():
    with pytest.raises(ValueError):
        validate_distribution_config(valid_config(strategy="round_robin"))


def test_solver_time_zero_raises():
    with pytest.raises(ValueError):
        validate_distribution_config(valid_config(solver_max_time_seconds=0))


def test_negative_seed_raises():
    with pytest.raises(ValueError):
        validate_distribution_config(valid_config(solver_random_seed=-1))


# --- capacity arithmetic ---

def test_can_add_allows_exact_fill():
    assert can_add(17, 2, 19)


def test_can_add_rejects_one_over():
    assert not can_add(19, 1, 19)


def test_oversized_only_when_party_alone_exceeds_capacity():
    assert is_oversized(25, 19)
    assert not is_oversized(19, 19)


def test_remaining_capacity_never_negative():
    assert remaining_capacity(15, 19) == 4
    assert remaining_capacity(21, 19) == 0


def test_capacity_for_prefers_override_then_bus_then_default():
    config = valid_config(guide_capacities={"big-bus": 30})
    assert config.capacity_for("big-bus", bus_capacity=12) == 30
    assert config.capacity_for("minibus", bus_capacity=12) == 12
    assert config.capacity_for("anyone") == 19
    assert config.max_capacity() == 30
