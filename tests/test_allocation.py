"""Tests for occupancy-weighted allocation and its fallback policies."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from billshare.domain.models import BillingPeriod, PresenceInterval, Resident
from billshare.services.allocation_service import AllocationValidationError, allocate


START = date(2024, 1, 1)
END = date(2024, 1, 31)

A = Resident("a")
B = Resident("b")
C = Resident("c")
D = Resident("d")


def _stay(resident: Resident, days: int, offset: int = 0, guests: int = 0) -> PresenceInterval:
    begin = START + timedelta(days=offset)
    return PresenceInterval(resident, begin, begin + timedelta(days=days), guests)


def _period(total_cost: float, *intervals: PresenceInterval) -> BillingPeriod:
    return BillingPeriod(start=START, end=END, total_cost=total_cost, intervals=intervals)


def test_reference_household_scenario() -> None:
    period = _period(100.0, _stay(A, 30), _stay(B, 20), _stay(C, 30))

    result = allocate(period, 10.0, [A, B, C])

    assert result.variable_cost == pytest.approx(90.0)
    assert result.fixed_share == pytest.approx(10.0 / 3)
    assert result.charge_for(A) == pytest.approx(10.0 / 3 + 90.0 * 30 / 80)
    assert result.charge_for(B) == pytest.approx(10.0 / 3 + 90.0 * 20 / 80)
    assert result.charge_for(C) == pytest.approx(10.0 / 3 + 90.0 * 30 / 80)
    assert result.charge_for(A) == pytest.approx(37.0833, abs=1e-4)
    assert result.charge_for(B) == pytest.approx(25.8333, abs=1e-4)
    assert result.total() == pytest.approx(100.0)
    assert not result.variable_cost_clamped
    assert not result.zero_occupancy_fallback


def test_charges_sum_to_total_with_guests_and_split_stays() -> None:
    period = _period(
        237.45,
        _stay(A, 5),
        _stay(A, 9, offset=12),
        _stay(B, 17, offset=3, guests=2),
        _stay(C, 1, offset=29),
    )

    result = allocate(period, 41.2, [A, B, C, D])

    assert result.total() == pytest.approx(237.45)
    assert result.presence_shares[A] == pytest.approx(14 / (14 + 51 + 1))
    assert result.presence_shares[D] == 0.0


def test_equal_presence_splits_variable_cost_evenly() -> None:
    period = _period(90.0, _stay(A, 30), _stay(B, 30), _stay(C, 30))

    result = allocate(period, 15.0, [A, B, C])

    for resident in (A, B, C):
        variable_share = result.charge_for(resident) - result.fixed_share
        assert variable_share == pytest.approx(75.0 / 3)


def test_absent_resident_pays_only_fixed_share() -> None:
    period = _period(100.0, _stay(A, 30), _stay(B, 10))

    result = allocate(period, 20.0, [A, B, D])

    assert result.charge_for(D) == pytest.approx(20.0 / 3)
    assert result.total() == pytest.approx(100.0)


def test_more_presence_never_lowers_own_charge() -> None:
    previous = None
    for days in range(0, 31):
        intervals = [_stay(A, 30), _stay(C, 12)]
        if days:
            intervals.append(_stay(B, days))
        result = allocate(_period(120.0, *intervals), 25.0, [A, B, C])
        charge = result.charge_for(B)
        if previous is not None:
            assert charge >= previous - 1e-12
        previous = charge


def test_zero_occupancy_falls_back_to_even_split() -> None:
    result = allocate(_period(99.0), 9.0, [A, B, C])

    assert result.zero_occupancy_fallback
    for resident in (A, B, C):
        assert result.charge_for(resident) == pytest.approx(33.0)
        assert result.presence_shares[resident] == pytest.approx(1 / 3)


def test_fixed_cost_above_bill_clamps_variable_cost() -> None:
    period = _period(100.0, _stay(A, 30), _stay(B, 5))

    result = allocate(period, 120.0, [A, B])

    assert result.variable_cost_clamped
    assert result.variable_cost == 0.0
    assert result.fixed_cost == pytest.approx(100.0)
    assert result.charge_for(A) == pytest.approx(50.0)
    assert result.charge_for(B) == pytest.approx(50.0)


def test_negative_fixed_cost_is_clamped_to_zero() -> None:
    period = _period(100.0, _stay(A, 30), _stay(B, 10))

    result = allocate(period, -20.0, [A, B])

    assert result.fixed_cost_clamped
    assert result.fixed_share == 0.0
    assert result.charge_for(A) == pytest.approx(75.0)
    assert result.charge_for(B) == pytest.approx(25.0)
    assert all(charge >= 0 for charge in result.charges.values())


def test_empty_household_raises() -> None:
    with pytest.raises(AllocationValidationError):
        allocate(_period(50.0), 10.0, [])


def test_presence_outside_household_raises() -> None:
    period = _period(50.0, _stay(A, 10), _stay(D, 4))

    with pytest.raises(AllocationValidationError, match="outside the household: d"):
        allocate(period, 10.0, [A, B])


def test_duplicate_residents_count_once() -> None:
    period = _period(60.0, _stay(A, 30))

    result = allocate(period, 30.0, [A, B, B])

    assert set(result.charges) == {A, B}
    assert result.fixed_share == pytest.approx(15.0)
