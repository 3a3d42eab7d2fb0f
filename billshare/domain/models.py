"""Domain models for occupancy-based bill sharing."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional


class IntervalValidationError(ValueError):
    """Raised when a presence interval has a negative length."""


class PeriodValidationError(ValueError):
    """Raised when a billing period violates its invariants."""


@dataclass(frozen=True, order=True)
class Resident:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class PresenceInterval:
    """Half-open span ``[start, end)`` a resident spent in the residence.

    ``additional_people`` counts guests the resident is responsible for, so the
    interval weighs ``(1 + additional_people)`` occupant-days per day.
    """

    resident: Resident
    start: date
    end: date
    additional_people: int = 0

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise IntervalValidationError(
                "The end of an interval cannot be before the start"
            )
        if self.additional_people < 0:
            raise IntervalValidationError("additional_people must be >= 0")

    @property
    def num_people(self) -> int:
        return 1 + self.additional_people

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    @property
    def occupant_days(self) -> int:
        return self.num_people * self.days

    def clip(self, start: date, end: date) -> Optional["PresenceInterval"]:
        """Intersect with ``[start, end)``; ``None`` when nothing overlaps."""
        clipped_start = max(self.start, start)
        clipped_end = min(self.end, end)
        if clipped_end <= clipped_start:
            return None
        return PresenceInterval(
            resident=self.resident,
            start=clipped_start,
            end=clipped_end,
            additional_people=self.additional_people,
        )


@dataclass(frozen=True)
class BillingPeriod:
    start: date
    end: date
    total_cost: float
    intervals: tuple[PresenceInterval, ...] = ()

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise PeriodValidationError("billing period end must be after start")
        if self.total_cost < 0:
            raise PeriodValidationError("total_cost must be >= 0")
        # Accept any iterable but store a tuple so the period stays hashable.
        object.__setattr__(self, "intervals", tuple(self.intervals))

        by_resident: dict[Resident, list[PresenceInterval]] = defaultdict(list)
        for interval in self.intervals:
            if interval.start < self.start or interval.end > self.end:
                raise PeriodValidationError(
                    f"interval for {interval.resident} "
                    f"[{interval.start}, {interval.end}) lies outside the billing period "
                    f"[{self.start}, {self.end})"
                )
            by_resident[interval.resident].append(interval)

        for resident, intervals in by_resident.items():
            ordered = sorted(intervals, key=lambda item: item.start)
            for previous, current in zip(ordered, ordered[1:]):
                if current.start < previous.end:
                    raise PeriodValidationError(
                        f"presence intervals for {resident} overlap"
                    )

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def occupant_days(self, resident: Resident) -> int:
        return sum(
            interval.occupant_days
            for interval in self.intervals
            if interval.resident == resident
        )

    def occupancy_by_resident(self) -> dict[Resident, int]:
        totals: dict[Resident, int] = defaultdict(int)
        for interval in self.intervals:
            totals[interval.resident] += interval.occupant_days
        return dict(totals)

    def total_occupancy(self) -> int:
        """Total occupant-days in the period (the regression's x value)."""
        return sum(interval.occupant_days for interval in self.intervals)


@dataclass(frozen=True)
class PresenceRecord:
    """Complete presence history of a household across many billing periods."""

    intervals: tuple[PresenceInterval, ...] = ()

    @classmethod
    def from_intervals(cls, intervals: Iterable[PresenceInterval]) -> "PresenceRecord":
        return cls(intervals=tuple(intervals))

    def residents(self) -> set[Resident]:
        return {interval.resident for interval in self.intervals}

    def clip_to(self, start: date, end: date) -> tuple[PresenceInterval, ...]:
        clipped = (interval.clip(start, end) for interval in self.intervals)
        return tuple(interval for interval in clipped if interval is not None)

    def occupancy_over(self, start: date, end: date) -> int:
        return sum(interval.occupant_days for interval in self.clip_to(start, end))

    def billing_period(self, start: date, end: date, total_cost: float) -> BillingPeriod:
        return BillingPeriod(
            start=start,
            end=end,
            total_cost=total_cost,
            intervals=self.clip_to(start, end),
        )


@dataclass(frozen=True)
class Bill:
    """A bill as it arrives: amount due over a date window.

    ``fixed_charge`` is the part of the bill the utility itemises as fixed
    (meter or service fees); it is added to the estimated fixed cost.
    ``temperature_index`` is the period's heating/cooling index when the bill
    is weather sensitive.
    """

    start: date
    end: date
    amount_due: float
    fixed_charge: float = 0.0
    temperature_index: Optional[float] = None

    @property
    def variable_amount(self) -> float:
        return self.amount_due - self.fixed_charge


@dataclass(frozen=True)
class HistoricalPoint:
    occupancy: float
    cost: float
    temperature_index: Optional[float] = None


@dataclass(frozen=True)
class LinearModel:
    """``cost = intercept + slope * occupancy [+ temperature_slope * index]``."""

    intercept: float
    slope: float
    temperature_slope: Optional[float] = None

    @property
    def uses_temperature(self) -> bool:
        return self.temperature_slope is not None

    def predict(self, occupancy: float, temperature_index: Optional[float] = None) -> float:
        value = self.intercept + self.slope * occupancy
        if self.temperature_slope is not None:
            if temperature_index is None:
                raise ValueError("this model needs a temperature_index to predict")
            value += self.temperature_slope * temperature_index
        return value


@dataclass(frozen=True)
class CostAllocation:
    """Charges for one billing period plus how they were derived.

    ``fixed_cost`` is the amount actually shared evenly, after clamping to
    ``[0, total_cost]``; ``presence_shares`` holds each resident's fraction of
    the variable cost.
    """

    charges: dict[Resident, float]
    presence_shares: dict[Resident, float]
    fixed_cost: float
    variable_cost: float
    fixed_share: float
    variable_cost_clamped: bool = False
    fixed_cost_clamped: bool = False
    zero_occupancy_fallback: bool = False

    def charge_for(self, resident: Resident) -> float:
        return self.charges[resident]

    def total(self) -> float:
        return float(sum(self.charges.values()))


@dataclass(frozen=True)
class FitDiagnostics:
    r_squared: float
    prediction_error: Optional[float] = None


@dataclass(frozen=True)
class InvoiceLine:
    label: str
    amount_due: float
    fixed_amount: float
    presence_share: float
    charge: float


@dataclass(frozen=True)
class Invoice:
    resident: Resident
    total: float
    lines: list[InvoiceLine] = field(default_factory=list)
