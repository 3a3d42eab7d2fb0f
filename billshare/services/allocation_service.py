"""Occupancy-weighted allocation of a bill among household residents."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from billshare.domain.constraints import (
    FitQualityConfig,
    RoundingConfig,
    validate_rounding_config,
)
from billshare.domain.models import (
    Bill,
    BillingPeriod,
    CostAllocation,
    FitDiagnostics,
    HistoricalPoint,
    Invoice,
    InvoiceLine,
    LinearModel,
    PresenceRecord,
    Resident,
)
from billshare.services.estimation_service import (
    assess_fit,
    build_dataset,
    estimate_fixed_cost,
    fit_cost_model,
)
from billshare.utils.config import Settings, get_settings
from billshare.utils.logger import get_logger


logger = get_logger(__name__)


class AllocationValidationError(Exception):
    """Raised when household or presence inputs cannot be allocated."""


def _validate_household(
    period: BillingPeriod,
    residents: Iterable[Resident],
) -> list[Resident]:
    household = sorted(set(residents))
    if not household:
        raise AllocationValidationError("household must contain at least one resident")

    strangers = {interval.resident for interval in period.intervals} - set(household)
    if strangers:
        names = ", ".join(sorted(str(resident) for resident in strangers))
        raise AllocationValidationError(
            f"presence recorded for residents outside the household: {names}"
        )
    return household


def allocate(
    period: BillingPeriod,
    fixed_cost: float,
    residents: Iterable[Resident],
) -> CostAllocation:
    """Split ``period.total_cost`` into an even fixed share and a presence share.

    Every household member pays ``fixed_cost / N`` whether present or not. The
    remainder is divided in proportion to occupant-days. Two recoverable cases
    are flagged on the result instead of raising:

    * the fixed cost exceeds the bill: variable cost is clamped to zero and
      the whole bill is shared evenly;
    * nobody was present: the variable cost is shared evenly.

    A negative fixed cost is clamped to zero so no charge goes negative.
    """
    household = _validate_household(period, residents)
    household_size = len(household)
    total_cost = float(period.total_cost)

    variable_cost_clamped = False
    fixed_cost_clamped = False
    applied_fixed_cost = float(fixed_cost)
    if applied_fixed_cost > total_cost:
        logger.warning(
            "Variable cost clamped to zero | total_cost=%.6f | fixed_cost=%.6f",
            total_cost,
            applied_fixed_cost,
        )
        applied_fixed_cost = total_cost
        variable_cost_clamped = True
    elif applied_fixed_cost < 0.0:
        logger.warning(
            "Negative fixed cost clamped to zero | fixed_cost=%.6f",
            applied_fixed_cost,
        )
        applied_fixed_cost = 0.0
        fixed_cost_clamped = True

    variable_cost = total_cost - applied_fixed_cost
    fixed_share = applied_fixed_cost / household_size

    occupancy = period.occupancy_by_resident()
    total_occupancy = sum(occupancy.values())
    zero_occupancy_fallback = total_occupancy == 0
    if zero_occupancy_fallback:
        logger.warning(
            "No occupancy recorded; splitting variable cost evenly | "
            "variable_cost=%.6f | residents=%s",
            variable_cost,
            household_size,
        )
        presence_shares = {resident: 1.0 / household_size for resident in household}
    else:
        presence_shares = {
            resident: occupancy.get(resident, 0) / total_occupancy
            for resident in household
        }

    charges = {
        resident: fixed_share + variable_cost * presence_shares[resident]
        for resident in household
    }

    logger.info(
        (
            "Allocation completed | period=%s..%s | total_cost=%.6f | "
            "fixed_cost=%.6f | variable_cost=%.6f | occupant_days=%s | residents=%s"
        ),
        period.start,
        period.end,
        total_cost,
        applied_fixed_cost,
        variable_cost,
        total_occupancy,
        household_size,
    )
    return CostAllocation(
        charges=charges,
        presence_shares=presence_shares,
        fixed_cost=applied_fixed_cost,
        variable_cost=variable_cost,
        fixed_share=fixed_share,
        variable_cost_clamped=variable_cost_clamped,
        fixed_cost_clamped=fixed_cost_clamped,
        zero_occupancy_fallback=zero_occupancy_fallback,
    )


def distribute_remainder(
    charges: Mapping[Resident, float],
    total: float,
    minor_units: int = 2,
) -> dict[Resident, float]:
    """Round charges to the currency's minor unit with the largest-remainder method.

    The rounded charges always add up to ``total`` rounded to the minor unit.
    Ties between equal remainders go to residents in name order.
    """
    validate_rounding_config(RoundingConfig(currency_minor_units=minor_units))
    if not charges:
        return {}

    scale = 10**minor_units
    # Rounding the scaled value first strips float noise like 2899.9999999.
    scaled = {resident: round(amount * scale, 6) for resident, amount in charges.items()}
    units = {resident: math.floor(value) for resident, value in scaled.items()}
    remainders = {
        resident: round(scaled[resident] - units[resident], 6) for resident in scaled
    }

    leftover = int(round(total * scale)) - sum(units.values())
    if leftover >= 0:
        order = sorted(remainders, key=lambda resident: (-remainders[resident], resident))
        step = 1
    else:
        order = sorted(remainders, key=lambda resident: (remainders[resident], resident))
        step = -1

    for index in range(abs(leftover)):
        resident = order[index % len(order)]
        units[resident] += step

    return {resident: units[resident] / scale for resident in sorted(units)}


@dataclass(frozen=True)
class BillRequest:
    """One labelled bill to split.

    ``fixed_cost`` replaces the estimate outright and ``fully_fixed`` shares
    the whole amount evenly. Otherwise ``history`` feeds the cost model and
    the bill's itemised ``fixed_charge`` is added on top of the estimate.
    """

    label: str
    bill: Bill
    history: tuple[Bill, ...] = ()
    fixed_cost: Optional[float] = None
    fully_fixed: bool = False


@dataclass(frozen=True)
class SplitResult:
    label: str
    period: BillingPeriod
    allocation: CostAllocation
    charges: dict[Resident, float]
    model: Optional[LinearModel] = None
    diagnostics: Optional[FitDiagnostics] = None


class CostSharingService:
    """Orchestrates estimation, allocation and rounding for household bills."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    @property
    def settings(self) -> Settings:
        return self._settings

    def should_round(self, round_charges: Optional[bool]) -> bool:
        if round_charges is not None:
            return round_charges
        return self._settings.round_charges

    def _fit_quality_config(self) -> FitQualityConfig:
        return FitQualityConfig(
            min_rsquared=self._settings.min_rsquared,
            max_prediction_error=self._settings.max_prediction_error,
        )

    def _estimate(
        self,
        dataset: Sequence[HistoricalPoint],
        current_point: HistoricalPoint,
    ) -> tuple[float, LinearModel, Optional[FitDiagnostics]]:
        model = fit_cost_model(dataset)
        diagnostics = None
        if self._settings.enforce_fit_quality:
            diagnostics = assess_fit(
                model,
                dataset,
                self._fit_quality_config(),
                current_point=current_point,
            )
        fixed_cost = estimate_fixed_cost(model, current_point.temperature_index)
        return fixed_cost, model, diagnostics

    def _resolve_fixed_cost(
        self,
        request: BillRequest,
        period: BillingPeriod,
        presence: PresenceRecord,
    ) -> tuple[float, Optional[LinearModel], Optional[FitDiagnostics]]:
        bill = request.bill
        if request.fully_fixed:
            return float(bill.amount_due), None, None
        if request.fixed_cost is not None:
            return float(request.fixed_cost), None, None

        estimated, model, diagnostics = self._estimate(
            build_dataset(request.history, presence),
            HistoricalPoint(
                occupancy=float(period.total_occupancy()),
                cost=float(bill.variable_amount),
                temperature_index=bill.temperature_index,
            ),
        )
        return estimated + float(bill.fixed_charge), model, diagnostics

    def _split(
        self,
        label: str,
        period: BillingPeriod,
        fixed_cost: float,
        household: Iterable[Resident],
        round_charges: Optional[bool],
        model: Optional[LinearModel],
        diagnostics: Optional[FitDiagnostics],
    ) -> SplitResult:
        allocation = allocate(period, fixed_cost, household)

        should_round = self.should_round(round_charges)
        charges = dict(allocation.charges)
        if should_round:
            charges = distribute_remainder(
                charges,
                period.total_cost,
                self._settings.currency_minor_units,
            )

        logger.info(
            "Bill split | label=%s | fixed_cost=%.6f | rounded=%s",
            label,
            allocation.fixed_cost,
            should_round,
        )
        return SplitResult(
            label=label,
            period=period,
            allocation=allocation,
            charges=charges,
            model=model,
            diagnostics=diagnostics,
        )

    def split_bill(
        self,
        request: BillRequest,
        presence: PresenceRecord,
        household: Iterable[Resident],
        *,
        round_charges: Optional[bool] = None,
    ) -> SplitResult:
        period = presence.billing_period(
            request.bill.start,
            request.bill.end,
            request.bill.amount_due,
        )
        fixed_cost, model, diagnostics = self._resolve_fixed_cost(request, period, presence)
        return self._split(
            request.label,
            period,
            fixed_cost,
            household,
            round_charges,
            model,
            diagnostics,
        )

    def split_period(
        self,
        period: BillingPeriod,
        household: Iterable[Resident],
        *,
        history: Sequence[HistoricalPoint] = (),
        fixed_cost: Optional[float] = None,
        temperature_index: Optional[float] = None,
        label: str = "bill",
        round_charges: Optional[bool] = None,
    ) -> SplitResult:
        """Split a prepared period, estimating the fixed cost from ``history``
        unless one is given."""
        model = None
        diagnostics = None
        if fixed_cost is None:
            fixed_cost, model, diagnostics = self._estimate(
                list(history),
                HistoricalPoint(
                    occupancy=float(period.total_occupancy()),
                    cost=float(period.total_cost),
                    temperature_index=temperature_index,
                ),
            )
        return self._split(
            label,
            period,
            float(fixed_cost),
            household,
            round_charges,
            model,
            diagnostics,
        )

    def generate_invoices(
        self,
        requests: Sequence[BillRequest],
        presence: PresenceRecord,
        household: Iterable[Resident],
        *,
        round_charges: Optional[bool] = None,
    ) -> list[Invoice]:
        """Combine several bills into one invoice per resident."""
        members = sorted(set(household))
        lines: dict[Resident, list[InvoiceLine]] = {resident: [] for resident in members}

        for request in requests:
            result = self.split_bill(
                request,
                presence,
                members,
                round_charges=round_charges,
            )
            for resident in members:
                lines[resident].append(
                    InvoiceLine(
                        label=request.label,
                        amount_due=float(request.bill.amount_due),
                        fixed_amount=result.allocation.fixed_cost,
                        presence_share=result.allocation.presence_shares[resident],
                        charge=result.charges[resident],
                    )
                )

        invoices = []
        for resident in members:
            total = sum(line.charge for line in lines[resident])
            if self.should_round(round_charges):
                total = round(total, self._settings.currency_minor_units)
            invoices.append(Invoice(resident=resident, total=total, lines=lines[resident]))
        return invoices
