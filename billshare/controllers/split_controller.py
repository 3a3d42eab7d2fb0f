"""HTTP controller layer for fixed-cost estimation and bill splitting."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from billshare.controllers.dependencies import get_cost_sharing_service
from billshare.domain.models import (
    Bill,
    HistoricalPoint,
    IntervalValidationError,
    PeriodValidationError,
    PresenceInterval,
    PresenceRecord,
    Resident,
)
from billshare.services.allocation_service import (
    AllocationValidationError,
    BillRequest,
    CostSharingService,
)
from billshare.services.estimation_service import (
    EstimationError,
    compute_diagnostics,
    estimate_fixed_cost,
    fit_cost_model,
)
from billshare.utils.config import get_settings
from billshare.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["splitting"])


class HistoricalPointRequest(BaseModel):
    occupancy: float = Field(ge=0.0)
    cost: float
    temperature_index: float | None = None


class PresenceIntervalRequest(BaseModel):
    resident: str = Field(min_length=1)
    start: date
    end: date
    additional_people: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_interval_order(self) -> "PresenceIntervalRequest":
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self


class BillPayload(BaseModel):
    start: date
    end: date
    amount_due: float = Field(ge=0.0)
    fixed_charge: float = Field(default=0.0, ge=0.0)
    temperature_index: float | None = None


class FixedCostRequest(BaseModel):
    history: list[HistoricalPointRequest]
    temperature_index: float | None = None


class FixedCostResponse(BaseModel):
    intercept: float
    slope: float
    temperature_slope: float | None = None
    fixed_cost: float
    r_squared: float


class AllocateRequest(BaseModel):
    start: date
    end: date
    total_cost: float = Field(ge=0.0)
    residents: list[str] = Field(min_length=1)
    presence: list[PresenceIntervalRequest] = Field(default_factory=list)
    history: list[HistoricalPointRequest] | None = None
    fixed_cost: float | None = None
    temperature_index: float | None = None
    round_charges: bool | None = None

    @model_validator(mode="after")
    def validate_fixed_cost_source(self) -> "AllocateRequest":
        if self.history is None and self.fixed_cost is None:
            raise ValueError("either history or fixed_cost is required")
        return self


class AllocateResponse(BaseModel):
    charges: dict[str, float]
    fixed_cost: float
    variable_cost: float = Field(ge=0.0)
    fixed_share: float = Field(ge=0.0)
    variable_cost_clamped: bool
    fixed_cost_clamped: bool
    zero_occupancy_fallback: bool


class BillSplitRequest(BaseModel):
    label: str = Field(min_length=1)
    bill: BillPayload
    history: list[BillPayload] = Field(default_factory=list)
    fixed_cost: float | None = None
    fully_fixed: bool = False


class InvoicesRequest(BaseModel):
    residents: list[str] = Field(min_length=1)
    presence: list[PresenceIntervalRequest] = Field(default_factory=list)
    bills: list[BillSplitRequest] = Field(min_length=1)
    round_charges: bool | None = None


class InvoiceLineResponse(BaseModel):
    label: str
    amount_due: float
    fixed_amount: float
    presence_share: float = Field(ge=0.0, le=1.0)
    charge: float


class InvoiceResponse(BaseModel):
    resident: str
    total: float
    lines: list[InvoiceLineResponse]


class InvoicesResponse(BaseModel):
    invoices: list[InvoiceResponse]


def _to_presence_record(items: list[PresenceIntervalRequest]) -> PresenceRecord:
    return PresenceRecord.from_intervals(
        PresenceInterval(
            resident=Resident(item.resident),
            start=item.start,
            end=item.end,
            additional_people=item.additional_people,
        )
        for item in items
    )


def _to_history(items: list[HistoricalPointRequest]) -> list[HistoricalPoint]:
    return [
        HistoricalPoint(
            occupancy=item.occupancy,
            cost=item.cost,
            temperature_index=item.temperature_index,
        )
        for item in items
    ]


def _to_bill(payload: BillPayload) -> Bill:
    return Bill(
        start=payload.start,
        end=payload.end,
        amount_due=payload.amount_due,
        fixed_charge=payload.fixed_charge,
        temperature_index=payload.temperature_index,
    )


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": settings.app_version}


@router.post(
    "/fixed_cost",
    response_model=FixedCostResponse,
    status_code=status.HTTP_200_OK,
)
async def fixed_cost(payload: FixedCostRequest) -> FixedCostResponse:
    """Fit the cost model and report its zero-occupancy extrapolation."""
    history = _to_history(payload.history)
    try:
        model = fit_cost_model(history)
        estimated = estimate_fixed_cost(model, payload.temperature_index)
        diagnostics = compute_diagnostics(model, history)
    except EstimationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc

    return FixedCostResponse(
        intercept=model.intercept,
        slope=model.slope,
        temperature_slope=model.temperature_slope,
        fixed_cost=estimated,
        r_squared=diagnostics.r_squared,
    )


@router.post(
    "/allocate",
    response_model=AllocateResponse,
    status_code=status.HTTP_200_OK,
)
async def allocate_bill(
    payload: AllocateRequest,
    service: CostSharingService = Depends(get_cost_sharing_service),
) -> AllocateResponse:
    """Split one bill given either a bill history or an explicit fixed cost."""
    try:
        period = _to_presence_record(payload.presence).billing_period(
            payload.start,
            payload.end,
            payload.total_cost,
        )
        split = service.split_period(
            period,
            [Resident(name) for name in payload.residents],
            history=_to_history(payload.history or []),
            fixed_cost=payload.fixed_cost,
            temperature_index=payload.temperature_index,
            round_charges=payload.round_charges,
        )
    except EstimationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    except (
        AllocationValidationError,
        PeriodValidationError,
        IntervalValidationError,
    ) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    result = split.allocation
    return AllocateResponse(
        charges={str(resident): amount for resident, amount in split.charges.items()},
        fixed_cost=result.fixed_cost,
        variable_cost=result.variable_cost,
        fixed_share=result.fixed_share,
        variable_cost_clamped=result.variable_cost_clamped,
        fixed_cost_clamped=result.fixed_cost_clamped,
        zero_occupancy_fallback=result.zero_occupancy_fallback,
    )


@router.post(
    "/invoices",
    response_model=InvoicesResponse,
    status_code=status.HTTP_200_OK,
)
async def invoices(
    payload: InvoicesRequest,
    service: CostSharingService = Depends(get_cost_sharing_service),
) -> InvoicesResponse:
    """Split several labelled bills and aggregate one invoice per resident."""
    requests = [
        BillRequest(
            label=item.label,
            bill=_to_bill(item.bill),
            history=tuple(_to_bill(past) for past in item.history),
            fixed_cost=item.fixed_cost,
            fully_fixed=item.fully_fixed,
        )
        for item in payload.bills
    ]
    try:
        result = service.generate_invoices(
            requests,
            _to_presence_record(payload.presence),
            [Resident(name) for name in payload.residents],
            round_charges=payload.round_charges,
        )
    except EstimationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    except (
        AllocationValidationError,
        PeriodValidationError,
        IntervalValidationError,
    ) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    logger.info("Invoices generated | bills=%s | residents=%s", len(requests), len(result))
    return InvoicesResponse(
        invoices=[
            InvoiceResponse(
                resident=str(invoice.resident),
                total=invoice.total,
                lines=[
                    InvoiceLineResponse(
                        label=line.label,
                        amount_due=line.amount_due,
                        fixed_amount=line.fixed_amount,
                        presence_share=line.presence_share,
                        charge=line.charge,
                    )
                    for line in invoice.lines
                ],
            )
            for invoice in result
        ]
    )
