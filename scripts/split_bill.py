#!/usr/bin/env python3
"""Split the most recent bill in a bill file among the household."""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from typing import Optional, Sequence

from billshare.domain.models import PeriodValidationError
from billshare.repository.record_repository import RecordRepository, RecordValidationError
from billshare.services.allocation_service import (
    AllocationValidationError,
    BillRequest,
    CostSharingService,
)
from billshare.services.estimation_service import EstimationError
from billshare.utils.config import get_settings
from billshare.utils.logger import configure_logging

SEPARATOR_LINE = "=" * 44


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("presence", help="delimited file of presence intervals")
    parser.add_argument("bills", help="delimited file of bills; the latest is split")
    parser.add_argument("--label", default="utilities", help="bill label for the report")
    parser.add_argument(
        "--fixed-cost",
        type=float,
        default=None,
        help="use this fixed cost instead of estimating it from the history",
    )
    parser.add_argument(
        "--round",
        dest="round_charges",
        action="store_true",
        help="round charges to the currency minor unit",
    )
    parser.add_argument(
        "--delimiter",
        default=None,
        help="record delimiter (defaults to BILLSHARE_RECORD_DELIMITER)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="log level for diagnostics written to stderr",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.log_level is not None:
        configure_logging(args.log_level)
    settings = get_settings()
    if args.delimiter is not None:
        settings = replace(settings, record_delimiter=args.delimiter)

    repository = RecordRepository(settings)
    service = CostSharingService(settings)
    try:
        records = repository.load_household(args.presence, args.bills)
        if not records.bills:
            raise RecordValidationError("bill file contains no bills")
        *history, current = records.bills
        result = service.split_bill(
            BillRequest(
                label=args.label,
                bill=current,
                history=tuple(history),
                fixed_cost=args.fixed_cost,
            ),
            records.presence,
            records.residents,
            round_charges=args.round_charges,
        )
    except (
        RecordValidationError,
        EstimationError,
        AllocationValidationError,
        PeriodValidationError,
    ) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    allocation = result.allocation
    print(SEPARATOR_LINE)
    print(f" {args.label}: {current.start} .. {current.end}")
    print(SEPARATOR_LINE)
    print(f" amount due     : {current.amount_due:.2f}")
    print(f" fixed cost     : {allocation.fixed_cost:.2f}")
    print(f" variable cost  : {allocation.variable_cost:.2f}")
    if allocation.variable_cost_clamped:
        print(" note: estimated fixed cost exceeded the bill; split evenly")
    if allocation.zero_occupancy_fallback:
        print(" note: nobody was present; variable cost split evenly")
    print(SEPARATOR_LINE)
    for resident, charge in sorted(result.charges.items()):
        print(f" {resident}: {charge:.2f}")
    print(SEPARATOR_LINE)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
