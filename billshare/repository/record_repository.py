"""Repository layer responsible for reading presence and bill records."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from billshare.domain.models import (
    Bill,
    IntervalValidationError,
    PresenceInterval,
    PresenceRecord,
    Resident,
)
from billshare.utils.config import Settings, get_settings
from billshare.utils.logger import get_logger


logger = get_logger(__name__)

PathLike = Union[str, Path]

_PRESENCE_COLUMNS = ["resident", "start", "end"]
_BILL_COLUMNS = ["start", "end", "amount_due"]


class RecordValidationError(Exception):
    """Raised when a record file is missing columns or holds malformed rows."""


@dataclass(frozen=True)
class HouseholdRecords:
    presence: PresenceRecord
    bills: list[Bill]

    @property
    def residents(self) -> set[Resident]:
        return self.presence.residents()


class RecordRepository:
    """Loads delimited record files so services stay storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def _read_frame(self, path: PathLike, required: list[str]) -> pd.DataFrame:
        source = Path(path)
        if not source.exists():
            raise RecordValidationError(f"record file not found: {source}")

        frame = pd.read_csv(
            source,
            sep=self._settings.record_delimiter,
            dtype=str,
            skipinitialspace=True,
        )
        frame.columns = [str(column).strip().lower() for column in frame.columns]
        missing = [column for column in required if column not in frame.columns]
        if missing:
            raise RecordValidationError(
                f"{source.name} is missing required columns: {', '.join(missing)}"
            )
        return frame.dropna(how="all")

    def _parse_dates(self, frame: pd.DataFrame, source: PathLike) -> pd.DataFrame:
        parsed = frame.copy()
        for column in ("start", "end"):
            parsed[column] = pd.to_datetime(
                parsed[column].str.strip(),
                format=self._settings.record_date_format,
                errors="coerce",
            )
        bad_rows = parsed[parsed["start"].isna() | parsed["end"].isna()]
        if not bad_rows.empty:
            row_number = int(bad_rows.index[0]) + 2
            raise RecordValidationError(
                f"{Path(source).name} row {row_number}: dates must follow "
                f"{self._settings.record_date_format}"
            )
        return parsed

    def _numeric(
        self,
        frame: pd.DataFrame,
        column: str,
        source: PathLike,
        requirement: str,
        *,
        required: bool = False,
        non_negative: bool = False,
        whole: bool = False,
    ) -> pd.Series:
        """Parse a numeric column; blank cells stay NaN unless ``required``."""
        raw = frame[column].fillna("").str.strip()
        values = pd.to_numeric(raw, errors="coerce")
        invalid = (raw != "") & values.isna()
        if required:
            invalid |= values.isna()
        if non_negative:
            invalid |= values < 0
        if whole:
            invalid |= values.notna() & (values % 1 != 0)

        bad_rows = invalid[invalid]
        if not bad_rows.empty:
            row_number = int(bad_rows.index[0]) + 2
            raise RecordValidationError(
                f"{Path(source).name} row {row_number}: {column} must be {requirement}"
            )
        return values

    def load_presence(self, path: PathLike) -> PresenceRecord:
        frame = self._read_frame(path, _PRESENCE_COLUMNS)
        frame = self._parse_dates(frame, path)
        if "additional_people" in frame.columns:
            extra = self._numeric(
                frame,
                "additional_people",
                path,
                "a non-negative whole number",
                non_negative=True,
                whole=True,
            ).fillna(0)
        else:
            extra = pd.Series(0, index=frame.index)

        intervals = []
        for index, row in frame.iterrows():
            name = str(row["resident"]).strip()
            if not name or name.lower() == "nan":
                raise RecordValidationError(
                    f"{Path(path).name} row {int(index) + 2}: resident is required"
                )
            try:
                intervals.append(
                    PresenceInterval(
                        resident=Resident(name),
                        start=row["start"].date(),
                        end=row["end"].date(),
                        additional_people=int(extra[index]),
                    )
                )
            except IntervalValidationError as exc:
                raise RecordValidationError(
                    f"{Path(path).name} row {int(index) + 2}: {exc}"
                ) from exc

        logger.info("Presence records loaded | path=%s | intervals=%s", path, len(intervals))
        return PresenceRecord.from_intervals(intervals)

    def load_bills(self, path: PathLike) -> list[Bill]:
        """Load bills sorted by start date.

        Optional columns: ``fixed_charge`` (itemised fixed fees, blank means
        none) and ``temperature_index`` (blank means the bill has none).
        """
        frame = self._read_frame(path, _BILL_COLUMNS)
        frame = self._parse_dates(frame, path)
        amounts = self._numeric(
            frame,
            "amount_due",
            path,
            "a non-negative number",
            required=True,
            non_negative=True,
        )
        if "fixed_charge" in frame.columns:
            fixed_charges = self._numeric(
                frame,
                "fixed_charge",
                path,
                "a non-negative number",
                non_negative=True,
            ).fillna(0.0)
            over = fixed_charges[fixed_charges > amounts]
            if not over.empty:
                raise RecordValidationError(
                    f"{Path(path).name} row {int(over.index[0]) + 2}: "
                    "fixed_charge cannot exceed amount_due"
                )
        else:
            fixed_charges = pd.Series(0.0, index=frame.index)
        if "temperature_index" in frame.columns:
            temperature = self._numeric(frame, "temperature_index", path, "a number")
        else:
            temperature = pd.Series(float("nan"), index=frame.index)

        bills = [
            Bill(
                start=row["start"].date(),
                end=row["end"].date(),
                amount_due=float(amounts[index]),
                fixed_charge=float(fixed_charges[index]),
                temperature_index=(
                    None if pd.isna(temperature[index]) else float(temperature[index])
                ),
            )
            for index, row in frame.iterrows()
        ]
        bills.sort(key=lambda bill: bill.start)
        logger.info("Bill records loaded | path=%s | bills=%s", path, len(bills))
        return bills

    def load_household(self, presence_path: PathLike, bills_path: PathLike) -> HouseholdRecords:
        return HouseholdRecords(
            presence=self.load_presence(presence_path),
            bills=self.load_bills(bills_path),
        )
