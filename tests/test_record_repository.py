"""Tests for loading presence and bill records from delimited files."""

from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from billshare.domain.models import Bill, PresenceInterval, Resident
from billshare.repository.record_repository import RecordRepository, RecordValidationError
from billshare.utils.config import get_settings


def _build_test_settings(**overrides):
    get_settings.cache_clear()
    base = get_settings()
    values = {"record_delimiter": "\t", "record_date_format": "%Y-%m-%d"}
    values.update(overrides)
    return replace(base, **values)


def _write(tmp_path, filename: str, rows: list[list[str]], delimiter: str = "\t"):
    path = tmp_path / filename
    path.write_text("\n".join(delimiter.join(row) for row in rows) + "\n")
    return path


def test_load_presence_with_guest_column(tmp_path) -> None:
    path = _write(
        tmp_path,
        "presence.tsv",
        [
            ["resident", "start", "end", "additional_people"],
            ["ann", "2024-01-01", "2024-02-01", "0"],
            ["ben", "2024-01-10", "2024-01-20", "2"],
        ],
    )

    record = RecordRepository(_build_test_settings()).load_presence(path)

    assert record.intervals == (
        PresenceInterval(Resident("ann"), date(2024, 1, 1), date(2024, 2, 1), 0),
        PresenceInterval(Resident("ben"), date(2024, 1, 10), date(2024, 1, 20), 2),
    )


def test_load_presence_without_guest_column(tmp_path) -> None:
    path = _write(
        tmp_path,
        "presence.tsv",
        [
            ["resident", "start", "end"],
            ["ann", "2024-01-01", "2024-01-05"],
        ],
    )

    record = RecordRepository(_build_test_settings()).load_presence(path)

    assert record.occupancy_over(date(2024, 1, 1), date(2024, 2, 1)) == 4


def test_load_bills_sorted_by_start(tmp_path) -> None:
    path = _write(
        tmp_path,
        "bills.tsv",
        [
            ["start", "end", "amount_due"],
            ["2024-02-01", "2024-03-01", "39.00"],
            ["2024-01-01", "2024-02-01", "72.50"],
        ],
    )

    bills = RecordRepository(_build_test_settings()).load_bills(path)

    assert bills == [
        Bill(date(2024, 1, 1), date(2024, 2, 1), 72.5),
        Bill(date(2024, 2, 1), date(2024, 3, 1), 39.0),
    ]


def test_custom_delimiter_and_date_format(tmp_path) -> None:
    path = _write(
        tmp_path,
        "bills.csv",
        [
            ["start", "end", "amount_due"],
            ["01/01/24", "02/01/24", "10"],
        ],
        delimiter=",",
    )
    settings = _build_test_settings(record_delimiter=",", record_date_format="%m/%d/%y")

    bills = RecordRepository(settings).load_bills(path)

    assert bills == [Bill(date(2024, 1, 1), date(2024, 2, 1), 10.0)]


def test_missing_file_raises(tmp_path) -> None:
    with pytest.raises(RecordValidationError, match="not found"):
        RecordRepository(_build_test_settings()).load_bills(tmp_path / "absent.tsv")


def test_missing_column_raises(tmp_path) -> None:
    path = _write(tmp_path, "presence.tsv", [["resident", "start"], ["ann", "2024-01-01"]])

    with pytest.raises(RecordValidationError, match="end"):
        RecordRepository(_build_test_settings()).load_presence(path)


def test_bad_date_reports_row(tmp_path) -> None:
    path = _write(
        tmp_path,
        "presence.tsv",
        [
            ["resident", "start", "end"],
            ["ann", "2024-01-01", "2024-01-05"],
            ["ben", "Jan 3", "2024-01-05"],
        ],
    )

    with pytest.raises(RecordValidationError, match="row 3"):
        RecordRepository(_build_test_settings()).load_presence(path)


def test_reversed_interval_raises(tmp_path) -> None:
    path = _write(
        tmp_path,
        "presence.tsv",
        [
            ["resident", "start", "end"],
            ["ann", "2024-01-05", "2024-01-01"],
        ],
    )

    with pytest.raises(RecordValidationError, match="row 2"):
        RecordRepository(_build_test_settings()).load_presence(path)


def test_negative_amount_raises(tmp_path) -> None:
    path = _write(
        tmp_path,
        "bills.tsv",
        [
            ["start", "end", "amount_due"],
            ["2024-01-01", "2024-02-01", "-3"],
        ],
    )

    with pytest.raises(RecordValidationError, match="amount_due"):
        RecordRepository(_build_test_settings()).load_bills(path)


def test_load_household_collects_residents(tmp_path) -> None:
    presence = _write(
        tmp_path,
        "presence.tsv",
        [
            ["resident", "start", "end"],
            ["ann", "2024-01-01", "2024-02-01"],
            ["ben", "2024-01-03", "2024-01-09"],
            ["ann", "2024-02-03", "2024-02-09"],
        ],
    )
    bills = _write(
        tmp_path,
        "bills.tsv",
        [["start", "end", "amount_due"], ["2024-01-01", "2024-02-01", "50"]],
    )

    records = RecordRepository(_build_test_settings()).load_household(presence, bills)

    assert records.residents == {Resident("ann"), Resident("ben")}
    assert len(records.bills) == 1


@pytest.mark.parametrize("guests", ["two", "1.9", "-1"])
def test_malformed_guest_count_reports_row(tmp_path, guests: str) -> None:
    path = _write(
        tmp_path,
        "presence.tsv",
        [
            ["resident", "start", "end", "additional_people"],
            ["ann", "2024-01-01", "2024-02-01", guests],
            ["ben", "2024-01-10", "2024-01-20", "1"],
        ],
    )

    with pytest.raises(RecordValidationError, match="row 2: additional_people"):
        RecordRepository(_build_test_settings()).load_presence(path)


def test_malformed_guest_count_on_later_row(tmp_path) -> None:
    path = _write(
        tmp_path,
        "presence.tsv",
        [
            ["resident", "start", "end", "additional_people"],
            ["ann", "2024-01-01", "2024-02-01", "0"],
            ["ben", "2024-01-10", "2024-01-20", "1.9"],
        ],
    )

    with pytest.raises(RecordValidationError, match="presence.tsv row 3"):
        RecordRepository(_build_test_settings()).load_presence(path)


def test_blank_guest_count_means_no_guests(tmp_path) -> None:
    path = _write(
        tmp_path,
        "presence.tsv",
        [
            ["resident", "start", "end", "additional_people"],
            ["ann", "2024-01-01", "2024-01-05", ""],
            ["ben", "2024-01-01", "2024-01-05", "2"],
        ],
    )

    record = RecordRepository(_build_test_settings()).load_presence(path)

    assert [interval.additional_people for interval in record.intervals] == [0, 2]


def test_load_bills_with_fixed_charge_and_temperature(tmp_path) -> None:
    path = _write(
        tmp_path,
        "bills.tsv",
        [
            ["start", "end", "amount_due", "fixed_charge", "temperature_index"],
            ["2024-01-01", "2024-02-01", "80", "12.5", "3.25"],
            ["2024-02-01", "2024-03-01", "60", "", ""],
        ],
    )

    bills = RecordRepository(_build_test_settings()).load_bills(path)

    assert bills == [
        Bill(date(2024, 1, 1), date(2024, 2, 1), 80.0, 12.5, 3.25),
        Bill(date(2024, 2, 1), date(2024, 3, 1), 60.0, 0.0, None),
    ]


def test_fixed_charge_above_amount_due_raises(tmp_path) -> None:
    path = _write(
        tmp_path,
        "bills.tsv",
        [
            ["start", "end", "amount_due", "fixed_charge"],
            ["2024-01-01", "2024-02-01", "10", "12"],
        ],
    )

    with pytest.raises(RecordValidationError, match="row 2: fixed_charge"):
        RecordRepository(_build_test_settings()).load_bills(path)


def test_malformed_temperature_index_raises(tmp_path) -> None:
    path = _write(
        tmp_path,
        "bills.tsv",
        [
            ["start", "end", "amount_due", "temperature_index"],
            ["2024-01-01", "2024-02-01", "10", "warm"],
        ],
    )

    with pytest.raises(RecordValidationError, match="temperature_index"):
        RecordRepository(_build_test_settings()).load_bills(path)
