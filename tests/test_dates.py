from __future__ import annotations

from datetime import date, datetime

import pytest

from spreadsheet_merge.dates import (
    INVALID_DATE,
    date_key,
    format_date,
    is_iso_date,
    is_serial_date,
    parse_date,
    serial_to_iso,
)


def test_serial_to_iso_drops_time_of_day() -> None:
    assert serial_to_iso(44562) == "2022-01-01"
    assert serial_to_iso(44562.99) == "2022-01-01"
    assert serial_to_iso(25570) == "1970-01-02"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (25569, False),
        (25570, True),
        (44562.5, True),
        (2958465, True),
        (2958466, False),
        (100, False),
        (True, False),
        ("44562", False),
        (None, False),
    ],
)
def test_is_serial_date_range_is_exclusive(value: object, expected: bool) -> None:
    assert is_serial_date(value) is expected


def test_is_iso_date_requires_real_day() -> None:
    assert is_iso_date("2023-01-15") is True
    assert is_iso_date("2023-02-30") is False
    assert is_iso_date("2023-1-5") is False
    assert is_iso_date(20230115) is False


def test_parse_date_accepts_iso_serials_and_loose_text() -> None:
    assert parse_date("2023-01-15") == date(2023, 1, 15)
    assert parse_date(44562) == date(2022, 1, 1)
    assert parse_date("44562") == date(2022, 1, 1)
    assert parse_date(44562.75) == date(2022, 1, 1)
    assert parse_date("Jan 15, 2023") == date(2023, 1, 15)
    assert parse_date(datetime(2024, 3, 1, 12, 30)) == date(2024, 3, 1)


@pytest.mark.parametrize("value", [None, "", "   ", "not a date", True, float("nan"), "99999999999"])
def test_parse_date_returns_none_for_unparseable_values(value: object) -> None:
    assert parse_date(value) is None


def test_format_date_groupings() -> None:
    day = date(2023, 1, 5)

    assert format_date(day, "day") == "2023-01-05"
    assert format_date(day, "month") == "2023-01"
    assert format_date(day, "year") == "2023"
    assert format_date(None, "month") == INVALID_DATE


def test_format_date_rejects_unknown_grouping() -> None:
    with pytest.raises(ValueError, match="Invalid date grouping"):
        format_date(date(2023, 1, 5), "week")


def test_date_key_buckets_or_marks_invalid() -> None:
    assert date_key("2023-01-31", "month") == "2023-01"
    assert date_key(44562, "year") == "2022"
    assert date_key("garbage", "day") == INVALID_DATE
