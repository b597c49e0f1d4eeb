"""Spreadsheet date helpers."""

from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime, timedelta
from typing import Any, Literal

import pandas as pd

from spreadsheet_merge import SERIAL_DATE_MAX, SERIAL_DATE_MIN

logger = logging.getLogger(__name__)

INVALID_DATE = "Invalid Date"

DateGrouping = Literal["day", "month", "year"]
DATE_GROUPINGS: tuple[str, ...] = ("day", "month", "year")

# Serial 25569 is 1970-01-01 in the 1899-12-30 based spreadsheet calendar.
_UNIX_EPOCH_SERIAL = 25569
_UNIX_EPOCH = date(1970, 1, 1)

_NUMERIC_RE = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)\s*$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ── Serial numbers ───────────────────────────────────────────────


def is_serial_date(value: Any) -> bool:
    """True for numbers inside the plausible date-serial range."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return SERIAL_DATE_MIN < value < SERIAL_DATE_MAX


def serial_to_date(serial: float) -> date:
    """Convert a spreadsheet serial number to a calendar day (time dropped).

    Raises ``OverflowError`` when the day falls outside the calendar.
    """
    days = math.floor(serial) - _UNIX_EPOCH_SERIAL
    return _UNIX_EPOCH + timedelta(days=days)


def serial_to_iso(serial: float) -> str:
    return serial_to_date(serial).isoformat()


def _serial_or_none(serial: float) -> date | None:
    if not math.isfinite(serial):
        return None
    try:
        return serial_to_date(serial)
    except (OverflowError, ValueError):
        return None


# ── Parsing ──────────────────────────────────────────────────────


def is_iso_date(value: Any) -> bool:
    """True for ``YYYY-MM-DD`` strings naming a real day."""
    if not isinstance(value, str) or not _ISO_DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def parse_date(value: Any) -> date | None:
    """Parse *value* as a calendar day, or return ``None``.

    Numbers and purely numeric strings are spreadsheet serials; any other
    string goes through ISO parsing and then pandas' lenient parser
    (``"Jan 5, 2023"``, ``"01/05/2023"`` ...).  Never raises.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return _serial_or_none(float(value))

    text = str(value).strip()
    if not text:
        return None
    if _NUMERIC_RE.match(text):
        return _serial_or_none(float(text))
    if is_iso_date(text):
        return date.fromisoformat(text)

    try:
        parsed = pd.to_datetime(text, errors="coerce")
    except (ValueError, OverflowError, TypeError):
        parsed = pd.NaT
    if pd.isna(parsed):
        logger.debug("Unable to parse date: %r", text)
        return None
    return parsed.date()


# ── Bucketing ────────────────────────────────────────────────────


def format_date(day: date | None, grouping: str = "day") -> str:
    """Render *day* as ``YYYY-MM-DD``, ``YYYY-MM`` or ``YYYY``."""
    if grouping not in DATE_GROUPINGS:
        raise ValueError(f"Invalid date grouping: {grouping!r}. Use day/month/year.")
    if day is None:
        return INVALID_DATE
    if grouping == "month":
        return f"{day.year:04d}-{day.month:02d}"
    if grouping == "year":
        return f"{day.year:04d}"
    return day.isoformat()


def date_key(value: Any, grouping: str = "day") -> str:
    """Parse *value* and bucket it; unparseable input keys to ``INVALID_DATE``."""
    return format_date(parse_date(value), grouping)
