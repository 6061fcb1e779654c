"""
Timestamp and calendar-date helpers.

Design:
- **Storage**: movement timestamps are tz-aware UTC.
- **Reporting**: ledger entries carry a calendar `date` in the reporting
  timezone (see `Settings.REPORTING_TIMEZONE`).

Rules:
- Naive `datetime` (no tzinfo) is assumed to be **UTC**.
- ISO8601 strings ending with 'Z' are treated as UTC.
- Numeric epoch: values >= 1e12 are treated as milliseconds, otherwise seconds.
"""

from __future__ import annotations

from datetime import date, datetime, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from inventory_ledger.errors import InvalidInput

UTC = ZoneInfo("UTC")


def utc_now() -> datetime:
    """Return tz-aware current time in UTC."""

    return datetime.now(tz=UTC)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a timestamp (datetime, ISO string, epoch s/ms) into a tz-aware UTC datetime.
    """
    if value is None:
        raise InvalidInput("timestamp value is None")

    if isinstance(value, datetime):
        dt = value
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt.astimezone(UTC)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        v = float(value)
        seconds = (v / 1000.0) if abs(v) >= 1e12 else v
        return datetime.fromtimestamp(seconds, tz=UTC)

    if isinstance(value, str):
        s = value.strip()
        if not s:
            raise InvalidInput("timestamp string is empty")
        if s.endswith("Z") or s.endswith("z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError as e:
            raise InvalidInput(f"unparseable timestamp string: {value!r}") from e
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt.astimezone(UTC)

    raise InvalidInput(f"unsupported timestamp type: {type(value).__name__}")


def reporting_date(value: Any, *, tz: tzinfo) -> date:
    """Calendar day of a timestamp as seen in the reporting timezone."""

    return parse_timestamp(value).astimezone(tz).date()


def parse_calendar_date(value: Any) -> date:
    """
    Accept a `date` or a 'YYYY-MM-DD' string. Datetimes are rejected: callers
    must decide the timezone through `reporting_date` first.
    """
    if isinstance(value, datetime):
        raise InvalidInput("expected a calendar date, got a datetime")
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as e:
            raise InvalidInput(f"malformed date: {value!r}") from e
    raise InvalidInput(f"unsupported date type: {type(value).__name__}")
