"""
Period boundary helpers.

Month identifiers ("YYYY-MM") are always computed in the configured
leaderboard timezone so that a rollover at 02:00 local time on the 1st
closes the month that just ended there, not the UTC one.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from mathboard.modules.shared.exceptions import ValidationError

_MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Return a tzinfo for an IANA name; unknown or empty names raise."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError("timezone", f"Unknown timezone {name!r}") from exc


def month_identifier(at: datetime) -> str:
    return f"{at.year:04d}-{at.month:02d}"


def current_month_identifier(tz: tzinfo, now: Optional[datetime] = None) -> str:
    moment = (now or datetime.now(tz=timezone.utc)).astimezone(tz)
    return month_identifier(moment)


def previous_month_identifier(at: datetime) -> str:
    """Month that ended before `at` (evaluated in `at`'s own timezone)."""
    first_of_month = at.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return month_identifier(first_of_month - timedelta(days=1))


def validate_month_identifier(value: str) -> str:
    if not isinstance(value, str) or not _MONTH_PATTERN.match(value):
        raise ValidationError("month_identifier", f"Expected YYYY-MM, got {value!r}")
    return value
