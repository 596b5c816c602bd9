"""
Date and Time utilities

This module handles XMLTV timestamp decoding, the fallback offset policy for
timestamps without an explicit UTC offset, and ISO8601 parsing for API input.
Centralizes all date parsing logic to maintain consistency across the application.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo
import logging
import re

logger = logging.getLogger(__name__)

# Maps a naive wall-clock time to the UTC offset assumed for it
OffsetPolicy = Callable[[datetime], timedelta]

_XMLTV_TIME_RE = re.compile(r"(\d{14})\s*([+-]\d{4})?")


class DateFormatError(ValueError):
    """Raised when date format is invalid"""
    pass


def utc_offset_policy(_local: datetime) -> timedelta:
    """Treat offset-less timestamps as UTC."""
    return timedelta(0)


def fixed_offset_policy(hours: float) -> OffsetPolicy:
    """Always assume the same offset, e.g. fixed_offset_policy(1) for CET."""
    offset = timedelta(hours=hours)

    def policy(_local: datetime) -> timedelta:
        return offset

    return policy


def zoneinfo_offset_policy(tz_name: str) -> OffsetPolicy:
    """
    Assume offset-less timestamps are wall-clock times in an IANA zone.

    The offset is looked up for the timestamp itself, so daylight saving is
    toggled per programme rather than by the current date.

    Args:
        tz_name: IANA timezone name (e.g. 'Europe/Warsaw') or 'UTC'

    Returns:
        Offset policy callable
    """
    if tz_name == "UTC":
        return utc_offset_policy

    zone = ZoneInfo(tz_name)

    def policy(local: datetime) -> timedelta:
        return local.replace(tzinfo=zone).utcoffset() or timedelta(0)

    return policy


def parse_xmltv_time(time_str: str, offset_policy: OffsetPolicy = utc_offset_policy) -> datetime:
    """
    Convert XMLTV time format to a UTC datetime

    Args:
        time_str: XMLTV time like '20231215120000 +0100' or '20231215120000'
        offset_policy: Offset assumed when the timestamp carries none

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        DateFormatError: If the timestamp does not start with 14 digits or is not a valid date
    """
    match = _XMLTV_TIME_RE.match(time_str.strip())
    if not match:
        raise DateFormatError(f"Invalid XMLTV time: '{time_str}'")

    date_part, tz_part = match.groups()
    try:
        local = datetime.strptime(date_part, "%Y%m%d%H%M%S")
    except ValueError as e:
        raise DateFormatError(f"Invalid XMLTV time: '{time_str}'") from e

    if tz_part:
        sign = 1 if tz_part[0] == "+" else -1
        offset = sign * timedelta(hours=int(tz_part[1:3]), minutes=int(tz_part[3:5]))
    else:
        offset = offset_policy(local)

    return (local - offset).replace(tzinfo=timezone.utc)


def _normalize_iso8601_string(date_str: str) -> str:
    """Normalize ISO8601 string by replacing 'Z' with '+00:00'"""
    return date_str.replace('Z', '+00:00') if date_str.endswith('Z') else date_str


def parse_iso8601_to_utc(date_str: str) -> datetime:
    """
    Parse ISO8601 date string and convert to UTC datetime

    Args:
        date_str: ISO8601 datetime string (e.g., '2025-10-09T00:00:00Z' or '2025-10-09T00:00:00+01:00')

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        DateFormatError: If the date string format is invalid
    """
    try:
        normalized = _normalize_iso8601_string(date_str)
        dt = datetime.fromisoformat(normalized)
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, AttributeError) as e:
        raise DateFormatError(f"Invalid ISO8601 datetime format: '{date_str}'") from e


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
