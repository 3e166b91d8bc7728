"""Timestamp parsing and formatting for feed payloads and query cursors."""
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

CURSOR_FORMAT = '%Y-%m-%dT%H:%M:%S'
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_RFC3339 = re.compile(
    r'^(\d{4})-(\d{2})-(\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})'
    r'(?:\.(\d+))?'
    r'([Zz]|[+-]\d{2}:?\d{2})?$'
)


def parse_rfc3339(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an RFC 3339 date-time into an aware UTC datetime.

    Fractional seconds of any length are accepted and truncated to
    microseconds. A missing offset is taken as UTC.

    Args:
        value: Date-time string, e.g. "2014-09-09T12:21:08.000-07:00"

    Returns:
        Aware datetime in UTC or None if the value does not parse
    """
    if not value or not isinstance(value, str):
        return None

    match = _RFC3339.match(value.strip())
    if not match:
        return None

    year, month, day, hour, minute, second, fraction, offset = match.groups()
    micros = int((fraction or '0')[:6].ljust(6, '0'))
    try:
        parsed = datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second), micros
        )
    except ValueError:
        return None

    if offset and offset not in ('Z', 'z'):
        offset = offset.replace(':', '')
        try:
            tz = datetime.strptime(offset, '%z').tzinfo
        except ValueError:
            return None
        return parsed.replace(tzinfo=tz).astimezone(timezone.utc)

    return parsed.replace(tzinfo=timezone.utc)


def parse_all_day(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an all-day date ("YYYY-MM-DD") as midnight UTC.

    Args:
        value: Date string

    Returns:
        Aware datetime or None if the value does not parse
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.strptime(value.strip(), '%Y-%m-%d')
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def format_cursor(moment: datetime) -> str:
    """
    Format a datetime as a query cursor: yyyy-MM-dd'T'HH:mm:ss.SSS'Z' in UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return f"{moment.strftime(CURSOR_FORMAT)}.{moment.microsecond // 1000:03d}Z"


def to_millis(moment: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - EPOCH) // timedelta(milliseconds=1)


def from_millis(millis: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=int(millis))


def parse_cursor_value(value) -> Optional[datetime]:
    """
    Accept a cursor given either as epoch milliseconds or an RFC 3339 string.
    """
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return from_millis(int(value))
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return from_millis(int(value.strip()))
    return parse_rfc3339(value) or parse_all_day(value)
