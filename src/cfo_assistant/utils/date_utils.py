"""Date parsing and calendar arithmetic utilities."""

import calendar
import re
from datetime import date, datetime, timedelta, timezone

# The accounting provider's JSON serializer emits .NET style dates:
# "/Date(1518685950940+0000)/" (milliseconds since the epoch, optional offset)
PROVIDER_DATE_PATTERN = re.compile(r"^/Date\((-?\d+)([+-]\d{4})?\)/$")

# Common date format patterns
#
# Slash-separated dates are interpreted as US format (MM/DD/YYYY); the
# provider itself only ever sends ISO or /Date()/ values, these exist for
# hand-written snapshot files and CLI input.
DATE_PATTERNS = [
    (r"^(\d{4})-(\d{1,2})-(\d{1,2})$", "%Y-%m-%d"),
    (r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})$", "%Y-%m-%dT%H:%M:%S"),
    (r"^(\d{1,2})/(\d{1,2})/(\d{4})$", "%m/%d/%Y"),
    (r"^(\d{1,2})-(\w{3})-(\d{4})$", "%d-%b-%Y"),
    (r"^(\d{1,2})\s+(\w{3})\s+(\d{4})$", "%d %b %Y"),
    (r"^(\d{8})$", "%Y%m%d"),
]

COMPILED_PATTERNS = [(re.compile(pattern), fmt) for pattern, fmt in DATE_PATTERNS]


def _parse_provider_date(match: re.Match[str]) -> date:
    millis = int(match.group(1))
    offset = match.group(2)
    moment = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    if offset:
        sign = 1 if offset[0] == "+" else -1
        hours, minutes = int(offset[1:3]), int(offset[3:5])
        moment += sign * timedelta(hours=hours, minutes=minutes)
    return moment.date()


def parse_date(raw_date: object) -> date:
    """Parse a provider or user supplied date into a date object.

    Handles:
    - date / datetime objects (returned as a date)
    - Provider JSON dates: /Date(1518685950940+0000)/
    - ISO: 2024-01-15, 2024-01-15T00:00:00, 2024-01-15T10:00:00+00:00
    - US: 01/15/2024
    - Text: 15-Jan-2024, 15 Jan 2024
    - Compact: 20240115

    Args:
        raw_date: The raw value to parse.

    Returns:
        Parsed date object.

    Raises:
        ValueError: If the date cannot be parsed.
    """
    if isinstance(raw_date, datetime):
        return raw_date.date()
    if isinstance(raw_date, date):
        return raw_date
    if not isinstance(raw_date, str):
        raise ValueError(f"Cannot parse date: {raw_date!r}")

    date_str = raw_date.strip()
    if not date_str:
        raise ValueError("Empty date string")

    provider_match = PROVIDER_DATE_PATTERN.match(date_str)
    if provider_match:
        return _parse_provider_date(provider_match)

    for pattern, fmt in COMPILED_PATTERNS:
        if pattern.match(date_str):
            try:
                return datetime.strptime(date_str, fmt).date()
            except ValueError:
                continue

    # ISO datetimes with fractional seconds or offsets
    try:
        return datetime.fromisoformat(date_str).date()
    except ValueError:
        pass

    raise ValueError(f"Cannot parse date: '{raw_date}'")


def safe_parse_date(raw_date: object, default: date | None = None) -> date | None:
    """Safely parse a date, returning default on failure.

    Args:
        raw_date: The raw value to parse.
        default: Default value if parsing fails.

    Returns:
        Parsed date or default.
    """
    if raw_date is None or raw_date == "":
        return default

    try:
        return parse_date(raw_date)
    except ValueError:
        return default


def date_to_iso(d: date | None) -> str | None:
    """Convert a date to ISO 8601 format (YYYY-MM-DD), passing None through.

    Args:
        d: Date to convert.

    Returns:
        ISO format date string or None.
    """
    return d.isoformat() if d is not None else None


def month_end(d: date) -> date:
    """Return the last day of the month containing ``d``."""
    return date(d.year, d.month, calendar.monthrange(d.year, d.month)[1])


def add_months(d: date, months: int) -> date:
    """Shift a date by a number of calendar months.

    The day of month is clamped to the target month's length, so
    Jan 31 + 1 month is Feb 28 (or 29).

    Args:
        d: Starting date.
        months: Months to add (may be negative).

    Returns:
        Shifted date.
    """
    month_index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_years(d: date, years: int) -> date:
    """Shift a date by whole years (Feb 29 clamps to Feb 28)."""
    return add_months(d, years * 12)


def days_between(start: date, end: date) -> int:
    """Signed number of days from ``start`` to ``end``."""
    return (end - start).days


def is_date_in_range(
    d: date,
    start_date: date | None = None,
    end_date: date | None = None,
) -> bool:
    """Check if a date is within a range.

    Args:
        d: Date to check.
        start_date: Start of range (inclusive). None means no lower bound.
        end_date: End of range (inclusive). None means no upper bound.

    Returns:
        True if date is within range.
    """
    if start_date is not None and d < start_date:
        return False
    if end_date is not None and d > end_date:
        return False
    return True
