"""
Date utility functions for invoice processing.

Provides date parsing, formatting and distance helpers for the
date formats found on European and US invoices.
"""

import re
from datetime import UTC, date, datetime


# Common date format patterns with their strptime formats
DATE_FORMATS: list[tuple[str, str]] = [
    # ISO format
    (r"^\d{4}-\d{2}-\d{2}$", "%Y-%m-%d"),  # YYYY-MM-DD
    # German / European formats
    (r"^\d{1,2}\.\d{1,2}\.\d{4}$", "%d.%m.%Y"),  # DD.MM.YYYY
    (r"^\d{1,2}-\d{1,2}-\d{4}$", "%d-%m-%Y"),  # DD-MM-YYYY
    # US format
    (r"^\d{1,2}/\d{1,2}/\d{4}$", "%m/%d/%Y"),  # MM/DD/YYYY
]

GERMAN_DATE_PATTERN = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})$")


def parse_date(
    date_string: str,
    formats: list[tuple[str, str]] | None = None,
    default: date | None = None,
) -> date | None:
    """
    Parse a date string into a date object.

    Args:
        date_string: String representation of date.
        formats: Optional list of (pattern, strptime_format) tuples.
        default: Default value if parsing fails.

    Returns:
        Parsed date object or default value.

    Example:
        parse_date("15.01.2024") -> date(2024, 1, 15)
        parse_date("2024-01-15") -> date(2024, 1, 15)
    """
    if not date_string:
        return default

    date_string = date_string.strip()

    if formats is None:
        formats = DATE_FORMATS

    for pattern, date_format in formats:
        if re.match(pattern, date_string):
            try:
                return datetime.strptime(date_string, date_format).date()
            except ValueError:
                continue

    return default


def german_to_iso(value: str) -> str:
    """
    Convert a DD.MM.YYYY date string to YYYY-MM-DD.

    Strings in any other shape are returned stripped but otherwise unchanged.

    Example:
        german_to_iso("01.02.2024") -> "2024-02-01"
    """
    value = value.strip()
    match = GERMAN_DATE_PATTERN.match(value)
    if match:
        day, month, year = match.groups()
        return f"{year}-{month}-{day}"
    return value


def days_between(first: date | datetime, second: date | datetime) -> float:
    """
    Absolute distance between two dates in (possibly fractional) days.

    Datetimes keep their time-of-day; plain dates count whole days.
    """
    if isinstance(first, datetime) and isinstance(second, datetime):
        return abs((first - second).total_seconds()) / 86400
    if isinstance(first, datetime):
        first = first.date()
    if isinstance(second, datetime):
        second = second.date()
    return float(abs((first - second).days))


def get_current_timestamp() -> datetime:
    """
    Get current UTC timestamp.

    Returns:
        Current datetime with UTC timezone.
    """
    return datetime.now(UTC)


def isoformat_now() -> str:
    """Current UTC timestamp as an ISO-8601 string."""
    return get_current_timestamp().isoformat()
