"""
Utility modules for the invoice memory system.

Provides common helpers for date handling and string normalization.
"""

from invoice_memory.utils.date_utils import (
    days_between,
    german_to_iso,
    get_current_timestamp,
    isoformat_now,
    parse_date,
)
from invoice_memory.utils.string_utils import (
    format_value,
    is_blank,
    normalize_whitespace,
    values_match,
)


__all__ = [
    # Date utilities
    "parse_date",
    "german_to_iso",
    "days_between",
    "get_current_timestamp",
    "isoformat_now",
    # String utilities
    "normalize_whitespace",
    "is_blank",
    "values_match",
    "format_value",
]
