"""
String utility functions for invoice processing.

Provides whitespace normalization and value-comparison helpers
used when matching vendors and human corrections.
"""

from typing import Any


def normalize_whitespace(text: str) -> str:
    """
    Normalize whitespace in text.

    Collapses multiple spaces, tabs, newlines into single spaces.

    Example:
        normalize_whitespace("Supplier   GmbH\\n") -> "Supplier GmbH"
    """
    if not text:
        return ""

    return " ".join(text.split())


def is_blank(value: Any) -> bool:
    """True for None and for strings holding only whitespace."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def values_match(first: Any, second: Any) -> bool:
    """
    Compare two field values string-wise.

    Human corrections arrive as strings while memories may hold numbers
    or dates, so both sides are compared through ``str``.
    """
    if first is None or second is None:
        return first is None and second is None
    return str(first) == str(second)


def format_value(value: Any) -> str:
    """Render a field value for human-readable reasoning strings."""
    if value is None:
        return "null"
    return str(value)
