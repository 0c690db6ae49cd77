"""
Label-driven value extraction from invoice raw text.

Vendor memories know which printed label a vendor uses for a field; the
extractor turns that label into a value by searching the document text.
Locale-specific patterns are registered per label, with a generic
"label: value-until-newline" fallback for labels without dedicated patterns.
"""

import re
from typing import Protocol

from invoice_memory.config import get_logger
from invoice_memory.utils.date_utils import german_to_iso


logger = get_logger(__name__)


class FieldValueExtractor(Protocol):
    """Capability to pull the value printed next to a label."""

    def extract(self, text: str | None, label: str, field_name: str) -> str | None:
        """Return the value for ``label`` in ``text`` normalized for ``field_name``."""
        ...


# German invoice labels and the value shapes printed after them
DEFAULT_LABEL_PATTERNS: dict[str, list[str]] = {
    "Leistungsdatum": [
        r"Leistungsdatum[:\s]*(\d{2}\.\d{2}\.\d{4})",
        r"Leistungsdatum[:\s]*(\d{4}-\d{2}-\d{2})",
    ],
    "Rechnungsdatum": [
        r"Rechnungsdatum[:\s]*(\d{2}\.\d{2}\.\d{4})",
    ],
    "Bestellnummer": [
        r"Bestellnr[.:]?\s*(PO-[A-Z]-\d+)",
        r"PO[:\s#]*(PO-[A-Z]-\d+)",
    ],
}


class RegexFieldExtractor:
    """
    Regex-based implementation of ``FieldValueExtractor``.

    Patterns are matched case-insensitively. Values for fields whose name
    contains "date" are converted from DD.MM.YYYY to ISO format.

    Example:
        extractor = RegexFieldExtractor()
        extractor.extract("Leistungsdatum: 15.01.2024", "Leistungsdatum", "serviceDate")
        # -> "2024-01-15"
    """

    def __init__(self, label_patterns: dict[str, list[str]] | None = None) -> None:
        """
        Initialize the extractor.

        Args:
            label_patterns: Label to regex list mapping. Defaults to the
                built-in German invoice labels.
        """
        source = DEFAULT_LABEL_PATTERNS if label_patterns is None else label_patterns
        self._patterns: dict[str, list[re.Pattern[str]]] = {}
        for label, patterns in source.items():
            self.register_label(label, patterns)

    def register_label(self, label: str, patterns: list[str]) -> None:
        """
        Add patterns for a label. Each pattern must capture the value in group 1.

        Patterns for an already known label are appended after the existing ones.
        """
        compiled = [re.compile(pattern, re.IGNORECASE) for pattern in patterns]
        self._patterns.setdefault(label, []).extend(compiled)
        logger.debug("label_patterns_registered", label=label, pattern_count=len(compiled))

    @property
    def labels(self) -> list[str]:
        """Labels with dedicated patterns."""
        return list(self._patterns)

    def extract(self, text: str | None, label: str, field_name: str) -> str | None:
        if not text:
            return None

        for pattern in self._patterns.get(label, []):
            match = pattern.search(text)
            if match and match.group(1):
                return self._normalize(match.group(1), field_name)

        generic = re.search(rf"{re.escape(label)}[:\s]*([^\n]+)", text, re.IGNORECASE)
        if generic and generic.group(1).strip():
            return self._normalize(generic.group(1), field_name)

        return None

    @staticmethod
    def _normalize(value: str, field_name: str) -> str:
        if "date" in field_name.lower():
            return german_to_iso(value)
        return value.strip()
