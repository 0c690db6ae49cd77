"""
Domain pattern detection over invoice raw text.

Patterns detected (case-insensitive, independent of learned memories):
- Currency recovery: a known currency code when no currency was extracted
- Skonto: early-payment discount terms, with the percentage when printed
- SKU mapping: freight and shipping lines mapped to a fixed code
- Tax inclusive: "incl. VAT" style phrasing, flagged for verification
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from invoice_memory.config import get_logger


logger = get_logger(__name__)


class PatternType(str, Enum):
    """Types of domain patterns."""

    TAX_INCLUSIVE = "tax_inclusive"
    SKONTO = "skonto"
    CURRENCY_RECOVERY = "currency_recovery"
    SKU_MAPPING = "sku_mapping"
    PO_MATCH = "po_match"


@dataclass(frozen=True, slots=True)
class DetectedPattern:
    """
    A domain pattern found while applying memories.

    Attributes:
        type: Pattern type.
        details: Pattern-specific payload.
        field_name: Field the pattern concerns, if any.
        suggested_action: Human-readable action for the reviewer.
    """

    type: PatternType
    details: dict[str, Any] = field(default_factory=dict)
    field_name: str | None = None
    suggested_action: str | None = None

    def describe(self) -> str:
        """Render as a proposed-correction line, e.g. ``[skonto]: Skonto terms detected: 2%``."""
        target = f" [{self.field_name}]" if self.field_name else ""
        return f"[{self.type.value}]{target}: {self.suggested_action}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "type": self.type.value,
            "details": self.details,
            "field_name": self.field_name,
            "suggested_action": self.suggested_action,
        }


KNOWN_CURRENCIES = ("EUR", "USD", "CHF", "GBP")
FREIGHT_SKU = "FREIGHT"

CURRENCY_PATTERN = re.compile(
    r"\b(" + "|".join(KNOWN_CURRENCIES) + r")\b", re.IGNORECASE
)
SKONTO_TRIGGER_PATTERN = re.compile(r"\d+%\s*(?:bei|within|innerhalb)", re.IGNORECASE)
SKONTO_PERCENT_PATTERN = re.compile(
    r"(\d+(?:[.,]\d+)?)\s*%\s*(?:skonto|bei|within|innerhalb)", re.IGNORECASE
)
FREIGHT_PATTERN = re.compile(r"seefracht|shipping|freight", re.IGNORECASE)
TAX_INCLUSIVE_PATTERN = re.compile(
    r"\b(?:incl\.?|including|inkl\.?)\s*(?:vat|tax|mwst|ust)\b|\bmwst\.?\s*inkl\b",
    re.IGNORECASE,
)


class DomainPatternDetector:
    """
    Detects invoice domain patterns in raw text.

    Each detector is independent; a single document can yield several
    patterns. Detection never mutates the invoice. Callers decide what to
    do with a recovered currency.
    """

    def detect(self, text: str | None, currency_present: bool = False) -> list[DetectedPattern]:
        """
        Run all detectors over the text.

        Args:
            text: Document raw text.
            currency_present: Whether a currency value is already set.

        Returns:
            Detected patterns in detector order.
        """
        if not text:
            return []

        patterns: list[DetectedPattern] = []

        if not currency_present:
            currency = self.detect_currency(text)
            if currency is not None:
                patterns.append(currency)

        for detector in (self.detect_skonto, self.detect_sku_mapping, self.detect_tax_inclusive):
            pattern = detector(text)
            if pattern is not None:
                patterns.append(pattern)

        if patterns:
            logger.debug(
                "domain_patterns_detected",
                pattern_types=[p.type.value for p in patterns],
            )
        return patterns

    def detect_currency(self, text: str) -> DetectedPattern | None:
        match = CURRENCY_PATTERN.search(text)
        if not match:
            return None
        currency = match.group(1).upper()
        return DetectedPattern(
            type=PatternType.CURRENCY_RECOVERY,
            details={"recovered": currency},
            field_name="currency",
            suggested_action=f"Recovered currency {currency}",
        )

    def detect_skonto(self, text: str) -> DetectedPattern | None:
        if "skonto" not in text.lower() and not SKONTO_TRIGGER_PATTERN.search(text):
            return None
        match = SKONTO_PERCENT_PATTERN.search(text)
        percentage = match.group(1) if match else None
        return DetectedPattern(
            type=PatternType.SKONTO,
            details={"percentage": percentage or "unknown"},
            suggested_action=f"Skonto terms detected: {percentage or '?'}%",
        )

    def detect_sku_mapping(self, text: str) -> DetectedPattern | None:
        if not FREIGHT_PATTERN.search(text):
            return None
        return DetectedPattern(
            type=PatternType.SKU_MAPPING,
            details={"suggested_sku": FREIGHT_SKU},
            field_name="sku",
            suggested_action=f"SKU mapping: Seefracht/Shipping -> {FREIGHT_SKU}",
        )

    def detect_tax_inclusive(self, text: str) -> DetectedPattern | None:
        # Flag only; amounts are left untouched.
        if not TAX_INCLUSIVE_PATTERN.search(text):
            return None
        return DetectedPattern(
            type=PatternType.TAX_INCLUSIVE,
            details={"text_indicator": True},
            suggested_action="Tax inclusive indicator found - verify amounts",
        )
