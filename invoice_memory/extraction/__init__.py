"""
Extraction helpers for the apply stage.

Provides label-driven value extraction and domain pattern detection
over invoice raw text.
"""

from invoice_memory.extraction.field_extractor import (
    DEFAULT_LABEL_PATTERNS,
    FieldValueExtractor,
    RegexFieldExtractor,
)
from invoice_memory.extraction.pattern_detector import (
    KNOWN_CURRENCIES,
    DetectedPattern,
    DomainPatternDetector,
    PatternType,
)


__all__ = [
    "DEFAULT_LABEL_PATTERNS",
    "FieldValueExtractor",
    "RegexFieldExtractor",
    "KNOWN_CURRENCIES",
    "DetectedPattern",
    "DomainPatternDetector",
    "PatternType",
]
