"""
Decide stage: combine all signals into one human-review verdict.

Signals, evaluated in order (each may force review and add a reasoning fragment):
1. Potential duplicates in the processed-invoice index
2. Fields extracted below the low-confidence threshold
3. Fields with no applied memory
4. Applied memories below the suggestion threshold
5. Proposed corrections
6. Detected patterns (tax-inclusive pricing always forces review)

Overall confidence per field:
    matched field   -> best memory confidence * min(extraction confidence, 1)
    unmatched field -> min(extraction confidence, suggestion threshold - epsilon)
The invoice score is the mean over its fields, clamped to [0, 1].
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from invoice_memory.config import (
    ConfidenceSettings,
    DecisionSettings,
    get_logger,
    get_settings,
)
from invoice_memory.extraction import DetectedPattern, PatternType
from invoice_memory.memory.confidence import clamp, normalize_vendor_key
from invoice_memory.memory.models import AuditEntry, AuditStep, Invoice
from invoice_memory.memory.store import MemoryStore
from invoice_memory.services.apply import AppliedMemory, ApplyResult
from invoice_memory.utils.date_utils import isoformat_now


logger = get_logger(__name__)

AUTO_ACCEPT_SUMMARY = "All fields high confidence. Auto-accept recommended."
REVIEW_SUMMARY = "Human review required."


@dataclass(frozen=True, slots=True)
class DuplicateWarning:
    """Previously processed invoices that look like the current one."""

    potential_duplicate_ids: list[str]
    matched_fields: tuple[str, ...] = ("vendor_id", "invoice_number", "invoice_date")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "potential_duplicate_ids": self.potential_duplicate_ids,
            "matched_fields": list(self.matched_fields),
        }


@dataclass(slots=True)
class Decision:
    """
    Human-review verdict for one invoice.

    Attributes:
        requires_human_review: Whether a reviewer must look at the invoice.
        overall_confidence: Aggregated confidence in [0, 1].
        reasoning: Summary sentence followed by the signal fragments.
        flagged_fields: Fields that need attention, in first-flagged order.
        duplicate_warning: Set when potential duplicates were found.
    """

    requires_human_review: bool
    overall_confidence: float
    reasoning: str
    flagged_fields: list[str] = field(default_factory=list)
    duplicate_warning: DuplicateWarning | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "requires_human_review": self.requires_human_review,
            "overall_confidence": self.overall_confidence,
            "reasoning": self.reasoning,
            "flagged_fields": self.flagged_fields,
            "duplicate_warning": (
                self.duplicate_warning.to_dict() if self.duplicate_warning else None
            ),
        }


@dataclass(frozen=True, slots=True)
class DecisionResult:
    """Decision plus its audit entry."""

    decision: Decision
    audit_entry: AuditEntry


class DecisionService:
    """Aggregates apply output, extraction confidence and duplicates into a verdict."""

    def __init__(
        self,
        store: MemoryStore,
        confidence_config: ConfidenceSettings | None = None,
        config: DecisionSettings | None = None,
    ) -> None:
        settings = get_settings()
        self._store = store
        self._confidence = confidence_config or settings.confidence
        self._config = config or settings.decision

    def decide(
        self,
        applied: ApplyResult,
        invoice: Invoice,
        detected_patterns: list[DetectedPattern],
    ) -> DecisionResult:
        """
        Decide whether an invoice needs human review.

        Args:
            applied: Apply stage output (including any PO proposal).
            invoice: Invoice being processed.
            detected_patterns: Apply patterns plus any PO match pattern.

        Returns:
            DecisionResult with the verdict and a decide audit entry.
        """
        flagged: list[str] = []
        reasons: list[str] = []
        review = False

        def flag(name: str) -> None:
            if name not in flagged:
                flagged.append(name)

        duplicate_warning = self._check_duplicates(invoice)
        if duplicate_warning is not None:
            review = True
            reasons.append(
                f"Potential duplicate: {', '.join(duplicate_warning.potential_duplicate_ids)}"
            )

        low_extraction = [
            name
            for name, f in invoice.fields.items()
            if f.extraction_confidence < self._config.low_extraction_confidence
        ]
        if low_extraction:
            review = True
            for name in low_extraction:
                flag(name)
            reasons.append(f"Low extraction confidence: {', '.join(low_extraction)}")

        matched_fields = {m.field_name for m in applied.applied_memories}
        unmatched = [name for name in invoice.fields if name not in matched_fields]
        if unmatched:
            review = True
            for name in unmatched:
                flag(name)
            reasons.append(f"No memory match: {', '.join(unmatched)}")

        high_confidence_fields: set[str] = set()
        low_memory: list[str] = []
        for memory in applied.applied_memories:
            if memory.confidence >= self._confidence.auto_apply_threshold:
                high_confidence_fields.add(memory.field_name)
            elif memory.confidence < self._confidence.suggestion_threshold:
                review = True
                flag(memory.field_name)
                if memory.field_name not in low_memory:
                    low_memory.append(memory.field_name)
        if low_memory:
            reasons.append(f"Low memory confidence: {', '.join(low_memory)}")

        if applied.proposed_corrections:
            review = True
            reasons.append(f"{len(applied.proposed_corrections)} proposed correction(s)")

        for pattern in detected_patterns:
            if pattern.suggested_action:
                reasons.append(pattern.suggested_action)
            if pattern.type is PatternType.TAX_INCLUSIVE:
                review = True

        overall = self._overall_confidence(invoice, applied.applied_memories)

        all_high = bool(invoice.fields) and all(
            name in high_confidence_fields for name in invoice.fields
        )
        if not review and all_high:
            reasons.insert(0, AUTO_ACCEPT_SUMMARY)
        elif review:
            reasons.insert(0, REVIEW_SUMMARY)

        decision = Decision(
            requires_human_review=review,
            overall_confidence=overall,
            reasoning=" ".join(reasons),
            flagged_fields=flagged,
            duplicate_warning=duplicate_warning,
        )

        logger.info(
            "invoice_decided",
            invoice_id=invoice.id,
            requires_human_review=review,
            overall_confidence=round(overall, 4),
            flagged_fields=flagged,
            duplicate=duplicate_warning is not None,
        )

        return DecisionResult(
            decision=decision,
            audit_entry=AuditEntry(
                step=AuditStep.DECIDE,
                timestamp=isoformat_now(),
                details=f"Invoice {invoice.id}: {'REVIEW' if review else 'AUTO'}, conf={overall:.2f}",
            ),
        )

    def _check_duplicates(self, invoice: Invoice) -> DuplicateWarning | None:
        ids = [
            invoice_id
            for invoice_id in self._store.find_potential_duplicates(
                normalize_vendor_key(invoice.vendor_id),
                invoice.invoice_number,
                invoice.invoice_date,
                self._config.duplicate_window_days,
            )
            if invoice_id != invoice.id
        ]
        if not ids:
            return None
        logger.warning("potential_duplicate_detected", invoice_id=invoice.id, duplicate_ids=ids)
        return DuplicateWarning(potential_duplicate_ids=ids)

    def _overall_confidence(
        self, invoice: Invoice, applied_memories: list[AppliedMemory]
    ) -> float:
        if not invoice.fields:
            return 0.0

        best_memory: dict[str, float] = {}
        for memory in applied_memories:
            if memory.confidence > best_memory.get(memory.field_name, -1.0):
                best_memory[memory.field_name] = memory.confidence

        unmatched_cap = (
            self._confidence.suggestion_threshold - self._config.unmatched_confidence_epsilon
        )
        scores = []
        for name, f in invoice.fields.items():
            if name in best_memory:
                scores.append(best_memory[name] * min(f.extraction_confidence, 1.0))
            else:
                scores.append(min(f.extraction_confidence, unmatched_cap))
        return clamp(sum(scores) / len(scores))
