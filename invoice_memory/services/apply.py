"""
Apply stage: use recalled memories to normalize an invoice.

Processing order:
1. Vendor memories fill empty fields by extracting the vendor's label from raw text
2. Correction memories overwrite or propose corrected values
3. Domain patterns are detected over the raw text

Each memory's threshold action decides what it may do:
    auto_applied -> the normalized record is changed directly
    suggested    -> a proposed correction is emitted
    flagged      -> vendor memories propose with a "[LOW CONFIDENCE]" prefix,
                    correction memories are only traced
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from invoice_memory.config import ConfidenceSettings, get_logger, get_settings
from invoice_memory.extraction import (
    DetectedPattern,
    DomainPatternDetector,
    FieldValueExtractor,
    PatternType,
    RegexFieldExtractor,
)
from invoice_memory.memory.confidence import ThresholdAction, threshold_action
from invoice_memory.memory.models import (
    AuditEntry,
    AuditStep,
    ContributingMemory,
    Invoice,
    MemoryKind,
)
from invoice_memory.services.recall import RecalledMemories
from invoice_memory.utils.date_utils import isoformat_now
from invoice_memory.utils.string_utils import format_value, is_blank


logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AppliedMemory:
    """
    Trace of one memory considered during apply.

    Recorded whether the memory changed the invoice, proposed a change,
    or was only flagged.
    """

    memory_id: str
    kind: MemoryKind
    field_name: str
    action: ThresholdAction
    confidence: float
    extracted_value: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "memory_id": self.memory_id,
            "kind": self.kind.value,
            "field_name": self.field_name,
            "action": self.action.value,
            "confidence": self.confidence,
            "extracted_value": self.extracted_value,
        }


@dataclass(frozen=True, slots=True)
class ProposedCorrection:
    """A value change offered to the reviewer instead of being applied."""

    field_name: str
    current_value: Any
    suggested_value: Any
    memory_id: str
    confidence: float
    reasoning: str

    def describe(self) -> str:
        """Render as a human-readable proposed-correction line."""
        return (
            f'{self.field_name}: "{format_value(self.current_value)}" -> '
            f'"{format_value(self.suggested_value)}" '
            f"(memory: {self.memory_id}, confidence: {self.confidence:.2f}) - {self.reasoning}"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "field_name": self.field_name,
            "current_value": self.current_value,
            "suggested_value": self.suggested_value,
            "memory_id": self.memory_id,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


@dataclass(slots=True)
class ApplyResult:
    """
    Output of the apply stage.

    Attributes:
        normalized_invoice: Field name to normalized value.
        applied_memories: Trace of every memory considered.
        proposed_corrections: Changes offered to the reviewer.
        detected_patterns: Domain patterns found in the raw text.
        audit_entry: Apply audit entry.
    """

    normalized_invoice: dict[str, Any]
    applied_memories: list[AppliedMemory] = field(default_factory=list)
    proposed_corrections: list[ProposedCorrection] = field(default_factory=list)
    detected_patterns: list[DetectedPattern] = field(default_factory=list)
    audit_entry: AuditEntry | None = None

    def contributions(self) -> list[ContributingMemory]:
        """Vendor and correction memories that feedback on this run should update."""
        return [
            ContributingMemory(
                memory_id=applied.memory_id,
                kind=applied.kind,
                field_name=applied.field_name,
                suggested_value=applied.extracted_value,
            )
            for applied in self.applied_memories
            if applied.kind in (MemoryKind.VENDOR, MemoryKind.CORRECTION)
        ]


class ApplyService:
    """
    Applies recalled memories to an invoice.

    Value extraction and pattern detection are pluggable so new labels and
    locales do not touch this class.
    """

    def __init__(
        self,
        extractor: FieldValueExtractor | None = None,
        detector: DomainPatternDetector | None = None,
        config: ConfidenceSettings | None = None,
    ) -> None:
        self._extractor = extractor or RegexFieldExtractor()
        self._detector = detector or DomainPatternDetector()
        self._config = config or get_settings().confidence

    def apply(self, invoice: Invoice, memories: RecalledMemories) -> ApplyResult:
        """
        Apply memories and detect patterns for an invoice.

        Args:
            invoice: Invoice being processed.
            memories: Output of the recall stage.

        Returns:
            ApplyResult with the normalized record and traces.
        """
        result = ApplyResult(
            normalized_invoice={name: f.value for name, f in invoice.fields.items()}
        )

        self._apply_vendor_memories(invoice, memories, result)
        self._apply_correction_memories(memories, result)
        self._detect_patterns(invoice, result)

        pattern_types = ", ".join(p.type.value for p in result.detected_patterns)
        details = (
            f"Applied {len(result.applied_memories)} memories, "
            f"{len(result.proposed_corrections)} corrections proposed"
        )
        if pattern_types:
            details += f", patterns: {pattern_types}"
        result.audit_entry = AuditEntry(
            step=AuditStep.APPLY, timestamp=isoformat_now(), details=details
        )

        logger.info(
            "memories_applied",
            invoice_id=invoice.id,
            applied_count=len(result.applied_memories),
            proposed_count=len(result.proposed_corrections),
            pattern_types=[p.type.value for p in result.detected_patterns],
        )
        return result

    def _apply_vendor_memories(
        self, invoice: Invoice, memories: RecalledMemories, result: ApplyResult
    ) -> None:
        normalized = result.normalized_invoice
        for memory in memories.vendor_memories:
            action = threshold_action(memory.confidence, self._config)
            target = memory.normalized_field
            current = normalized.get(target)

            extracted = None
            if is_blank(current):
                extracted = self._extractor.extract(
                    invoice.raw_text, memory.original_label, target
                )

            if extracted is not None:
                if action is ThresholdAction.AUTO_APPLIED:
                    normalized[target] = extracted
                else:
                    prefix = "[LOW CONFIDENCE] " if action is ThresholdAction.FLAGGED else ""
                    result.proposed_corrections.append(
                        ProposedCorrection(
                            field_name=target,
                            current_value=current,
                            suggested_value=extracted,
                            memory_id=memory.id,
                            confidence=memory.confidence,
                            reasoning=(
                                f'{prefix}Vendor memory: "{memory.original_label}" -> '
                                f'"{target}" extracted "{extracted}"'
                            ),
                        )
                    )

            result.applied_memories.append(
                AppliedMemory(
                    memory_id=memory.id,
                    kind=MemoryKind.VENDOR,
                    field_name=target,
                    action=action,
                    confidence=memory.confidence,
                    extracted_value=extracted,
                )
            )

    def _apply_correction_memories(
        self, memories: RecalledMemories, result: ApplyResult
    ) -> None:
        normalized = result.normalized_invoice
        for memory in memories.correction_memories:
            action = threshold_action(memory.confidence, self._config)
            if action is ThresholdAction.AUTO_APPLIED:
                normalized[memory.field_name] = memory.corrected_value
            elif action is ThresholdAction.SUGGESTED:
                result.proposed_corrections.append(
                    ProposedCorrection(
                        field_name=memory.field_name,
                        current_value=normalized.get(memory.field_name),
                        suggested_value=memory.corrected_value,
                        memory_id=memory.id,
                        confidence=memory.confidence,
                        reasoning=f'Correction memory suggests "{memory.corrected_value}"',
                    )
                )

            result.applied_memories.append(
                AppliedMemory(
                    memory_id=memory.id,
                    kind=MemoryKind.CORRECTION,
                    field_name=memory.field_name,
                    action=action,
                    confidence=memory.confidence,
                    extracted_value=memory.corrected_value,
                )
            )

    def _detect_patterns(self, invoice: Invoice, result: ApplyResult) -> None:
        normalized = result.normalized_invoice
        patterns = self._detector.detect(
            invoice.raw_text,
            currency_present=not is_blank(normalized.get("currency")),
        )
        for pattern in patterns:
            if pattern.type is PatternType.CURRENCY_RECOVERY:
                normalized["currency"] = pattern.details["recovered"]
        result.detected_patterns.extend(patterns)
