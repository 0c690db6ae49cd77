"""
Learn stage: update memories from human feedback.

Feedback actions:
- approve: every contributing memory is reinforced
- reject: every contributing memory is penalized and deactivated once
  its consecutive rejections reach the configured limit
- correct: per corrected field, a contributing memory that suggested the
  same value is reinforced; otherwise it is contradicted and the correction
  becomes a new memory (a vendor field mapping when the field carries a
  distinct printed label, a value correction otherwise)
"""

from __future__ import annotations

import uuid
from typing import Any

from invoice_memory.config import ConfidenceSettings, get_logger, get_settings
from invoice_memory.memory import confidence as conf
from invoice_memory.memory.models import (
    AuditEntry,
    AuditStep,
    ConfidenceBearing,
    ContributingMemory,
    CorrectionMemory,
    FeedbackAction,
    FieldCorrection,
    HumanFeedback,
    Invoice,
    LearningResult,
    MemoryKind,
    VendorMemory,
)
from invoice_memory.memory.store import MemoryStore
from invoice_memory.utils.date_utils import get_current_timestamp, isoformat_now
from invoice_memory.utils.string_utils import values_match


logger = get_logger(__name__)

_PAST_TENSE = {
    "reinforce": "reinforced",
    "penalize": "penalized",
    "contradict": "contradicted",
}


class LearnService:
    """
    Applies reviewer feedback to the memories that produced a decision.

    The caller supplies the contributing memories recorded by the apply
    pass for the same invoice.
    """

    def __init__(
        self,
        store: MemoryStore,
        config: ConfidenceSettings | None = None,
    ) -> None:
        self._store = store
        self._config = config or get_settings().confidence

    def learn(
        self,
        feedback: HumanFeedback,
        invoice: Invoice,
        contributions: list[ContributingMemory] | None = None,
    ) -> LearningResult:
        """
        Update, deactivate or create memories for one feedback event.

        Args:
            feedback: Reviewer feedback.
            invoice: The invoice the feedback refers to.
            contributions: Memories that influenced the processed result.

        Returns:
            LearningResult describing every store change.
        """
        result = LearningResult()
        contributing = list(contributions or [])

        if feedback.action is FeedbackAction.APPROVE:
            for memory in contributing:
                self._update_memory(memory, "reinforce", result)
        elif feedback.action is FeedbackAction.REJECT:
            for memory in contributing:
                self._update_memory(memory, "penalize", result)
        elif feedback.action is FeedbackAction.CORRECT and feedback.corrections:
            vendor_key = conf.normalize_vendor_key(invoice.vendor_id)
            for correction in feedback.corrections:
                self._learn_correction(correction, invoice, vendor_key, contributing, result)

        entry = AuditEntry(
            step=AuditStep.LEARN,
            timestamp=isoformat_now(),
            details=(
                f"{feedback.action.value} on {invoice.id}: "
                f"+{len(result.created_memories)} "
                f"~{len(result.updated_memories)} "
                f"-{len(result.deactivated_memories)}"
            ),
        )
        self._store.append_audit_entry(invoice.id, entry)
        result.audit_entries.append(entry)

        logger.info(
            "feedback_learned",
            invoice_id=invoice.id,
            action=feedback.action.value,
            created=len(result.created_memories),
            updated=len(result.updated_memories),
            deactivated=len(result.deactivated_memories),
        )
        return result

    def _learn_correction(
        self,
        correction: FieldCorrection,
        invoice: Invoice,
        vendor_key: str,
        contributing: list[ContributingMemory],
        result: LearningResult,
    ) -> None:
        contributor = next(
            (m for m in contributing if m.field_name == correction.field_name), None
        )
        if contributor is not None:
            suggested = self._suggested_value(contributor)
            if suggested is not None and values_match(suggested, correction.corrected_value):
                self._update_memory(contributor, "reinforce", result)
                return
            self._update_memory(contributor, "contradict", result)

        self._create_memory(correction, invoice, vendor_key, result)

    def _suggested_value(self, contributor: ContributingMemory) -> Any:
        if contributor.suggested_value is not None:
            return contributor.suggested_value
        if contributor.kind is MemoryKind.CORRECTION:
            stored = self._store.get_correction_memory(contributor.memory_id)
            return stored.corrected_value if stored else None
        return None

    def _load(self, contributor: ContributingMemory) -> ConfidenceBearing | None:
        if contributor.kind is MemoryKind.VENDOR:
            return self._store.get_vendor_memory(contributor.memory_id)
        return self._store.get_correction_memory(contributor.memory_id)

    def _update_memory(
        self,
        contributor: ContributingMemory,
        action: str,
        result: LearningResult,
    ) -> None:
        memory = self._load(contributor)
        if memory is None:
            logger.debug("contributing_memory_missing", memory_id=contributor.memory_id)
            return

        previous = memory.confidence
        rejections = memory.consecutive_rejections
        active = memory.is_active
        changes: dict[str, Any] = {"last_used_at": get_current_timestamp()}

        if action == "reinforce":
            new_confidence = conf.reinforce(previous, self._config)
            rejections = 0
            changes["application_count"] = memory.application_count + 1
        elif action == "penalize":
            new_confidence = conf.penalize(previous, self._config)
            rejections += 1
            if rejections >= self._config.max_consecutive_rejections:
                active = False
        else:
            new_confidence = conf.contradict(previous, self._config)

        changes.update(
            confidence=new_confidence,
            consecutive_rejections=rejections,
            is_active=active,
        )
        self._persist(contributor.kind, memory.id, changes)

        # Only the rejection that crosses the limit counts as a deactivation.
        if action == "penalize" and memory.is_active and not active:
            result.deactivated_memories.append(f"{contributor.kind.value} {memory.id} deactivated")
            logger.info("memory_deactivated", memory_id=memory.id, kind=contributor.kind.value)
        else:
            result.updated_memories.append(
                f"{contributor.kind.value} {memory.id} {_PAST_TENSE[action]}: "
                f"{previous:.2f}->{new_confidence:.2f}"
            )

    def _persist(self, kind: MemoryKind, memory_id: str, changes: dict[str, Any]) -> None:
        if kind is MemoryKind.VENDOR:
            self._store.update_vendor_memory(memory_id, changes)
        else:
            self._store.update_correction_memory(memory_id, changes)

    def _create_memory(
        self,
        correction: FieldCorrection,
        invoice: Invoice,
        vendor_key: str,
        result: LearningResult,
    ) -> None:
        field_name = correction.field_name
        invoice_field = invoice.fields.get(field_name)
        label = invoice_field.original_label if invoice_field else None

        if label and label != field_name:
            self._learn_field_mapping(label, field_name, invoice, vendor_key, result)
            return

        now = get_current_timestamp()
        memory = CorrectionMemory(
            id=str(uuid.uuid4()),
            vendor_key=vendor_key,
            field_name=field_name,
            original_value_pattern=(
                str(correction.original_value) if correction.original_value is not None else "*"
            ),
            corrected_value=str(correction.corrected_value),
            confidence=self._config.initial_confidence,
            created_at=now,
            last_used_at=now,
        )
        self._store.create_correction_memory(memory)
        result.created_memories.append(
            f'correction {memory.id}: "{field_name}" '
            f'"{correction.original_value}"->"{correction.corrected_value}"'
        )
        logger.info(
            "correction_memory_created",
            memory_id=memory.id,
            vendor_key=vendor_key,
            field_name=field_name,
        )

    def _learn_field_mapping(
        self,
        label: str,
        field_name: str,
        invoice: Invoice,
        vendor_key: str,
        result: LearningResult,
    ) -> None:
        existing = self._store.find_vendor_memory_by_label(vendor_key, label)

        if existing is not None and existing.normalized_field == field_name:
            new_confidence = conf.reinforce(existing.confidence, self._config)
            self._store.update_vendor_memory(
                existing.id,
                {
                    "confidence": new_confidence,
                    "application_count": existing.application_count + 1,
                    "consecutive_rejections": 0,
                    "last_used_at": get_current_timestamp(),
                    "is_active": True,
                },
            )
            result.updated_memories.append(
                f"vendor {existing.id} reinforced: "
                f"{existing.confidence:.2f}->{new_confidence:.2f}"
            )
            return

        if existing is not None:
            # One mapping per (vendor, label): weaken the conflicting one instead.
            new_confidence = conf.contradict(existing.confidence, self._config)
            self._store.update_vendor_memory(
                existing.id,
                {"confidence": new_confidence, "last_used_at": get_current_timestamp()},
            )
            result.updated_memories.append(
                f"vendor {existing.id} contradicted: "
                f"{existing.confidence:.2f}->{new_confidence:.2f}"
            )
            logger.warning(
                "field_mapping_conflict",
                memory_id=existing.id,
                label=label,
                mapped_field=existing.normalized_field,
                corrected_field=field_name,
            )
            return

        now = get_current_timestamp()
        memory = VendorMemory(
            id=str(uuid.uuid4()),
            vendor_key=vendor_key,
            vendor_name=invoice.vendor_name,
            original_label=label,
            normalized_field=field_name,
            confidence=self._config.initial_confidence,
            created_at=now,
            last_used_at=now,
        )
        self._store.create_vendor_memory(memory)
        result.created_memories.append(f'vendor {memory.id}: "{label}"->"{field_name}"')
        logger.info(
            "vendor_memory_created",
            memory_id=memory.id,
            vendor_key=vendor_key,
            original_label=label,
            normalized_field=field_name,
        )
