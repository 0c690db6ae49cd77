"""
Invoice processing orchestrator.

Sequences Recall -> Apply -> (PO matching) -> Decide for one invoice,
persisting each stage's audit entry as soon as it is produced, and routes
later reviewer feedback to the Learn stage.
"""

from __future__ import annotations

from typing import Any

from invoice_memory.config import Settings, get_logger, get_settings
from invoice_memory.extraction import (
    DetectedPattern,
    DomainPatternDetector,
    FieldValueExtractor,
    PatternType,
)
from invoice_memory.memory.confidence import normalize_vendor_key
from invoice_memory.memory.models import (
    AuditEntry,
    ContributingMemory,
    HumanFeedback,
    Invoice,
    LearningResult,
    ProcessingResult,
)
from invoice_memory.memory.sqlite_store import SQLiteMemoryStore
from invoice_memory.memory.store import MemoryStore
from invoice_memory.services.apply import ApplyResult, ApplyService, ProposedCorrection
from invoice_memory.services.contributions import ContributionRegistry
from invoice_memory.services.decision import DecisionService
from invoice_memory.services.learn import LearnService
from invoice_memory.services.po_matching import POMatchingService, PurchaseOrder
from invoice_memory.services.recall import RecallService
from invoice_memory.utils.string_utils import is_blank


logger = get_logger(__name__)

PO_NUMBER_FIELD = "poNumber"
LINE_ITEMS_FIELD = "lineItems"
PO_MATCHING_SOURCE = "po-matching-service"


class InvoiceProcessor:
    """
    Runs the memory pipeline for invoices.

    Contributing memories of each run are returned on the result and also
    kept in a bounded registry, so feedback can be learned either with the
    explicit list or by invoice id alone.

    Example:
        processor = InvoiceProcessor(SQLiteMemoryStore(":memory:"))
        result = processor.process_invoice(invoice)
        processor.learn_from_feedback(feedback, invoice, result.contributions)
    """

    def __init__(
        self,
        store: MemoryStore | None = None,
        settings: Settings | None = None,
        extractor: FieldValueExtractor | None = None,
        detector: DomainPatternDetector | None = None,
    ) -> None:
        """
        Initialize the processor and its stages.

        Args:
            store: Memory store. Defaults to a SQLite store at the configured path.
            settings: Application settings. Defaults to ``get_settings()``.
            extractor: Label value extractor for the apply stage.
            detector: Domain pattern detector for the apply stage.
        """
        self._settings = settings or get_settings()
        self._store = store or SQLiteMemoryStore(self._settings.database.path)

        confidence = self._settings.confidence
        self._recall = RecallService(self._store, confidence)
        self._apply = ApplyService(extractor, detector, confidence)
        self._po_matching = POMatchingService(self._settings.po_matching)
        self._decision = DecisionService(self._store, confidence, self._settings.decision)
        self._learn = LearnService(self._store, confidence)
        self._pending = ContributionRegistry(config=self._settings.contributions)

    @property
    def store(self) -> MemoryStore:
        return self._store

    @property
    def pending_contributions(self) -> ContributionRegistry:
        return self._pending

    def set_purchase_orders(self, orders: list[PurchaseOrder | dict[str, Any]]) -> None:
        """Replace the purchase orders used for PO matching."""
        self._po_matching.set_purchase_orders(
            [o if isinstance(o, PurchaseOrder) else PurchaseOrder.from_dict(o) for o in orders]
        )

    def process_invoice(self, invoice: Invoice) -> ProcessingResult:
        """
        Process a single invoice through the full pipeline.

        Args:
            invoice: Invoice to process.

        Returns:
            ProcessingResult for the invoice.

        Raises:
            MemoryStoreError: If the memory store fails; no partial result is returned.
        """
        logger.info("invoice_processing_started", invoice_id=invoice.id, vendor=invoice.vendor_name)
        audit_trail: list[AuditEntry] = []

        recall_result = self._recall.recall(invoice)
        self._record(invoice.id, recall_result.audit_entry, audit_trail)

        applied = self._apply.apply(invoice, recall_result.memories)
        if applied.audit_entry is not None:
            self._record(invoice.id, applied.audit_entry, audit_trail)

        patterns = list(applied.detected_patterns)
        if is_blank(applied.normalized_invoice.get(PO_NUMBER_FIELD)):
            self._match_purchase_order(invoice, applied, patterns)

        contributions = applied.contributions()
        self._pending.register(invoice.id, contributions)

        decision_result = self._decision.decide(applied, invoice, patterns)
        self._record(invoice.id, decision_result.audit_entry, audit_trail)

        self._store.record_processed_invoice(
            invoice.id,
            normalize_vendor_key(invoice.vendor_id),
            invoice.invoice_number,
            invoice.invoice_date,
        )

        decision = decision_result.decision
        result = ProcessingResult(
            normalized_invoice=applied.normalized_invoice,
            proposed_corrections=[c.describe() for c in applied.proposed_corrections]
            + [p.describe() for p in patterns if p.suggested_action],
            requires_human_review=decision.requires_human_review,
            reasoning=decision.reasoning,
            confidence_score=max(0.0, min(1.0, decision.overall_confidence)),
            memory_updates=[f"Recorded invoice {invoice.id} for duplicate detection"],
            audit_trail=audit_trail,
            contributions=contributions,
        )

        logger.info(
            "invoice_processing_completed",
            invoice_id=invoice.id,
            requires_human_review=result.requires_human_review,
            confidence_score=round(result.confidence_score, 4),
            proposed_count=len(result.proposed_corrections),
        )
        return result

    def learn_from_feedback(
        self,
        feedback: HumanFeedback,
        invoice: Invoice,
        contributions: list[ContributingMemory] | None = None,
    ) -> LearningResult:
        """
        Learn from reviewer feedback on a processed invoice.

        Args:
            feedback: Reviewer feedback.
            invoice: The processed invoice.
            contributions: Contributions from the processing result. When
                omitted, the pending registry entry for the invoice is used.

        Returns:
            LearningResult describing the store changes.
        """
        if feedback.invoice_id != invoice.id:
            logger.warning(
                "feedback_invoice_mismatch",
                feedback_invoice_id=feedback.invoice_id,
                invoice_id=invoice.id,
            )

        pending = self._pending.pop(invoice.id)
        if contributions is None:
            contributions = pending

        return self._learn.learn(feedback, invoice, contributions)

    def get_audit_trail(self, invoice_id: str) -> list[AuditEntry]:
        """Every persisted audit entry for an invoice, oldest first."""
        return self._store.get_audit_trail(invoice_id)

    def _record(self, invoice_id: str, entry: AuditEntry, trail: list[AuditEntry]) -> None:
        self._store.append_audit_entry(invoice_id, entry)
        trail.append(entry)

    def _match_purchase_order(
        self,
        invoice: Invoice,
        applied: ApplyResult,
        patterns: list[DetectedPattern],
    ) -> None:
        line_field = invoice.fields.get(LINE_ITEMS_FIELD)
        line_items = line_field.value if line_field and isinstance(line_field.value, list) else None

        match = self._po_matching.find_matching_po(
            invoice.vendor_id, invoice.invoice_date, line_items
        )
        cfg = self._settings.po_matching
        if match.matched_po is None or match.confidence < cfg.surface_threshold:
            return

        po_number = match.matched_po.po_number
        reasons = ", ".join(match.match_reasons)
        patterns.append(
            DetectedPattern(
                type=PatternType.PO_MATCH,
                details={
                    "matched_po": po_number,
                    "confidence": match.confidence,
                    "reasons": list(match.match_reasons),
                },
                field_name=PO_NUMBER_FIELD,
                suggested_action=(
                    f"PO match suggested: {po_number} "
                    f"(confidence: {match.confidence * 100:.0f}%) - {reasons}"
                ),
            )
        )

        if match.confidence >= cfg.propose_threshold:
            applied.proposed_corrections.append(
                ProposedCorrection(
                    field_name=PO_NUMBER_FIELD,
                    current_value=applied.normalized_invoice.get(PO_NUMBER_FIELD),
                    suggested_value=po_number,
                    memory_id=PO_MATCHING_SOURCE,
                    confidence=match.confidence,
                    reasoning=f"PO matching: {reasons}",
                )
            )
