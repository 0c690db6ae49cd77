"""
Recall stage: gather the memories relevant to a new invoice.

Three memory kinds are recalled:
- Vendor memories for the invoice's normalized vendor key
- Correction memories for every field on the invoice, vendor-scoped and global
- Resolution memories for the discrepancy types the invoice's fields suggest

Vendor and correction memories below the minimum threshold are never
recalled. Resolution memories are ranked by historical approval rate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, TypeVar

from invoice_memory.config import ConfidenceSettings, get_logger, get_settings
from invoice_memory.memory.confidence import normalize_vendor_key
from invoice_memory.memory.models import (
    AuditEntry,
    AuditStep,
    CorrectionMemory,
    Invoice,
    ResolutionMemory,
    VendorMemory,
)
from invoice_memory.memory.store import MemoryStore
from invoice_memory.utils.date_utils import isoformat_now


logger = get_logger(__name__)


# Field-name keyword -> discrepancy type
DISCREPANCY_KEYWORDS: dict[str, str] = {
    "quantity": "quantity_mismatch",
    "qty": "quantity_mismatch",
    "price": "price_mismatch",
    "amount": "price_mismatch",
    "total": "price_mismatch",
    "date": "date_mismatch",
    "tax": "tax_mismatch",
    "vat": "tax_mismatch",
    "mwst": "tax_mismatch",
    "ust": "tax_mismatch",
    "currency": "currency_mismatch",
    "po": "po_mismatch",
    "purchase": "po_mismatch",
}

M = TypeVar("M", VendorMemory, CorrectionMemory)


@dataclass(slots=True)
class RecalledMemories:
    """Memories recalled for one invoice, each list ranked best first."""

    vendor_memories: list[VendorMemory] = field(default_factory=list)
    correction_memories: list[CorrectionMemory] = field(default_factory=list)
    resolution_memories: list[ResolutionMemory] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Number of recalled memories across all kinds."""
        return (
            len(self.vendor_memories)
            + len(self.correction_memories)
            + len(self.resolution_memories)
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "vendor_memories": [m.to_dict() for m in self.vendor_memories],
            "correction_memories": [m.to_dict() for m in self.correction_memories],
            "resolution_memories": [m.to_dict() for m in self.resolution_memories],
        }


@dataclass(frozen=True, slots=True)
class RecallResult:
    """Recalled memories plus the audit entry describing them."""

    memories: RecalledMemories
    audit_entry: AuditEntry


def discrepancy_types_for(field_names: list[str]) -> list[str]:
    """
    Derive discrepancy type tags from field names, in first-seen order.

    Example:
        discrepancy_types_for(["totalAmount", "invoiceDate"])
        # -> ["price_mismatch", "date_mismatch"]
    """
    types: list[str] = []
    for name in field_names:
        lower = name.lower()
        for keyword, discrepancy_type in DISCREPANCY_KEYWORDS.items():
            if keyword in lower and discrepancy_type not in types:
                types.append(discrepancy_type)
    return types


class RecallService:
    """Retrieves and ranks memories for an invoice."""

    def __init__(
        self,
        store: MemoryStore,
        config: ConfidenceSettings | None = None,
    ) -> None:
        self._store = store
        self._config = config or get_settings().confidence

    def recall(self, invoice: Invoice) -> RecallResult:
        """
        Recall vendor, correction and resolution memories for an invoice.

        Args:
            invoice: Invoice being processed.

        Returns:
            RecallResult with ranked memories and a recall audit entry.
        """
        vendor_key = normalize_vendor_key(invoice.vendor_id)
        field_names = list(invoice.fields)

        memories = RecalledMemories(
            vendor_memories=self._usable(self._store.find_vendor_memories(vendor_key)),
            correction_memories=self._recall_corrections(vendor_key, field_names),
            resolution_memories=self._recall_resolutions(field_names),
        )

        logger.info(
            "memories_recalled",
            invoice_id=invoice.id,
            vendor_key=vendor_key,
            vendor_count=len(memories.vendor_memories),
            correction_count=len(memories.correction_memories),
            resolution_count=len(memories.resolution_memories),
        )

        return RecallResult(
            memories=memories,
            audit_entry=AuditEntry(
                step=AuditStep.RECALL,
                timestamp=isoformat_now(),
                details=self._describe(memories, invoice),
            ),
        )

    def _recall_corrections(
        self, vendor_key: str, field_names: list[str]
    ) -> list[CorrectionMemory]:
        seen: set[str] = set()
        collected: list[CorrectionMemory] = []
        for name in field_names:
            candidates = self._store.find_correction_memories(
                vendor_key, name
            ) + self._store.find_correction_memories(None, name)
            for memory in candidates:
                if memory.id not in seen:
                    seen.add(memory.id)
                    collected.append(memory)
        return self._usable(collected)

    def _recall_resolutions(self, field_names: list[str]) -> list[ResolutionMemory]:
        seen: set[str] = set()
        collected: list[ResolutionMemory] = []
        for discrepancy_type in discrepancy_types_for(field_names):
            for memory in self._store.find_resolution_memories(discrepancy_type):
                if memory.id not in seen and memory.total_outcomes > 0:
                    seen.add(memory.id)
                    collected.append(memory)
        return sorted(
            collected,
            key=lambda m: (m.approval_rate, m.total_outcomes),
            reverse=True,
        )

    def _usable(self, memories: list[M]) -> list[M]:
        """Active memories at or above the minimum threshold, highest confidence first."""
        usable = [
            m
            for m in memories
            if m.is_active and m.confidence >= self._config.minimum_threshold
        ]
        return sorted(usable, key=lambda m: m.confidence, reverse=True)

    @staticmethod
    def _describe(memories: RecalledMemories, invoice: Invoice) -> str:
        prefix = f"Recalled {memories.total} memories for invoice {invoice.id} from vendor {invoice.vendor_name}"
        if memories.total == 0:
            return f"{prefix}. No relevant memories found."

        parts = [f"{prefix}:"]
        if memories.vendor_memories:
            top = memories.vendor_memories[0]
            parts.append(
                f"{len(memories.vendor_memories)} vendor memories "
                f"(top: {top.original_label} -> {top.normalized_field}, conf: {top.confidence:.2f})"
            )
        if memories.correction_memories:
            top_correction = memories.correction_memories[0]
            parts.append(
                f"{len(memories.correction_memories)} correction memories "
                f"(top: {top_correction.field_name}, conf: {top_correction.confidence:.2f})"
            )
        if memories.resolution_memories:
            top_resolution = memories.resolution_memories[0]
            parts.append(
                f"{len(memories.resolution_memories)} resolution memories "
                f"(top: {top_resolution.discrepancy_type}, "
                f"approval rate: {top_resolution.approval_rate * 100:.0f}%)"
            )
        return " ".join(parts)
