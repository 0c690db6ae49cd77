"""
Data model for the invoice memory system.

Defines the learned memories (vendor field mappings, value corrections,
resolution outcome statistics), the invoice being processed, human
feedback, and the externally visible processing results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, ClassVar, Protocol

from invoice_memory.utils.date_utils import parse_date


class MemoryKind(str, Enum):
    """Kinds of learned memory."""

    VENDOR = "vendor"
    CORRECTION = "correction"
    RESOLUTION = "resolution"


class AuditStep(str, Enum):
    """Pipeline stage that produced an audit entry."""

    RECALL = "recall"
    APPLY = "apply"
    DECIDE = "decide"
    LEARN = "learn"


class FeedbackAction(str, Enum):
    """Action taken by the human reviewer."""

    APPROVE = "approve"
    REJECT = "reject"
    CORRECT = "correct"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return _utcnow()
    return datetime.fromisoformat(str(value))


class ConfidenceBearing(Protocol):
    """Shared trait of memories whose confidence is mutated by feedback."""

    kind: ClassVar[MemoryKind]
    id: str
    confidence: float
    application_count: int
    consecutive_rejections: int
    last_used_at: datetime
    is_active: bool


@dataclass(slots=True)
class VendorMemory:
    """
    A learned field-label mapping for one vendor.

    Attributes:
        id: Unique identifier.
        vendor_key: Normalized vendor key.
        vendor_name: Vendor display name.
        original_label: Label as printed on the vendor's documents.
        normalized_field: Field name the label maps to.
        confidence: Confidence in [0, max_confidence].
        application_count: Number of confirmed applications.
        consecutive_rejections: Rejections since the last approval.
        created_at: Creation timestamp.
        last_used_at: Timestamp of the last confidence change.
        is_active: Whether the memory may still be recalled.
    """

    kind: ClassVar[MemoryKind] = MemoryKind.VENDOR

    id: str
    vendor_key: str
    vendor_name: str
    original_label: str
    normalized_field: str
    confidence: float
    application_count: int = 0
    consecutive_rejections: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    last_used_at: datetime = field(default_factory=_utcnow)
    is_active: bool = True

    @property
    def field_name(self) -> str:
        """Field this memory fills in."""
        return self.normalized_field

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "vendor_key": self.vendor_key,
            "vendor_name": self.vendor_name,
            "original_label": self.original_label,
            "normalized_field": self.normalized_field,
            "confidence": self.confidence,
            "application_count": self.application_count,
            "consecutive_rejections": self.consecutive_rejections,
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat(),
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VendorMemory:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            vendor_key=data["vendor_key"],
            vendor_name=data.get("vendor_name", data["vendor_key"]),
            original_label=data["original_label"],
            normalized_field=data["normalized_field"],
            confidence=float(data.get("confidence", 0.0)),
            application_count=int(data.get("application_count", 0)),
            consecutive_rejections=int(data.get("consecutive_rejections", 0)),
            created_at=_parse_datetime(data.get("created_at")),
            last_used_at=_parse_datetime(data.get("last_used_at")),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass(slots=True)
class CorrectionMemory:
    """
    A learned value-level fix for a field.

    A ``vendor_key`` of None makes the correction global.
    """

    kind: ClassVar[MemoryKind] = MemoryKind.CORRECTION

    id: str
    vendor_key: str | None
    field_name: str
    original_value_pattern: str
    corrected_value: str
    confidence: float
    application_count: int = 0
    consecutive_rejections: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    last_used_at: datetime = field(default_factory=_utcnow)
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "vendor_key": self.vendor_key,
            "field_name": self.field_name,
            "original_value_pattern": self.original_value_pattern,
            "corrected_value": self.corrected_value,
            "confidence": self.confidence,
            "application_count": self.application_count,
            "consecutive_rejections": self.consecutive_rejections,
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat(),
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CorrectionMemory:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            vendor_key=data.get("vendor_key"),
            field_name=data["field_name"],
            original_value_pattern=data.get("original_value_pattern", "*"),
            corrected_value=str(data["corrected_value"]),
            confidence=float(data.get("confidence", 0.0)),
            application_count=int(data.get("application_count", 0)),
            consecutive_rejections=int(data.get("consecutive_rejections", 0)),
            created_at=_parse_datetime(data.get("created_at")),
            last_used_at=_parse_datetime(data.get("last_used_at")),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass(slots=True)
class ResolutionMemory:
    """Historical outcome statistics for one class of discrepancy."""

    kind: ClassVar[MemoryKind] = MemoryKind.RESOLUTION

    id: str
    discrepancy_type: str
    context: dict[str, Any] = field(default_factory=dict)
    approval_count: int = 0
    rejection_count: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    last_used_at: datetime = field(default_factory=_utcnow)
    is_active: bool = True

    @property
    def total_outcomes(self) -> int:
        """Number of recorded approvals and rejections."""
        return self.approval_count + self.rejection_count

    @property
    def approval_rate(self) -> float:
        """Share of outcomes that were approvals (0.0 without outcomes)."""
        total = self.total_outcomes
        return self.approval_count / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "discrepancy_type": self.discrepancy_type,
            "context": self.context,
            "approval_count": self.approval_count,
            "rejection_count": self.rejection_count,
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat(),
            "is_active": self.is_active,
        }


@dataclass(frozen=True, slots=True)
class InvoiceField:
    """
    One extracted invoice field.

    Attributes:
        name: Normalized field name.
        value: Extracted value (None when extraction found nothing).
        extraction_confidence: Confidence reported by the extractor.
        original_label: Label as printed on the document, when known.
    """

    name: str
    value: Any
    extraction_confidence: float
    original_label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "value": self.value,
            "extraction_confidence": self.extraction_confidence,
            "original_label": self.original_label,
        }


@dataclass(frozen=True, slots=True)
class Invoice:
    """
    The document being processed. Immutable input to a processing run.

    ``vendor_id`` is the vendor as extracted; lookups always go through
    its normalized key.
    """

    id: str
    vendor_id: str
    vendor_name: str
    invoice_number: str
    invoice_date: date
    fields: dict[str, InvoiceField] = field(default_factory=dict)
    raw_text: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Invoice:
        """
        Create from a dictionary payload.

        ``fields`` maps field names to either a full field dictionary
        ({"value", "extraction_confidence", "original_label"}) or a bare value.
        """
        invoice_date = data["invoice_date"]
        if isinstance(invoice_date, datetime):
            invoice_date = invoice_date.date()
        elif not isinstance(invoice_date, date):
            parsed = parse_date(str(invoice_date))
            if parsed is None:
                raise ValueError(f"Unparseable invoice date: {invoice_date!r}")
            invoice_date = parsed

        default_confidence = float(data.get("confidence", 1.0))
        fields: dict[str, InvoiceField] = {}
        for name, raw in (data.get("fields") or {}).items():
            if isinstance(raw, dict) and "value" in raw:
                fields[name] = InvoiceField(
                    name=name,
                    value=raw.get("value"),
                    extraction_confidence=float(
                        raw.get("extraction_confidence", default_confidence)
                    ),
                    original_label=raw.get("original_label"),
                )
            else:
                fields[name] = InvoiceField(
                    name=name, value=raw, extraction_confidence=default_confidence
                )

        vendor_id = data.get("vendor_id") or data["vendor_name"]
        return cls(
            id=data["id"],
            vendor_id=vendor_id,
            vendor_name=data.get("vendor_name", vendor_id),
            invoice_number=str(data["invoice_number"]),
            invoice_date=invoice_date,
            fields=fields,
            raw_text=data.get("raw_text"),
        )


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """Append-only record of one pipeline stage for an invoice."""

    step: AuditStep
    timestamp: str
    details: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"step": self.step.value, "timestamp": self.timestamp, "details": self.details}


@dataclass(frozen=True, slots=True)
class FieldCorrection:
    """A single field correction supplied by a reviewer."""

    field_name: str
    original_value: Any
    corrected_value: Any


@dataclass(slots=True)
class HumanFeedback:
    """Reviewer feedback on a previously processed invoice."""

    invoice_id: str
    action: FeedbackAction
    corrections: list[FieldCorrection] | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class ContributingMemory:
    """
    A memory that influenced a processing run.

    Held between an apply pass and the matching learn call so feedback
    can be attributed to the memories that produced the decision.
    """

    memory_id: str
    kind: MemoryKind
    field_name: str
    suggested_value: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "memory_id": self.memory_id,
            "kind": self.kind.value,
            "field_name": self.field_name,
            "suggested_value": self.suggested_value,
        }


@dataclass(slots=True)
class ProcessingResult:
    """
    Externally visible outcome of one processing run.

    Attributes:
        normalized_invoice: Field name to (possibly corrected) value.
        proposed_corrections: Human-readable correction and pattern strings.
        requires_human_review: Whether a reviewer must look at the invoice.
        reasoning: Single explanation string for the verdict.
        confidence_score: Overall confidence in [0, 1].
        memory_updates: Descriptions of store changes made by the run.
        audit_trail: Ordered audit entries produced by the run.
        contributions: Memories to attribute feedback to in a later learn call.
    """

    normalized_invoice: dict[str, Any]
    proposed_corrections: list[str]
    requires_human_review: bool
    reasoning: str
    confidence_score: float
    memory_updates: list[str] = field(default_factory=list)
    audit_trail: list[AuditEntry] = field(default_factory=list)
    contributions: list[ContributingMemory] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "normalized_invoice": self.normalized_invoice,
            "proposed_corrections": self.proposed_corrections,
            "requires_human_review": self.requires_human_review,
            "reasoning": self.reasoning,
            "confidence_score": self.confidence_score,
            "memory_updates": self.memory_updates,
            "audit_trail": [entry.to_dict() for entry in self.audit_trail],
        }


@dataclass(slots=True)
class LearningResult:
    """Summary of the store changes made for one feedback event."""

    created_memories: list[str] = field(default_factory=list)
    updated_memories: list[str] = field(default_factory=list)
    deactivated_memories: list[str] = field(default_factory=list)
    audit_entries: list[AuditEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "created_memories": self.created_memories,
            "updated_memories": self.updated_memories,
            "deactivated_memories": self.deactivated_memories,
            "audit_entries": [entry.to_dict() for entry in self.audit_entries],
        }
