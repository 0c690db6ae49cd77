"""
Memory module for learned invoice knowledge.

Provides the memory data model, confidence arithmetic, the storage
contract, and a SQLite-backed store.
"""

from invoice_memory.memory.confidence import (
    ThresholdAction,
    clamp,
    contradict,
    decay,
    normalize_vendor_key,
    penalize,
    reinforce,
    threshold_action,
)
from invoice_memory.memory.models import (
    AuditEntry,
    AuditStep,
    ContributingMemory,
    CorrectionMemory,
    FeedbackAction,
    FieldCorrection,
    HumanFeedback,
    Invoice,
    InvoiceField,
    LearningResult,
    MemoryKind,
    ProcessingResult,
    ResolutionMemory,
    VendorMemory,
)
from invoice_memory.memory.sqlite_store import SQLiteMemoryStore
from invoice_memory.memory.store import (
    MemoryStore,
    MemoryStoreError,
    StoreUnavailableError,
)


__all__ = [
    # Models
    "AuditEntry",
    "AuditStep",
    "ContributingMemory",
    "CorrectionMemory",
    "FeedbackAction",
    "FieldCorrection",
    "HumanFeedback",
    "Invoice",
    "InvoiceField",
    "LearningResult",
    "MemoryKind",
    "ProcessingResult",
    "ResolutionMemory",
    "VendorMemory",
    # Confidence arithmetic
    "ThresholdAction",
    "clamp",
    "contradict",
    "decay",
    "normalize_vendor_key",
    "penalize",
    "reinforce",
    "threshold_action",
    # Storage
    "MemoryStore",
    "MemoryStoreError",
    "StoreUnavailableError",
    "SQLiteMemoryStore",
]
