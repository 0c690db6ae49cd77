"""
Invoice Memory System.

A learning feedback loop for invoice extraction: remembers how reviewers
corrected earlier invoices and uses those memories to decide, per field,
whether a value can be trusted, should be suggested, or needs a human.

Usage:
    from invoice_memory import InvoiceProcessor, SQLiteMemoryStore, Invoice

    processor = InvoiceProcessor(SQLiteMemoryStore(":memory:"))
    result = processor.process_invoice(Invoice.from_dict(payload))
"""

from importlib.metadata import PackageNotFoundError, version

from invoice_memory.config import configure_logging, get_logger, get_settings
from invoice_memory.memory import (
    AuditEntry,
    FeedbackAction,
    FieldCorrection,
    HumanFeedback,
    Invoice,
    InvoiceField,
    LearningResult,
    MemoryStore,
    MemoryStoreError,
    ProcessingResult,
    SQLiteMemoryStore,
    StoreUnavailableError,
)
from invoice_memory.services import (
    InvoiceProcessor,
    MemoryMaintenance,
    PurchaseOrder,
)


try:
    __version__ = version("invoice-memory")
except PackageNotFoundError:
    __version__ = "1.0.0"

__all__ = [
    "__version__",
    # Configuration
    "configure_logging",
    "get_logger",
    "get_settings",
    # Model
    "AuditEntry",
    "FeedbackAction",
    "FieldCorrection",
    "HumanFeedback",
    "Invoice",
    "InvoiceField",
    "LearningResult",
    "ProcessingResult",
    # Storage
    "MemoryStore",
    "MemoryStoreError",
    "SQLiteMemoryStore",
    "StoreUnavailableError",
    # Services
    "InvoiceProcessor",
    "MemoryMaintenance",
    "PurchaseOrder",
]
