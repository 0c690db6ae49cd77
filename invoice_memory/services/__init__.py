"""
Pipeline services for the invoice memory system.

Provides the Recall, Apply, Decide and Learn stages, purchase-order
matching, memory maintenance, and the orchestrating processor.
"""

from invoice_memory.services.apply import (
    AppliedMemory,
    ApplyResult,
    ApplyService,
    ProposedCorrection,
)
from invoice_memory.services.contributions import ContributionRegistry
from invoice_memory.services.decision import (
    Decision,
    DecisionResult,
    DecisionService,
    DuplicateWarning,
)
from invoice_memory.services.learn import LearnService
from invoice_memory.services.maintenance import DecayReport, MemoryMaintenance
from invoice_memory.services.po_matching import (
    POLineItem,
    POMatchingService,
    POMatchResult,
    PurchaseOrder,
)
from invoice_memory.services.processor import InvoiceProcessor
from invoice_memory.services.recall import (
    RecalledMemories,
    RecallResult,
    RecallService,
    discrepancy_types_for,
)


__all__ = [
    # Stages
    "RecallService",
    "RecalledMemories",
    "RecallResult",
    "discrepancy_types_for",
    "ApplyService",
    "ApplyResult",
    "AppliedMemory",
    "ProposedCorrection",
    "DecisionService",
    "Decision",
    "DecisionResult",
    "DuplicateWarning",
    "LearnService",
    # Purchase orders
    "POMatchingService",
    "POMatchResult",
    "POLineItem",
    "PurchaseOrder",
    # Orchestration
    "ContributionRegistry",
    "InvoiceProcessor",
    "MemoryMaintenance",
    "DecayReport",
]
