"""
Memory store contract.

The pipeline talks to durable storage only through ``MemoryStore``.
Update operations are sparse: only the supplied fields change, and only
confidence, counts, timestamps and the active flag may change after a
memory is created.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any

from invoice_memory.memory.models import (
    AuditEntry,
    CorrectionMemory,
    ResolutionMemory,
    VendorMemory,
)


class MemoryStoreError(Exception):
    """Base exception for memory store failures."""

    def __init__(
        self,
        message: str,
        operation: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize store error.

        Args:
            message: Error message.
            operation: Store operation that failed.
            details: Additional error details.
        """
        super().__init__(message)
        self.operation = operation
        self.details = details or {}


class StoreUnavailableError(MemoryStoreError):
    """The backing storage could not be reached or failed mid-operation."""


MEMORY_UPDATABLE_FIELDS = frozenset(
    {"confidence", "application_count", "consecutive_rejections", "last_used_at", "is_active"}
)
RESOLUTION_UPDATABLE_FIELDS = frozenset(
    {"approval_count", "rejection_count", "context", "last_used_at", "is_active"}
)


def validate_changes(changes: dict[str, Any], allowed: frozenset[str]) -> None:
    """Reject sparse updates that touch immutable or unknown fields."""
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")


class MemoryStore(ABC):
    """Abstract storage for memories, audit entries and the duplicate index."""

    # Vendor memories

    @abstractmethod
    def find_vendor_memories(self, vendor_key: str) -> list[VendorMemory]:
        """Active vendor memories for a vendor, highest confidence first."""

    @abstractmethod
    def find_vendor_memory_by_label(
        self, vendor_key: str, original_label: str
    ) -> VendorMemory | None:
        """The vendor memory for (vendor, label) regardless of active state."""

    @abstractmethod
    def get_vendor_memory(self, memory_id: str) -> VendorMemory | None:
        """Vendor memory by id, or None."""

    @abstractmethod
    def create_vendor_memory(self, memory: VendorMemory) -> None:
        """Persist a new vendor memory."""

    @abstractmethod
    def update_vendor_memory(self, memory_id: str, changes: dict[str, Any]) -> None:
        """Apply a sparse update to a vendor memory."""

    @abstractmethod
    def list_vendor_memories(self, active_only: bool = True) -> list[VendorMemory]:
        """Every vendor memory, for maintenance sweeps."""

    # Correction memories

    @abstractmethod
    def find_correction_memories(
        self, vendor_key: str | None, field_name: str
    ) -> list[CorrectionMemory]:
        """
        Active correction memories for a field.

        ``vendor_key=None`` selects global corrections only; otherwise only
        corrections scoped to that vendor are returned.
        """

    @abstractmethod
    def get_correction_memory(self, memory_id: str) -> CorrectionMemory | None:
        """Correction memory by id, or None."""

    @abstractmethod
    def create_correction_memory(self, memory: CorrectionMemory) -> None:
        """Persist a new correction memory."""

    @abstractmethod
    def update_correction_memory(self, memory_id: str, changes: dict[str, Any]) -> None:
        """Apply a sparse update to a correction memory."""

    @abstractmethod
    def list_correction_memories(self, active_only: bool = True) -> list[CorrectionMemory]:
        """Every correction memory, for maintenance sweeps."""

    # Resolution memories

    @abstractmethod
    def find_resolution_memories(self, discrepancy_type: str) -> list[ResolutionMemory]:
        """Active resolution memories for a discrepancy type."""

    @abstractmethod
    def create_resolution_memory(self, memory: ResolutionMemory) -> None:
        """Persist a new resolution memory."""

    @abstractmethod
    def update_resolution_memory(self, memory_id: str, changes: dict[str, Any]) -> None:
        """Apply a sparse update to a resolution memory."""

    # Audit trail

    @abstractmethod
    def append_audit_entry(self, invoice_id: str, entry: AuditEntry) -> None:
        """Append an audit entry for an invoice."""

    @abstractmethod
    def get_audit_trail(self, invoice_id: str) -> list[AuditEntry]:
        """Audit entries for an invoice in chronological order."""

    # Duplicate index

    @abstractmethod
    def find_potential_duplicates(
        self,
        vendor_key: str,
        invoice_number: str,
        invoice_date: date,
        window_days: int,
    ) -> list[str]:
        """Ids of processed invoices with the same vendor and number within the window."""

    @abstractmethod
    def record_processed_invoice(
        self,
        invoice_id: str,
        vendor_key: str,
        invoice_number: str,
        invoice_date: date,
    ) -> None:
        """Record an invoice for future duplicate checks."""
