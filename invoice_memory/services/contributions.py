"""
Pending contributing-memory registry.

Holds, per invoice id, the memories that influenced the last processing
run until reviewer feedback arrives. Entries expire after a TTL and the
least recently touched entry is evicted when the registry is full.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from invoice_memory.config import ContributionSettings, get_logger, get_settings
from invoice_memory.memory.models import ContributingMemory


logger = get_logger(__name__)


@dataclass(slots=True)
class _PendingEntry:
    contributions: list[ContributingMemory]
    created_at: datetime
    accessed_at: datetime


class ContributionRegistry:
    """
    Bounded TTL/LRU map from invoice id to contributing memories.

    Registering an invoice id again replaces its pending entry.
    """

    def __init__(
        self,
        max_pending: int | None = None,
        ttl_seconds: int | None = None,
        config: ContributionSettings | None = None,
    ) -> None:
        """
        Initialize registry.

        Args:
            max_pending: Maximum number of pending invoices.
            ttl_seconds: Seconds an entry is kept while waiting for feedback.
            config: Settings section used for unset limits.
        """
        cfg = config or get_settings().contributions
        self._max_pending = max_pending or cfg.max_pending
        self._ttl = ttl_seconds or cfg.ttl_seconds
        self._entries: dict[str, _PendingEntry] = {}
        self._lock = threading.RLock()
        self._stats = {"registered": 0, "consumed": 0, "expired": 0, "evictions": 0}

    def register(self, invoice_id: str, contributions: list[ContributingMemory]) -> None:
        """Store the contributions for an invoice, replacing any pending entry."""
        with self._lock:
            if invoice_id in self._entries:
                logger.warning("pending_contributions_replaced", invoice_id=invoice_id)
            elif len(self._entries) >= self._max_pending:
                self._evict_lru()

            now = datetime.now(UTC)
            self._entries[invoice_id] = _PendingEntry(
                contributions=list(contributions),
                created_at=now,
                accessed_at=now,
            )
            self._stats["registered"] += 1

    def peek(self, invoice_id: str) -> list[ContributingMemory] | None:
        """Pending contributions without consuming them, or None."""
        with self._lock:
            entry = self._live_entry(invoice_id)
            if entry is None:
                return None
            entry.accessed_at = datetime.now(UTC)
            return list(entry.contributions)

    def pop(self, invoice_id: str) -> list[ContributingMemory]:
        """Consume the pending contributions; empty when none are pending."""
        with self._lock:
            entry = self._live_entry(invoice_id)
            if entry is None:
                return []
            del self._entries[invoice_id]
            self._stats["consumed"] += 1
            return entry.contributions

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            now = datetime.now(UTC)
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
            for key in expired:
                del self._entries[key]
            self._stats["expired"] += len(expired)
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, invoice_id: object) -> bool:
        with self._lock:
            return isinstance(invoice_id, str) and self._live_entry(invoice_id) is not None

    def get_stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        with self._lock:
            return {
                **self._stats,
                "pending": len(self._entries),
                "max_pending": self._max_pending,
                "ttl_seconds": self._ttl,
            }

    def _is_expired(self, entry: _PendingEntry, now: datetime) -> bool:
        return (now - entry.created_at).total_seconds() > self._ttl

    def _live_entry(self, invoice_id: str) -> _PendingEntry | None:
        entry = self._entries.get(invoice_id)
        if entry is None:
            return None
        if self._is_expired(entry, datetime.now(UTC)):
            del self._entries[invoice_id]
            self._stats["expired"] += 1
            logger.debug("pending_contributions_expired", invoice_id=invoice_id)
            return None
        return entry

    def _evict_lru(self) -> None:
        if not self._entries:
            return
        lru_key = min(self._entries, key=lambda k: self._entries[k].accessed_at)
        del self._entries[lru_key]
        self._stats["evictions"] += 1
        logger.info("pending_contributions_evicted", invoice_id=lru_key)
