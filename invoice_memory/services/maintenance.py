"""
Caller-driven maintenance for learned memories.

The pipeline never decays memories on its own; an operator job calls
``MemoryMaintenance.decay_unused`` on whatever schedule suits it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from invoice_memory.config import ConfidenceSettings, get_logger, get_settings
from invoice_memory.memory.confidence import decay
from invoice_memory.memory.store import MemoryStore
from invoice_memory.utils.date_utils import days_between, get_current_timestamp


logger = get_logger(__name__)


@dataclass(slots=True)
class DecayReport:
    """Outcome of one decay sweep."""

    decayed: dict[str, tuple[float, float]] = field(default_factory=dict)
    skipped: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "decayed": {
                memory_id: {"before": before, "after": after}
                for memory_id, (before, after) in self.decayed.items()
            },
            "skipped": self.skipped,
        }


class MemoryMaintenance:
    """Applies time-based decay to active vendor and correction memories."""

    def __init__(
        self,
        store: MemoryStore,
        config: ConfidenceSettings | None = None,
    ) -> None:
        self._store = store
        self._config = config or get_settings().confidence

    def decay_unused(self, now: datetime | None = None) -> DecayReport:
        """
        Decay every active memory by the time since it was last used.

        ``last_used_at`` is moved to ``now`` for decayed memories, so
        consecutive sweeps compound to the same result as a single sweep
        over the whole period.

        Args:
            now: Reference time (defaults to the current UTC time).

        Returns:
            DecayReport with before/after confidence per decayed memory.
        """
        now = now or get_current_timestamp()
        report = DecayReport()

        for memory in self._store.list_vendor_memories(active_only=True):
            changes = self._decayed(memory.confidence, memory.last_used_at, now)
            if changes is None:
                report.skipped += 1
                continue
            self._store.update_vendor_memory(memory.id, changes)
            report.decayed[memory.id] = (memory.confidence, changes["confidence"])

        for memory in self._store.list_correction_memories(active_only=True):
            changes = self._decayed(memory.confidence, memory.last_used_at, now)
            if changes is None:
                report.skipped += 1
                continue
            self._store.update_correction_memory(memory.id, changes)
            report.decayed[memory.id] = (memory.confidence, changes["confidence"])

        logger.info(
            "memory_decay_completed",
            decayed_count=len(report.decayed),
            skipped_count=report.skipped,
        )
        return report

    def _decayed(
        self, confidence: float, last_used_at: datetime, now: datetime
    ) -> dict[str, Any] | None:
        if last_used_at >= now:
            return None
        days = days_between(now, last_used_at)
        return {
            "confidence": decay(confidence, days, self._config),
            "last_used_at": now,
        }
