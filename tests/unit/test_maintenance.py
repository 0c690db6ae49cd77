"""
Unit tests for memory decay maintenance.
"""

import math
from datetime import UTC, datetime, timedelta

import pytest

from invoice_memory.memory import CorrectionMemory, SQLiteMemoryStore, VendorMemory
from invoice_memory.services import MemoryMaintenance


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def add_vendor(store: SQLiteMemoryStore, memory_id: str, last_used_at: datetime, **extra) -> None:
    store.create_vendor_memory(
        VendorMemory(
            id=memory_id,
            vendor_key="supplier gmbh",
            vendor_name="Supplier GmbH",
            original_label=f"Label {memory_id}",
            normalized_field="serviceDate",
            confidence=0.8,
            last_used_at=last_used_at,
            **extra,
        )
    )


@pytest.fixture
def maintenance(store: SQLiteMemoryStore) -> MemoryMaintenance:
    return MemoryMaintenance(store)


class TestDecayUnused:
    """Tests for MemoryMaintenance.decay_unused."""

    def test_decays_by_idle_days(
        self, store: SQLiteMemoryStore, maintenance: MemoryMaintenance
    ) -> None:
        add_vendor(store, "vm-1", NOW - timedelta(days=30))

        report = maintenance.decay_unused(now=NOW)

        expected = 0.8 * math.exp(-1.0)
        assert report.decayed["vm-1"] == (pytest.approx(0.8), pytest.approx(expected))
        memory = store.get_vendor_memory("vm-1")
        assert memory.confidence == pytest.approx(expected)
        assert memory.last_used_at == NOW

    def test_correction_memories_decayed(
        self, store: SQLiteMemoryStore, maintenance: MemoryMaintenance
    ) -> None:
        store.create_correction_memory(
            CorrectionMemory(
                id="cm-1",
                vendor_key=None,
                field_name="currency",
                original_value_pattern="*",
                corrected_value="EUR",
                confidence=0.6,
                last_used_at=NOW - timedelta(days=15),
            )
        )
        maintenance.decay_unused(now=NOW)
        assert store.get_correction_memory("cm-1").confidence == pytest.approx(
            0.6 * math.exp(-0.5)
        )

    def test_consecutive_sweeps_compound(
        self, store: SQLiteMemoryStore, maintenance: MemoryMaintenance
    ) -> None:
        add_vendor(store, "vm-1", NOW - timedelta(days=20))

        maintenance.decay_unused(now=NOW - timedelta(days=10))
        maintenance.decay_unused(now=NOW)

        assert store.get_vendor_memory("vm-1").confidence == pytest.approx(
            0.8 * math.exp(-20 / 30)
        )

    def test_recent_and_inactive_memories_untouched(
        self, store: SQLiteMemoryStore, maintenance: MemoryMaintenance
    ) -> None:
        add_vendor(store, "vm-fresh", NOW)
        add_vendor(store, "vm-off", NOW - timedelta(days=90), is_active=False)

        report = maintenance.decay_unused(now=NOW)

        assert report.decayed == {}
        assert report.skipped == 1
        assert store.get_vendor_memory("vm-off").confidence == pytest.approx(0.8)

    def test_report_to_dict(
        self, store: SQLiteMemoryStore, maintenance: MemoryMaintenance
    ) -> None:
        add_vendor(store, "vm-1", NOW - timedelta(days=30))
        data = maintenance.decay_unused(now=NOW).to_dict()
        assert set(data["decayed"]["vm-1"]) == {"before", "after"}
        assert data["skipped"] == 0
