"""
Unit tests for the learn stage.

Tests cover:
- Approve and reject updates on contributing memories
- Deactivation after repeated rejections
- Corrections that confirm, contradict or create memories
- Field-mapping creation, reinforcement and conflicts
- Learn audit entries
"""

import pytest

from invoice_memory.memory import (
    AuditStep,
    ContributingMemory,
    CorrectionMemory,
    FeedbackAction,
    FieldCorrection,
    HumanFeedback,
    InvoiceField,
    MemoryKind,
    SQLiteMemoryStore,
    VendorMemory,
)
from invoice_memory.services import LearnService


VENDOR_KEY = "supplier gmbh"


def add_vendor(
    store: SQLiteMemoryStore,
    memory_id: str = "vm-1",
    label: str = "Leistungsdatum",
    field_name: str = "serviceDate",
    confidence: float = 0.6,
    **extra,
) -> None:
    store.create_vendor_memory(
        VendorMemory(
            id=memory_id,
            vendor_key=VENDOR_KEY,
            vendor_name="Supplier GmbH",
            original_label=label,
            normalized_field=field_name,
            confidence=confidence,
            **extra,
        )
    )


def add_correction(store: SQLiteMemoryStore, memory_id: str = "cm-1", confidence: float = 0.6) -> None:
    store.create_correction_memory(
        CorrectionMemory(
            id=memory_id,
            vendor_key=VENDOR_KEY,
            field_name="currency",
            original_value_pattern="EURO",
            corrected_value="EUR",
            confidence=confidence,
        )
    )


def vendor_contribution(memory_id: str = "vm-1", value=None) -> ContributingMemory:
    return ContributingMemory(memory_id, MemoryKind.VENDOR, "serviceDate", value)


def feedback(action: FeedbackAction, *corrections: FieldCorrection) -> HumanFeedback:
    return HumanFeedback(invoice_id="INV-001", action=action, corrections=list(corrections) or None)


@pytest.fixture
def learn_service(store: SQLiteMemoryStore) -> LearnService:
    return LearnService(store)


# ---------------------------------------------------------------------------
# TestApproveReject
# ---------------------------------------------------------------------------


class TestApproveReject:
    """Tests for approve and reject feedback."""

    def test_approve_reinforces(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_vendor(store, consecutive_rejections=2)

        result = learn_service.learn(
            feedback(FeedbackAction.APPROVE), make_invoice(), [vendor_contribution()]
        )

        memory = store.get_vendor_memory("vm-1")
        assert memory.confidence == pytest.approx(0.62)
        assert memory.application_count == 1
        assert memory.consecutive_rejections == 0
        assert result.updated_memories == ["vendor vm-1 reinforced: 0.60->0.62"]

    def test_reject_penalizes(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_correction(store)

        result = learn_service.learn(
            feedback(FeedbackAction.REJECT),
            make_invoice(),
            [ContributingMemory("cm-1", MemoryKind.CORRECTION, "currency", "EUR")],
        )

        memory = store.get_correction_memory("cm-1")
        assert memory.confidence == pytest.approx(0.42)
        assert memory.consecutive_rejections == 1
        assert memory.is_active
        assert result.updated_memories == ["correction cm-1 penalized: 0.60->0.42"]

    def test_third_rejection_deactivates(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_vendor(store, confidence=0.9)
        invoice = make_invoice()

        for _ in range(2):
            learn_service.learn(feedback(FeedbackAction.REJECT), invoice, [vendor_contribution()])
        assert store.get_vendor_memory("vm-1").is_active

        result = learn_service.learn(feedback(FeedbackAction.REJECT), invoice, [vendor_contribution()])

        assert result.deactivated_memories == ["vendor vm-1 deactivated"]
        assert result.updated_memories == []
        assert not store.get_vendor_memory("vm-1").is_active
        assert store.find_vendor_memories(VENDOR_KEY) == []

    def test_approval_resets_rejection_streak(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_vendor(store, confidence=0.9)
        invoice = make_invoice()
        for action in (FeedbackAction.REJECT, FeedbackAction.REJECT, FeedbackAction.APPROVE):
            learn_service.learn(feedback(action), invoice, [vendor_contribution()])
        learn_service.learn(feedback(FeedbackAction.REJECT), invoice, [vendor_contribution()])
        assert store.get_vendor_memory("vm-1").is_active

    def test_approving_inactive_memory_reports_update(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_vendor(store, is_active=False, consecutive_rejections=3)

        result = learn_service.learn(
            feedback(FeedbackAction.APPROVE), make_invoice(), [vendor_contribution()]
        )

        assert result.deactivated_memories == []
        assert result.updated_memories == ["vendor vm-1 reinforced: 0.60->0.62"]
        assert result.audit_entries[0].details == "approve on INV-001: +0 ~1 -0"

    def test_rejecting_inactive_memory_not_deactivated_again(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_vendor(store, is_active=False, consecutive_rejections=3)

        result = learn_service.learn(
            feedback(FeedbackAction.REJECT), make_invoice(), [vendor_contribution()]
        )

        assert result.deactivated_memories == []
        assert result.updated_memories == ["vendor vm-1 penalized: 0.60->0.42"]
        assert not store.get_vendor_memory("vm-1").is_active

    def test_missing_memory_ignored(self, learn_service: LearnService, make_invoice) -> None:
        result = learn_service.learn(
            feedback(FeedbackAction.APPROVE), make_invoice(), [vendor_contribution("gone")]
        )
        assert result.updated_memories == []

    def test_no_contributions(self, learn_service: LearnService, make_invoice) -> None:
        result = learn_service.learn(feedback(FeedbackAction.APPROVE), make_invoice())
        assert result.audit_entries[0].details == "approve on INV-001: +0 ~0 -0"


# ---------------------------------------------------------------------------
# TestCorrect
# ---------------------------------------------------------------------------


class TestCorrect:
    """Tests for correct feedback."""

    def test_matching_suggestion_reinforced(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_vendor(store)

        result = learn_service.learn(
            feedback(
                FeedbackAction.CORRECT, FieldCorrection("serviceDate", None, "2024-01-15")
            ),
            make_invoice(),
            [vendor_contribution(value="2024-01-15")],
        )

        assert store.get_vendor_memory("vm-1").confidence == pytest.approx(0.62)
        assert result.created_memories == []

    def test_stored_correction_value_used_when_no_suggestion(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_correction(store)

        learn_service.learn(
            feedback(FeedbackAction.CORRECT, FieldCorrection("currency", "EURO", "EUR")),
            make_invoice(fields={"currency": "EURO"}),
            [ContributingMemory("cm-1", MemoryKind.CORRECTION, "currency")],
        )

        assert store.get_correction_memory("cm-1").confidence == pytest.approx(0.62)

    def test_mismatch_contradicts_and_creates(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_correction(store)

        result = learn_service.learn(
            feedback(FeedbackAction.CORRECT, FieldCorrection("currency", "EURO", "CHF")),
            make_invoice(fields={"currency": "EURO"}),
            [ContributingMemory("cm-1", MemoryKind.CORRECTION, "currency", "EUR")],
        )

        assert store.get_correction_memory("cm-1").confidence == pytest.approx(0.3)
        assert result.updated_memories == ["correction cm-1 contradicted: 0.60->0.30"]
        [created] = result.created_memories
        assert created.endswith('"currency" "EURO"->"CHF"')

        new = [m for m in store.list_correction_memories() if m.id != "cm-1"]
        assert len(new) == 1
        assert new[0].vendor_key == VENDOR_KEY
        assert new[0].original_value_pattern == "EURO"
        assert new[0].corrected_value == "CHF"
        assert new[0].confidence == pytest.approx(0.6)

    def test_unknown_original_becomes_wildcard(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        learn_service.learn(
            feedback(FeedbackAction.CORRECT, FieldCorrection("currency", None, "EUR")),
            make_invoice(),
        )
        [memory] = store.list_correction_memories()
        assert memory.original_value_pattern == "*"

    def test_correct_without_corrections_is_noop(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_vendor(store)
        result = learn_service.learn(
            feedback(FeedbackAction.CORRECT), make_invoice(), [vendor_contribution()]
        )
        assert result.audit_entries[0].details == "correct on INV-001: +0 ~0 -0"
        assert store.get_vendor_memory("vm-1").confidence == pytest.approx(0.6)


# ---------------------------------------------------------------------------
# TestFieldMapping
# ---------------------------------------------------------------------------


class TestFieldMapping:
    """Tests for learning vendor field mappings from labelled fields."""

    def labelled_invoice(self, make_invoice):
        return make_invoice(
            fields={
                "serviceDate": InvoiceField("serviceDate", None, 0.4, original_label="Leistungsdatum")
            }
        )

    def test_mapping_created(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        result = learn_service.learn(
            feedback(FeedbackAction.CORRECT, FieldCorrection("serviceDate", None, "2024-01-15")),
            self.labelled_invoice(make_invoice),
        )

        [memory] = store.find_vendor_memories(VENDOR_KEY)
        assert memory.original_label == "Leistungsdatum"
        assert memory.normalized_field == "serviceDate"
        assert memory.vendor_name == "Supplier GmbH"
        assert memory.confidence == pytest.approx(0.6)
        assert result.created_memories == [f'vendor {memory.id}: "Leistungsdatum"->"serviceDate"']
        assert store.list_correction_memories() == []

    def test_existing_mapping_reinforced_and_reactivated(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_vendor(store, confidence=0.4, is_active=False, consecutive_rejections=3)

        learn_service.learn(
            feedback(FeedbackAction.CORRECT, FieldCorrection("serviceDate", None, "2024-01-15")),
            self.labelled_invoice(make_invoice),
        )

        memory = store.get_vendor_memory("vm-1")
        assert memory.is_active
        assert memory.consecutive_rejections == 0
        assert memory.confidence == pytest.approx(0.43)
        assert len(store.list_vendor_memories(active_only=False)) == 1

    def test_conflicting_mapping_contradicted(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_vendor(store, field_name="deliveryDate", confidence=0.8)

        result = learn_service.learn(
            feedback(FeedbackAction.CORRECT, FieldCorrection("serviceDate", None, "2024-01-15")),
            self.labelled_invoice(make_invoice),
        )

        memory = store.get_vendor_memory("vm-1")
        assert memory.normalized_field == "deliveryDate"
        assert memory.confidence == pytest.approx(0.4)
        assert result.created_memories == []
        assert len(store.list_vendor_memories(active_only=False)) == 1

    def test_label_equal_to_field_creates_correction(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        invoice = make_invoice(
            fields={"currency": InvoiceField("currency", "EURO", 0.9, original_label="currency")}
        )
        learn_service.learn(
            feedback(FeedbackAction.CORRECT, FieldCorrection("currency", "EURO", "EUR")), invoice
        )
        assert store.list_vendor_memories() == []
        assert len(store.list_correction_memories()) == 1


# ---------------------------------------------------------------------------
# TestLearnAudit
# ---------------------------------------------------------------------------


class TestLearnAudit:
    """Tests for the learn audit entry."""

    def test_audit_persisted(
        self, store: SQLiteMemoryStore, learn_service: LearnService, make_invoice
    ) -> None:
        add_vendor(store)

        result = learn_service.learn(
            feedback(FeedbackAction.APPROVE), make_invoice(), [vendor_contribution()]
        )

        [entry] = result.audit_entries
        assert entry.step is AuditStep.LEARN
        assert entry.details == "approve on INV-001: +0 ~1 -0"
        assert store.get_audit_trail("INV-001") == [entry]
