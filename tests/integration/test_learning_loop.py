"""
Integration tests for the full processing and learning loop.

Tests cover:
- Learning a vendor label mapping from a correction and reusing it
- Reinforcement up to auto-apply and decay back below recall
- Duplicate invoices
- Purchase-order suggestions
- Contribution hand-over, audit trail ordering and store failures
"""

from datetime import date, datetime, timedelta

import pytest

from invoice_memory.memory import (
    AuditStep,
    CorrectionMemory,
    FeedbackAction,
    FieldCorrection,
    HumanFeedback,
    InvoiceField,
    SQLiteMemoryStore,
    StoreUnavailableError,
    VendorMemory,
)
from invoice_memory.services import InvoiceProcessor


VENDOR_KEY = "supplier gmbh"


def approve(invoice_id: str) -> HumanFeedback:
    return HumanFeedback(invoice_id=invoice_id, action=FeedbackAction.APPROVE)


def reject(invoice_id: str) -> HumanFeedback:
    return HumanFeedback(invoice_id=invoice_id, action=FeedbackAction.REJECT)


def service_date_invoice(make_invoice, invoice_id: str, raw_date: str = "20.02.2024"):
    return make_invoice(
        invoice_id=invoice_id,
        fields={"total": 200},
        raw_text=f"Rechnung {invoice_id}\nLeistungsdatum: {raw_date}\nGesamt: 200,00",
    )


@pytest.fixture
def learned_mapping(processor: InvoiceProcessor, make_invoice):
    """Teach the processor that this vendor's "Leistungsdatum" is the service date."""
    invoice = make_invoice(
        invoice_id="INV-SEED",
        fields={
            "serviceDate": InvoiceField("serviceDate", None, 0.4, original_label="Leistungsdatum"),
        },
        raw_text="Leistungsdatum: 15.01.2024",
    )
    processor.process_invoice(invoice)
    processor.learn_from_feedback(
        HumanFeedback(
            invoice_id=invoice.id,
            action=FeedbackAction.CORRECT,
            corrections=[FieldCorrection("serviceDate", None, "2024-01-15")],
        ),
        invoice,
    )
    [memory] = processor.store.find_vendor_memories(VENDOR_KEY)
    return memory


# ---------------------------------------------------------------------------
# TestVendorLabelLearning
# ---------------------------------------------------------------------------


class TestVendorLabelLearning:
    """Tests for learning and reusing a vendor label mapping."""

    def test_correction_creates_mapping(self, learned_mapping) -> None:
        assert learned_mapping.original_label == "Leistungsdatum"
        assert learned_mapping.normalized_field == "serviceDate"
        assert learned_mapping.confidence == pytest.approx(0.6)

    def test_next_invoice_gets_low_confidence_proposal(
        self, processor: InvoiceProcessor, learned_mapping, make_invoice
    ) -> None:
        result = processor.process_invoice(service_date_invoice(make_invoice, "INV-2"))

        [proposal] = [p for p in result.proposed_corrections if p.startswith("serviceDate:")]
        assert '"2024-02-20"' in proposal
        assert "[LOW CONFIDENCE]" in proposal
        assert "serviceDate" not in result.normalized_invoice
        assert result.requires_human_review

    def test_approvals_reach_auto_apply_and_rejections_drop_recall(
        self, processor: InvoiceProcessor, learned_mapping, make_invoice
    ) -> None:
        for n in range(20):
            invoice = service_date_invoice(make_invoice, f"INV-A{n}")
            processor.process_invoice(invoice)
            processor.learn_from_feedback(approve(invoice.id), invoice)

        memory = processor.store.get_vendor_memory(learned_mapping.id)
        assert memory.confidence >= 0.85
        assert memory.application_count == 20

        result = processor.process_invoice(service_date_invoice(make_invoice, "INV-AUTO"))
        assert result.normalized_invoice["serviceDate"] == "2024-02-20"
        assert not any(p.startswith("serviceDate:") for p in result.proposed_corrections)

        for n in range(2):
            invoice = service_date_invoice(make_invoice, f"INV-R{n}")
            processor.process_invoice(invoice)
            processor.learn_from_feedback(reject(invoice.id), invoice)

        memory = processor.store.get_vendor_memory(learned_mapping.id)
        assert memory.confidence < 0.5
        assert memory.is_active

        result = processor.process_invoice(service_date_invoice(make_invoice, "INV-AFTER"))
        assert "vendor memories" not in result.audit_trail[0].details
        assert "serviceDate" not in result.normalized_invoice


# ---------------------------------------------------------------------------
# TestDuplicates
# ---------------------------------------------------------------------------


class TestDuplicates:
    """Tests for duplicate detection across processing runs."""

    def test_same_number_within_window_flagged(
        self, processor: InvoiceProcessor, make_invoice
    ) -> None:
        store = processor.store
        store.create_vendor_memory(
            VendorMemory(
                id="vm-1",
                vendor_key=VENDOR_KEY,
                vendor_name="Supplier GmbH",
                original_label="Leistungsdatum",
                normalized_field="serviceDate",
                confidence=0.9,
                application_count=4,
            )
        )
        store.create_correction_memory(
            CorrectionMemory(
                id="cm-1",
                vendor_key=VENDOR_KEY,
                field_name="currency",
                original_value_pattern="EURO",
                corrected_value="EUR",
                confidence=0.75,
                application_count=2,
            )
        )

        def snapshot():
            return [
                (m.id, m.confidence, m.application_count)
                for m in store.list_vendor_memories(active_only=False)
                + store.list_correction_memories(active_only=False)
            ]

        def duplicate_invoice(invoice_id: str, invoice_date: date):
            return make_invoice(
                invoice_id=invoice_id,
                invoice_number="R-100",
                invoice_date=invoice_date,
                fields={"currency": "EURO"},
                raw_text="Leistungsdatum: 08.05.2024",
            )

        first_date = date(2024, 5, 10)
        first = processor.process_invoice(duplicate_invoice("INV-D1", first_date))
        assert {c.memory_id for c in first.contributions} == {"vm-1", "cm-1"}
        before = snapshot()

        result = processor.process_invoice(
            duplicate_invoice("INV-D2", first_date + timedelta(days=3))
        )

        assert result.requires_human_review
        assert "duplicate" in result.reasoning.lower()
        assert "INV-D1" in result.reasoning
        assert {c.memory_id for c in result.contributions} == {"vm-1", "cm-1"}
        assert snapshot() == before
        assert before == [("vm-1", 0.9, 4), ("cm-1", 0.75, 2)]

    def test_datetime_invoice_date_matches_within_window(
        self, processor: InvoiceProcessor, make_invoice
    ) -> None:
        processor.process_invoice(
            make_invoice(
                invoice_id="INV-D1",
                invoice_number="R-100",
                invoice_date=datetime(2024, 5, 17, 9, 0),
            )
        )
        result = processor.process_invoice(
            make_invoice(invoice_id="INV-D2", invoice_number="R-100", invoice_date=date(2024, 5, 10))
        )
        assert "Potential duplicate: INV-D1" in result.reasoning
    def test_outside_window_not_flagged(self, processor: InvoiceProcessor, make_invoice) -> None:
        processor.process_invoice(
            make_invoice(invoice_id="INV-D1", invoice_number="R-100", invoice_date=date(2024, 5, 1))
        )
        result = processor.process_invoice(
            make_invoice(invoice_id="INV-D2", invoice_number="R-100", invoice_date=date(2024, 5, 20))
        )
        assert "duplicate" not in result.reasoning.lower()

    def test_reprocessing_same_invoice_not_flagged(
        self, processor: InvoiceProcessor, make_invoice
    ) -> None:
        invoice = make_invoice(invoice_id="INV-D1", invoice_number="R-100")
        processor.process_invoice(invoice)
        result = processor.process_invoice(invoice)
        assert "duplicate" not in result.reasoning.lower()


# ---------------------------------------------------------------------------
# TestPurchaseOrders
# ---------------------------------------------------------------------------


class TestPurchaseOrders:
    """Tests for purchase-order suggestions during processing."""

    @pytest.fixture(autouse=True)
    def orders(self, processor: InvoiceProcessor) -> None:
        processor.set_purchase_orders(
            [
                {
                    "po_number": "PO-A-1",
                    "vendor": "Acme GmbH",
                    "order_date": "2024-03-01",
                    "line_items": [{"sku": "A-100", "qty": 5}],
                }
            ]
        )

    def test_strong_match_proposed(self, processor: InvoiceProcessor, make_invoice) -> None:
        result = processor.process_invoice(
            make_invoice(
                vendor="Acme GmbH",
                invoice_date=date(2024, 3, 6),
                fields={"lineItems": [{"sku": "A-100", "qty": 5}]},
            )
        )

        [proposal] = [p for p in result.proposed_corrections if p.startswith("poNumber:")]
        assert '"PO-A-1"' in proposal
        assert "confidence: 0.87" in proposal
        assert any(
            p.startswith("[po_match] [poNumber]: PO match suggested: PO-A-1 (confidence: 87%)")
            for p in result.proposed_corrections
        )
        assert result.requires_human_review

    def test_weak_match_only_reported(self, processor: InvoiceProcessor, make_invoice) -> None:
        result = processor.process_invoice(
            make_invoice(
                vendor="Acme GmbH",
                invoice_date=date(2024, 4, 15),
                fields={"lineItems": [{"sku": "A-100", "qty": 2}]},
            )
        )

        assert not any(p.startswith("poNumber:") for p in result.proposed_corrections)
        assert any("(confidence: 60%)" in p for p in result.proposed_corrections)

    def test_existing_po_number_skips_matching(
        self, processor: InvoiceProcessor, make_invoice
    ) -> None:
        result = processor.process_invoice(
            make_invoice(
                vendor="Acme GmbH",
                invoice_date=date(2024, 3, 6),
                fields={"poNumber": "PO-A-9", "lineItems": [{"sku": "A-100", "qty": 5}]},
            )
        )
        assert not any("PO-A-1" in p for p in result.proposed_corrections)

    def test_other_vendor_no_suggestion(self, processor: InvoiceProcessor, make_invoice) -> None:
        result = processor.process_invoice(make_invoice(invoice_date=date(2024, 3, 6)))
        assert not any("po_match" in p for p in result.proposed_corrections)


# ---------------------------------------------------------------------------
# TestFeedbackPlumbing
# ---------------------------------------------------------------------------


class TestFeedbackPlumbing:
    """Tests for contribution hand-over, audit trail and store failures."""

    def test_explicit_contributions_take_precedence(
        self, processor: InvoiceProcessor, learned_mapping, make_invoice
    ) -> None:
        invoice = service_date_invoice(make_invoice, "INV-X")
        result = processor.process_invoice(invoice)
        assert [c.memory_id for c in result.contributions] == [learned_mapping.id]

        learning = processor.learn_from_feedback(approve(invoice.id), invoice, [])

        assert learning.updated_memories == []
        assert invoice.id not in processor.pending_contributions
        assert processor.store.get_vendor_memory(learned_mapping.id).confidence == pytest.approx(0.6)

    def test_result_contributions_reinforce(
        self, processor: InvoiceProcessor, learned_mapping, make_invoice
    ) -> None:
        invoice = service_date_invoice(make_invoice, "INV-X")
        result = processor.process_invoice(invoice)

        processor.learn_from_feedback(approve(invoice.id), invoice, result.contributions)

        assert processor.store.get_vendor_memory(learned_mapping.id).confidence == pytest.approx(0.62)

    def test_audit_trail_order(self, processor: InvoiceProcessor, make_invoice) -> None:
        invoice = make_invoice(fields={"total": 100})
        result = processor.process_invoice(invoice)
        processor.learn_from_feedback(approve(invoice.id), invoice)

        assert [e.step for e in result.audit_trail] == [
            AuditStep.RECALL,
            AuditStep.APPLY,
            AuditStep.DECIDE,
        ]
        assert [e.step for e in processor.get_audit_trail(invoice.id)] == [
            AuditStep.RECALL,
            AuditStep.APPLY,
            AuditStep.DECIDE,
            AuditStep.LEARN,
        ]

    def test_result_serializes(self, processor: InvoiceProcessor, make_invoice) -> None:
        data = processor.process_invoice(make_invoice(fields={"total": 100})).to_dict()
        assert data["normalized_invoice"] == {"total": 100}
        assert data["memory_updates"] == ["Recorded invoice INV-001 for duplicate detection"]
        assert [e["step"] for e in data["audit_trail"]] == ["recall", "apply", "decide"]
        assert "contributions" not in data

    def test_closed_store_raises(
        self, store: SQLiteMemoryStore, processor: InvoiceProcessor, make_invoice
    ) -> None:
        store.close()
        with pytest.raises(StoreUnavailableError):
            processor.process_invoice(make_invoice())
