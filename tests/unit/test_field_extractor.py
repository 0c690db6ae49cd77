"""
Unit tests for label-driven field value extraction.
"""

import pytest

from invoice_memory.extraction import RegexFieldExtractor


@pytest.fixture
def extractor() -> RegexFieldExtractor:
    return RegexFieldExtractor()


class TestRegexFieldExtractor:
    """Tests for RegexFieldExtractor."""

    def test_german_date_converted_to_iso(self, extractor: RegexFieldExtractor) -> None:
        text = "Rechnung Nr. 4711\nLeistungsdatum: 15.01.2024\nBetrag: 100,00 EUR"
        assert extractor.extract(text, "Leistungsdatum", "serviceDate") == "2024-01-15"

    def test_iso_date_pattern(self, extractor: RegexFieldExtractor) -> None:
        assert extractor.extract("Leistungsdatum 2024-02-03", "Leistungsdatum", "serviceDate") == "2024-02-03"

    def test_case_insensitive(self, extractor: RegexFieldExtractor) -> None:
        assert extractor.extract("LEISTUNGSDATUM: 01.02.2024", "Leistungsdatum", "serviceDate") == "2024-02-01"

    def test_order_number_patterns(self, extractor: RegexFieldExtractor) -> None:
        assert extractor.extract("Bestellnr. PO-A-1001", "Bestellnummer", "poNumber") == "PO-A-1001"
        assert extractor.extract("Ref PO: PO-B-77", "Bestellnummer", "poNumber") == "PO-B-77"

    def test_generic_fallback(self, extractor: RegexFieldExtractor) -> None:
        text = "Lieferschein:  LS-2024-88  \nSumme: 10"
        assert extractor.extract(text, "Lieferschein", "deliveryNote") == "LS-2024-88"

    def test_generic_fallback_escapes_label(self, extractor: RegexFieldExtractor) -> None:
        assert extractor.extract("Kd.-Nr.: 12345", "Kd.-Nr.", "customerNumber") == "12345"

    def test_generic_date_field_normalized(self, extractor: RegexFieldExtractor) -> None:
        assert extractor.extract("Lieferdatum: 05.03.2024", "Lieferdatum", "deliveryDate") == "2024-03-05"

    def test_non_date_field_not_converted(self, extractor: RegexFieldExtractor) -> None:
        assert extractor.extract("Referenz: 05.03.2024", "Referenz", "reference") == "05.03.2024"

    def test_missing_label_or_text(self, extractor: RegexFieldExtractor) -> None:
        assert extractor.extract("Betrag: 100", "Leistungsdatum", "serviceDate") is None
        assert extractor.extract(None, "Leistungsdatum", "serviceDate") is None
        assert extractor.extract("", "Leistungsdatum", "serviceDate") is None

    def test_register_label(self, extractor: RegexFieldExtractor) -> None:
        extractor.register_label("Zahlbar bis", [r"Zahlbar bis\s+(\d{2}\.\d{2}\.\d{4})"])
        text = "Zahlbar bis 31.01.2024 ohne Abzug"
        assert extractor.extract(text, "Zahlbar bis", "dueDate") == "2024-01-31"
        assert "Zahlbar bis" in extractor.labels

    def test_custom_pattern_table(self) -> None:
        custom = RegexFieldExtractor({"Invoice date": [r"Invoice date[:\s]*(\d{4}-\d{2}-\d{2})"]})
        assert custom.labels == ["Invoice date"]
        assert custom.extract("Invoice date: 2024-05-06", "Invoice date", "invoiceDate") == "2024-05-06"
