"""
Pytest Configuration and Shared Fixtures.

Provides an in-memory memory store, settings sections, an invoice factory
and a processor wired to the in-memory store.
"""

import sys
from collections.abc import Callable, Generator
from datetime import date
from pathlib import Path
from typing import Any

import pytest

# Add repository root to Python path
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root))

from invoice_memory.config import ConfidenceSettings, get_settings
from invoice_memory.memory import Invoice, InvoiceField, SQLiteMemoryStore
from invoice_memory.services import InvoiceProcessor


VENDOR = "Supplier GmbH"
VENDOR_KEY = "supplier gmbh"


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_settings() -> Generator[None, None, None]:
    """Reload settings around every test so env overrides do not leak."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def confidence_settings() -> ConfidenceSettings:
    """Default confidence settings."""
    return ConfidenceSettings()


# =============================================================================
# Store and Processor Fixtures
# =============================================================================


@pytest.fixture
def store() -> Generator[SQLiteMemoryStore, None, None]:
    """Fresh in-memory SQLite store for each test."""
    memory_store = SQLiteMemoryStore(":memory:")
    yield memory_store
    memory_store.close()


@pytest.fixture
def processor(store: SQLiteMemoryStore) -> InvoiceProcessor:
    """Processor wired to the in-memory store."""
    return InvoiceProcessor(store)


# =============================================================================
# Invoice Factory
# =============================================================================


@pytest.fixture
def make_invoice() -> Callable[..., Invoice]:
    """
    Factory for invoices.

    ``fields`` maps names to bare values or ready-made InvoiceField objects;
    bare values get ``extraction_confidence``.
    """

    def _make(
        invoice_id: str = "INV-001",
        vendor: str = VENDOR,
        invoice_number: str | None = None,
        invoice_date: date = date(2024, 1, 15),
        fields: dict[str, Any] | None = None,
        raw_text: str | None = None,
        extraction_confidence: float = 0.95,
    ) -> Invoice:
        built: dict[str, InvoiceField] = {}
        for name, value in (fields or {}).items():
            if isinstance(value, InvoiceField):
                built[name] = value
            else:
                built[name] = InvoiceField(
                    name=name, value=value, extraction_confidence=extraction_confidence
                )
        return Invoice(
            id=invoice_id,
            vendor_id=vendor,
            vendor_name=vendor,
            invoice_number=invoice_number or invoice_id,
            invoice_date=invoice_date,
            fields=built,
            raw_text=raw_text,
        )

    return _make


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Pytest configuration hook."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
