"""
SQLite-based memory store implementation.

Tables:
- vendor_memories: learned field-label mappings, unique per (vendor, label)
- correction_memories: learned value corrections, optionally vendor-scoped
- resolution_memories: discrepancy outcome statistics
- audit_trail: append-only per-invoice stage records
- processed_invoices: duplicate-detection index
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

from invoice_memory.config import get_logger, get_settings
from invoice_memory.memory.models import (
    AuditEntry,
    AuditStep,
    CorrectionMemory,
    ResolutionMemory,
    VendorMemory,
)
from invoice_memory.memory.store import (
    MEMORY_UPDATABLE_FIELDS,
    RESOLUTION_UPDATABLE_FIELDS,
    MemoryStore,
    StoreUnavailableError,
    validate_changes,
)
from invoice_memory.utils.date_utils import isoformat_now


logger = get_logger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS vendor_memories (
    id TEXT PRIMARY KEY,
    vendor_key TEXT NOT NULL,
    vendor_name TEXT NOT NULL,
    original_label TEXT NOT NULL,
    normalized_field TEXT NOT NULL,
    confidence REAL NOT NULL,
    application_count INTEGER NOT NULL DEFAULT 0,
    consecutive_rejections INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    last_used_at TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    UNIQUE (vendor_key, original_label)
);
CREATE INDEX IF NOT EXISTS idx_vendor_memories_vendor ON vendor_memories(vendor_key);

CREATE TABLE IF NOT EXISTS correction_memories (
    id TEXT PRIMARY KEY,
    vendor_key TEXT,
    field_name TEXT NOT NULL,
    original_value_pattern TEXT NOT NULL,
    corrected_value TEXT NOT NULL,
    confidence REAL NOT NULL,
    application_count INTEGER NOT NULL DEFAULT 0,
    consecutive_rejections INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    last_used_at TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_correction_memories_field
    ON correction_memories(field_name, vendor_key);

CREATE TABLE IF NOT EXISTS resolution_memories (
    id TEXT PRIMARY KEY,
    discrepancy_type TEXT NOT NULL,
    context TEXT NOT NULL,
    approval_count INTEGER NOT NULL DEFAULT 0,
    rejection_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    last_used_at TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_resolution_memories_type
    ON resolution_memories(discrepancy_type);

CREATE TABLE IF NOT EXISTS audit_trail (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    invoice_id TEXT NOT NULL,
    step TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    details TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_trail_invoice ON audit_trail(invoice_id);

CREATE TABLE IF NOT EXISTS processed_invoices (
    id TEXT PRIMARY KEY,
    vendor_key TEXT NOT NULL,
    invoice_number TEXT NOT NULL,
    invoice_date TEXT NOT NULL,
    processed_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_processed_invoices_lookup
    ON processed_invoices(vendor_key, invoice_number);
"""


def _calendar_day(value: date) -> str:
    """ISO day string for a date or datetime (time of day dropped)."""
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def _to_db(value: Any) -> Any:
    """Convert a Python value to its column representation."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return value


def _vendor_from_row(row: sqlite3.Row) -> VendorMemory:
    return VendorMemory(
        id=row["id"],
        vendor_key=row["vendor_key"],
        vendor_name=row["vendor_name"],
        original_label=row["original_label"],
        normalized_field=row["normalized_field"],
        confidence=row["confidence"],
        application_count=row["application_count"],
        consecutive_rejections=row["consecutive_rejections"],
        created_at=datetime.fromisoformat(row["created_at"]),
        last_used_at=datetime.fromisoformat(row["last_used_at"]),
        is_active=bool(row["is_active"]),
    )


def _correction_from_row(row: sqlite3.Row) -> CorrectionMemory:
    return CorrectionMemory(
        id=row["id"],
        vendor_key=row["vendor_key"],
        field_name=row["field_name"],
        original_value_pattern=row["original_value_pattern"],
        corrected_value=row["corrected_value"],
        confidence=row["confidence"],
        application_count=row["application_count"],
        consecutive_rejections=row["consecutive_rejections"],
        created_at=datetime.fromisoformat(row["created_at"]),
        last_used_at=datetime.fromisoformat(row["last_used_at"]),
        is_active=bool(row["is_active"]),
    )


def _resolution_from_row(row: sqlite3.Row) -> ResolutionMemory:
    return ResolutionMemory(
        id=row["id"],
        discrepancy_type=row["discrepancy_type"],
        context=json.loads(row["context"]) if row["context"] else {},
        approval_count=row["approval_count"],
        rejection_count=row["rejection_count"],
        created_at=datetime.fromisoformat(row["created_at"]),
        last_used_at=datetime.fromisoformat(row["last_used_at"]),
        is_active=bool(row["is_active"]),
    )


class SQLiteMemoryStore(MemoryStore):
    """
    Memory store backed by a single SQLite connection.

    A lock serializes every statement so one store instance can be shared
    between threads. Database failures surface as ``StoreUnavailableError``.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        """
        Initialize the store and create the schema.

        Args:
            db_path: Database file path or ":memory:". Defaults to settings.
        """
        path = str(db_path) if db_path is not None else get_settings().database.path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        self._db_path = path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StoreUnavailableError(
                f"Cannot open memory store at {path}: {e}",
                operation="open",
            ) from e

        logger.info("memory_store_opened", db_path=path)

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run statements atomically, translating sqlite errors."""
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                logger.error("memory_store_failure", operation=operation, error=str(e))
                raise StoreUnavailableError(
                    f"Memory store operation '{operation}' failed: {e}",
                    operation=operation,
                ) from e

    def _query(self, operation: str, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._transaction(operation) as conn:
            return conn.execute(sql, params).fetchall()

    def _update(
        self,
        table: str,
        memory_id: str,
        changes: dict[str, Any],
        allowed: frozenset[str],
    ) -> None:
        validate_changes(changes, allowed)
        if not changes:
            return
        columns = sorted(changes)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        params = tuple(_to_db(changes[column]) for column in columns) + (memory_id,)
        with self._transaction(f"update_{table}") as conn:
            conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", params)

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()

    # Vendor memories

    def find_vendor_memories(self, vendor_key: str) -> list[VendorMemory]:
        rows = self._query(
            "find_vendor_memories",
            "SELECT * FROM vendor_memories WHERE vendor_key = ? AND is_active = 1 "
            "ORDER BY confidence DESC",
            (vendor_key,),
        )
        return [_vendor_from_row(row) for row in rows]

    def find_vendor_memory_by_label(
        self, vendor_key: str, original_label: str
    ) -> VendorMemory | None:
        rows = self._query(
            "find_vendor_memory_by_label",
            "SELECT * FROM vendor_memories WHERE vendor_key = ? AND original_label = ?",
            (vendor_key, original_label),
        )
        return _vendor_from_row(rows[0]) if rows else None

    def get_vendor_memory(self, memory_id: str) -> VendorMemory | None:
        rows = self._query(
            "get_vendor_memory", "SELECT * FROM vendor_memories WHERE id = ?", (memory_id,)
        )
        return _vendor_from_row(rows[0]) if rows else None

    def create_vendor_memory(self, memory: VendorMemory) -> None:
        with self._transaction("create_vendor_memory") as conn:
            conn.execute(
                "INSERT INTO vendor_memories (id, vendor_key, vendor_name, original_label, "
                "normalized_field, confidence, application_count, consecutive_rejections, "
                "created_at, last_used_at, is_active) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    memory.id,
                    memory.vendor_key,
                    memory.vendor_name,
                    memory.original_label,
                    memory.normalized_field,
                    memory.confidence,
                    memory.application_count,
                    memory.consecutive_rejections,
                    _to_db(memory.created_at),
                    _to_db(memory.last_used_at),
                    _to_db(memory.is_active),
                ),
            )

    def update_vendor_memory(self, memory_id: str, changes: dict[str, Any]) -> None:
        self._update("vendor_memories", memory_id, changes, MEMORY_UPDATABLE_FIELDS)

    def list_vendor_memories(self, active_only: bool = True) -> list[VendorMemory]:
        sql = "SELECT * FROM vendor_memories"
        if active_only:
            sql += " WHERE is_active = 1"
        return [_vendor_from_row(row) for row in self._query("list_vendor_memories", sql)]

    # Correction memories

    def find_correction_memories(
        self, vendor_key: str | None, field_name: str
    ) -> list[CorrectionMemory]:
        if vendor_key is None:
            rows = self._query(
                "find_correction_memories",
                "SELECT * FROM correction_memories WHERE vendor_key IS NULL "
                "AND field_name = ? AND is_active = 1 ORDER BY confidence DESC",
                (field_name,),
            )
        else:
            rows = self._query(
                "find_correction_memories",
                "SELECT * FROM correction_memories WHERE vendor_key = ? "
                "AND field_name = ? AND is_active = 1 ORDER BY confidence DESC",
                (vendor_key, field_name),
            )
        return [_correction_from_row(row) for row in rows]

    def get_correction_memory(self, memory_id: str) -> CorrectionMemory | None:
        rows = self._query(
            "get_correction_memory",
            "SELECT * FROM correction_memories WHERE id = ?",
            (memory_id,),
        )
        return _correction_from_row(rows[0]) if rows else None

    def create_correction_memory(self, memory: CorrectionMemory) -> None:
        with self._transaction("create_correction_memory") as conn:
            conn.execute(
                "INSERT INTO correction_memories (id, vendor_key, field_name, "
                "original_value_pattern, corrected_value, confidence, application_count, "
                "consecutive_rejections, created_at, last_used_at, is_active) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    memory.id,
                    memory.vendor_key,
                    memory.field_name,
                    memory.original_value_pattern,
                    memory.corrected_value,
                    memory.confidence,
                    memory.application_count,
                    memory.consecutive_rejections,
                    _to_db(memory.created_at),
                    _to_db(memory.last_used_at),
                    _to_db(memory.is_active),
                ),
            )

    def update_correction_memory(self, memory_id: str, changes: dict[str, Any]) -> None:
        self._update("correction_memories", memory_id, changes, MEMORY_UPDATABLE_FIELDS)

    def list_correction_memories(self, active_only: bool = True) -> list[CorrectionMemory]:
        sql = "SELECT * FROM correction_memories"
        if active_only:
            sql += " WHERE is_active = 1"
        return [_correction_from_row(row) for row in self._query("list_correction_memories", sql)]

    # Resolution memories

    def find_resolution_memories(self, discrepancy_type: str) -> list[ResolutionMemory]:
        rows = self._query(
            "find_resolution_memories",
            "SELECT * FROM resolution_memories WHERE discrepancy_type = ? AND is_active = 1 "
            "ORDER BY (approval_count + rejection_count) DESC",
            (discrepancy_type,),
        )
        return [_resolution_from_row(row) for row in rows]

    def create_resolution_memory(self, memory: ResolutionMemory) -> None:
        with self._transaction("create_resolution_memory") as conn:
            conn.execute(
                "INSERT INTO resolution_memories (id, discrepancy_type, context, "
                "approval_count, rejection_count, created_at, last_used_at, is_active) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    memory.id,
                    memory.discrepancy_type,
                    _to_db(memory.context),
                    memory.approval_count,
                    memory.rejection_count,
                    _to_db(memory.created_at),
                    _to_db(memory.last_used_at),
                    _to_db(memory.is_active),
                ),
            )

    def update_resolution_memory(self, memory_id: str, changes: dict[str, Any]) -> None:
        self._update("resolution_memories", memory_id, changes, RESOLUTION_UPDATABLE_FIELDS)

    # Audit trail

    def append_audit_entry(self, invoice_id: str, entry: AuditEntry) -> None:
        with self._transaction("append_audit_entry") as conn:
            conn.execute(
                "INSERT INTO audit_trail (invoice_id, step, timestamp, details) "
                "VALUES (?, ?, ?, ?)",
                (invoice_id, entry.step.value, entry.timestamp, entry.details),
            )

    def get_audit_trail(self, invoice_id: str) -> list[AuditEntry]:
        rows = self._query(
            "get_audit_trail",
            "SELECT step, timestamp, details FROM audit_trail WHERE invoice_id = ? "
            "ORDER BY timestamp ASC, seq ASC",
            (invoice_id,),
        )
        return [
            AuditEntry(step=AuditStep(row["step"]), timestamp=row["timestamp"], details=row["details"])
            for row in rows
        ]

    # Duplicate index

    def find_potential_duplicates(
        self,
        vendor_key: str,
        invoice_number: str,
        invoice_date: date,
        window_days: int,
    ) -> list[str]:
        window = timedelta(days=window_days)
        start = _calendar_day(invoice_date - window)
        end = _calendar_day(invoice_date + window)
        rows = self._query(
            "find_potential_duplicates",
            "SELECT id FROM processed_invoices WHERE vendor_key = ? AND invoice_number = ? "
            "AND invoice_date BETWEEN ? AND ? ORDER BY processed_at ASC",
            (vendor_key, invoice_number, start, end),
        )
        return [row["id"] for row in rows]

    def record_processed_invoice(
        self,
        invoice_id: str,
        vendor_key: str,
        invoice_number: str,
        invoice_date: date,
    ) -> None:
        with self._transaction("record_processed_invoice") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO processed_invoices "
                "(id, vendor_key, invoice_number, invoice_date, processed_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (invoice_id, vendor_key, invoice_number, _calendar_day(invoice_date), isoformat_now()),
            )
