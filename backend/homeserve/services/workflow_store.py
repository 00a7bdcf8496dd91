import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional, Tuple

from homeserve.models import (
    AuditEntry,
    BookingStatus,
    CatalogService,
    DocumentType,
    FileRecord,
    VerificationStatus,
)
from homeserve.services.aggregates import BookingRecord, ProviderAccount
from homeserve.services.audit_trail import AuditTrail
from homeserve.services.document_bundle import DocumentBundle
from homeserve.services.errors import WorkflowInvalidStateError, WorkflowNotFoundError


@dataclass
class WorkflowStore:
    db_path: str

    def __post_init__(self) -> None:
        self._lock = Lock()
        # (kind, id) -> [lock, number of holders and waiters]
        self._entity_locks: Dict[Tuple[str, str], List[Any]] = {}
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS providers (
                        id TEXT PRIMARY KEY,
                        display_name TEXT NOT NULL,
                        verification_status TEXT NOT NULL DEFAULT 'unsubmitted',
                        is_active INTEGER NOT NULL DEFAULT 1,
                        status_notes TEXT,
                        registered_at TEXT NOT NULL,
                        version INTEGER NOT NULL DEFAULT 0
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS provider_documents (
                        provider_id TEXT NOT NULL,
                        doc_type TEXT NOT NULL,
                        verified INTEGER NOT NULL DEFAULT 0,
                        notes TEXT,
                        PRIMARY KEY (provider_id, doc_type)
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS document_files (
                        id TEXT PRIMARY KEY,
                        provider_id TEXT NOT NULL,
                        doc_type TEXT NOT NULL,
                        position INTEGER NOT NULL,
                        filename TEXT NOT NULL,
                        storage_path TEXT NOT NULL,
                        upload_date TEXT NOT NULL,
                        size INTEGER NOT NULL,
                        mime_type TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS verification_history (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        provider_id TEXT NOT NULL,
                        status TEXT NOT NULL,
                        date TEXT NOT NULL,
                        notes TEXT,
                        reviewer TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS provider_status_history (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        provider_id TEXT NOT NULL,
                        status TEXT NOT NULL,
                        date TEXT NOT NULL,
                        notes TEXT,
                        reviewer TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS services (
                        id TEXT PRIMARY KEY,
                        provider_id TEXT NOT NULL,
                        name TEXT NOT NULL,
                        is_available INTEGER NOT NULL DEFAULT 1,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS bookings (
                        id TEXT PRIMARY KEY,
                        service_id TEXT NOT NULL,
                        customer_id TEXT NOT NULL,
                        provider_id TEXT NOT NULL,
                        booking_date TEXT NOT NULL,
                        booking_time TEXT NOT NULL,
                        location TEXT NOT NULL,
                        notes TEXT NOT NULL DEFAULT '',
                        status TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        version INTEGER NOT NULL DEFAULT 0
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS booking_status_history (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        booking_id TEXT NOT NULL,
                        status TEXT NOT NULL,
                        date TEXT NOT NULL,
                        notes TEXT,
                        reviewer TEXT
                    )
                    """
                )
                conn.commit()

    @contextmanager
    def entity_lock(self, kind: str, entity_id: str) -> Iterator[None]:
        key = (kind, entity_id)
        with self._lock:
            entry = self._entity_locks.setdefault(key, [Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entity_locks[key]

    # Providers

    def insert_provider(self, account: ProviderAccount) -> None:
        account.check_invariants()
        with self._connect() as conn:
            existing = conn.execute("SELECT id FROM providers WHERE id = ?", (account.provider_id,)).fetchone()
            if existing:
                raise WorkflowInvalidStateError("Provider is already registered")
            conn.execute(
                """
                INSERT INTO providers (id, display_name, verification_status, is_active, status_notes, registered_at, version)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    account.provider_id,
                    account.display_name,
                    account.verification_status.value,
                    1 if account.is_active else 0,
                    account.status_notes,
                    account.registered_at.isoformat(),
                    account.version,
                ),
            )
            self._write_provider_children(conn, account, persisted_history=0, persisted_status_history=0)
            conn.commit()

    def load_provider(self, provider_id: str) -> ProviderAccount:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM providers WHERE id = ?", (provider_id,)).fetchone()
            if not row:
                raise WorkflowNotFoundError("Provider not found")
            return self._row_to_provider(conn, row)

    def find_provider(self, provider_id: str) -> Optional[ProviderAccount]:
        try:
            return self.load_provider(provider_id)
        except WorkflowNotFoundError:
            return None

    def save_provider(self, account: ProviderAccount) -> None:
        account.check_invariants()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE providers
                SET display_name = ?, verification_status = ?, is_active = ?, status_notes = ?, version = version + 1
                WHERE id = ? AND version = ?
                """,
                (
                    account.display_name,
                    account.verification_status.value,
                    1 if account.is_active else 0,
                    account.status_notes,
                    account.provider_id,
                    account.version,
                ),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise WorkflowInvalidStateError("Provider was modified concurrently; reload and retry")
            persisted_history = self._count(conn, "verification_history", "provider_id", account.provider_id)
            persisted_status = self._count(conn, "provider_status_history", "provider_id", account.provider_id)
            self._write_provider_children(
                conn,
                account,
                persisted_history=persisted_history,
                persisted_status_history=persisted_status,
            )
            conn.commit()
        account.version += 1

    def list_providers(self, status: Optional[VerificationStatus] = None) -> List[ProviderAccount]:
        with self._connect() as conn:
            query = "SELECT * FROM providers"
            params: List[str] = []
            if status is not None:
                query += " WHERE verification_status = ?"
                params.append(status.value)
            query += " ORDER BY registered_at ASC"
            rows = conn.execute(query, tuple(params)).fetchall()
            return [self._row_to_provider(conn, row) for row in rows]

    def _write_provider_children(
        self,
        conn: sqlite3.Connection,
        account: ProviderAccount,
        *,
        persisted_history: int,
        persisted_status_history: int,
    ) -> None:
        if persisted_history > len(account.history) or persisted_status_history > len(account.status_history):
            raise WorkflowInvalidStateError("Audit history cannot shrink")

        conn.execute("DELETE FROM provider_documents WHERE provider_id = ?", (account.provider_id,))
        conn.execute("DELETE FROM document_files WHERE provider_id = ?", (account.provider_id,))
        for doc_type, bundle in account.documents.items():
            conn.execute(
                "INSERT INTO provider_documents (provider_id, doc_type, verified, notes) VALUES (?, ?, ?, ?)",
                (account.provider_id, doc_type.value, 1 if bundle.verified else 0, bundle.notes),
            )
            conn.executemany(
                """
                INSERT INTO document_files (id, provider_id, doc_type, position, filename, storage_path, upload_date, size, mime_type)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        item.id,
                        account.provider_id,
                        doc_type.value,
                        position,
                        item.filename,
                        item.storage_path,
                        item.upload_date.isoformat(),
                        item.size,
                        item.mime_type,
                    )
                    for position, item in enumerate(bundle.files)
                ],
            )

        self._append_history(
            conn, "verification_history", "provider_id", account.provider_id, account.history.entries[persisted_history:]
        )
        self._append_history(
            conn,
            "provider_status_history",
            "provider_id",
            account.provider_id,
            account.status_history.entries[persisted_status_history:],
        )

    def _row_to_provider(self, conn: sqlite3.Connection, row: sqlite3.Row) -> ProviderAccount:
        provider_id = str(row["id"])
        bundles: Dict[DocumentType, DocumentBundle] = {doc_type: DocumentBundle() for doc_type in DocumentType}
        doc_rows = conn.execute("SELECT * FROM provider_documents WHERE provider_id = ?", (provider_id,)).fetchall()
        file_rows = conn.execute(
            "SELECT * FROM document_files WHERE provider_id = ? ORDER BY doc_type, position",
            (provider_id,),
        ).fetchall()
        files_by_type: Dict[str, List[FileRecord]] = {}
        for file_row in file_rows:
            files_by_type.setdefault(str(file_row["doc_type"]), []).append(
                FileRecord(
                    id=file_row["id"],
                    filename=file_row["filename"],
                    storage_path=file_row["storage_path"],
                    upload_date=datetime.fromisoformat(file_row["upload_date"]),
                    size=int(file_row["size"]),
                    mime_type=file_row["mime_type"],
                )
            )
        for doc_row in doc_rows:
            doc_type = DocumentType(doc_row["doc_type"])
            bundles[doc_type] = DocumentBundle(
                files=files_by_type.get(doc_type.value, []),
                verified=bool(doc_row["verified"]),
                notes=doc_row["notes"],
            )

        return ProviderAccount(
            provider_id=provider_id,
            display_name=row["display_name"],
            verification_status=VerificationStatus(row["verification_status"]),
            is_active=bool(row["is_active"]),
            status_notes=row["status_notes"],
            documents=bundles,
            history=self._load_history(conn, "verification_history", "provider_id", provider_id),
            status_history=self._load_history(conn, "provider_status_history", "provider_id", provider_id),
            registered_at=datetime.fromisoformat(row["registered_at"]),
            version=int(row["version"]),
        )

    # Service catalog

    def insert_service(self, service: CatalogService) -> CatalogService:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO services (id, provider_id, name, is_available, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    service.id,
                    service.provider_id,
                    service.name,
                    1 if service.is_available else 0,
                    service.created_at.isoformat(),
                ),
            )
            conn.commit()
        return service

    def get_service(self, service_id: str) -> Optional[CatalogService]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM services WHERE id = ?", (service_id,)).fetchone()
        if not row:
            return None
        return self._row_to_service(row)

    def update_service_availability(self, service_id: str, is_available: bool) -> CatalogService:
        with self._connect() as conn:
            conn.execute(
                "UPDATE services SET is_available = ? WHERE id = ?",
                (1 if is_available else 0, service_id),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM services WHERE id = ?", (service_id,)).fetchone()
        if not row:
            raise WorkflowNotFoundError("Service not found")
        return self._row_to_service(row)

    def list_services(self, provider_id: str) -> List[CatalogService]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM services WHERE provider_id = ? ORDER BY created_at ASC",
                (provider_id,),
            ).fetchall()
        return [self._row_to_service(row) for row in rows]

    def _row_to_service(self, row: sqlite3.Row) -> CatalogService:
        return CatalogService(
            id=row["id"],
            provider_id=row["provider_id"],
            name=row["name"],
            is_available=bool(row["is_available"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # Bookings

    def insert_booking(self, booking: BookingRecord) -> None:
        booking.check_invariants()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO bookings (
                    id, service_id, customer_id, provider_id, booking_date, booking_time,
                    location, notes, status, created_at, version
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    booking.id,
                    booking.service_id,
                    booking.customer_id,
                    booking.provider_id,
                    booking.date,
                    booking.time,
                    booking.location,
                    booking.notes,
                    booking.status.value,
                    booking.created_at.isoformat(),
                    booking.version,
                ),
            )
            self._append_history(conn, "booking_status_history", "booking_id", booking.id, booking.history.entries)
            conn.commit()

    def load_booking(self, booking_id: str) -> BookingRecord:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
            if not row:
                raise WorkflowNotFoundError("Booking not found")
            return self._row_to_booking(conn, row)

    def save_booking(self, booking: BookingRecord) -> None:
        booking.check_invariants()
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE bookings SET status = ?, notes = ?, version = version + 1 WHERE id = ? AND version = ?",
                (booking.status.value, booking.notes, booking.id, booking.version),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise WorkflowInvalidStateError("Booking was modified concurrently; reload and retry")
            persisted = self._count(conn, "booking_status_history", "booking_id", booking.id)
            if persisted > len(booking.history):
                conn.rollback()
                raise WorkflowInvalidStateError("Audit history cannot shrink")
            self._append_history(
                conn, "booking_status_history", "booking_id", booking.id, booking.history.entries[persisted:]
            )
            conn.commit()
        booking.version += 1

    def list_bookings(
        self,
        *,
        provider_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
    ) -> List[BookingRecord]:
        clauses: List[str] = []
        params: List[str] = []
        if provider_id is not None:
            clauses.append("provider_id = ?")
            params.append(provider_id)
        if customer_id is not None:
            clauses.append("customer_id = ?")
            params.append(customer_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)

        query = "SELECT * FROM bookings"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC"
        with self._connect() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
            return [self._row_to_booking(conn, row) for row in rows]

    def _row_to_booking(self, conn: sqlite3.Connection, row: sqlite3.Row) -> BookingRecord:
        return BookingRecord(
            id=row["id"],
            service_id=row["service_id"],
            customer_id=row["customer_id"],
            provider_id=row["provider_id"],
            date=row["booking_date"],
            time=row["booking_time"],
            location=row["location"],
            notes=row["notes"],
            status=BookingStatus(row["status"]),
            history=self._load_history(conn, "booking_status_history", "booking_id", row["id"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            version=int(row["version"]),
        )

    # History tables

    def _count(self, conn: sqlite3.Connection, table: str, key_column: str, key: str) -> int:
        row = conn.execute(f"SELECT COUNT(*) AS n FROM {table} WHERE {key_column} = ?", (key,)).fetchone()
        return int(row["n"])

    def _append_history(
        self,
        conn: sqlite3.Connection,
        table: str,
        key_column: str,
        key: str,
        entries: Tuple[AuditEntry, ...],
    ) -> None:
        conn.executemany(
            f"INSERT INTO {table} ({key_column}, status, date, notes, reviewer) VALUES (?, ?, ?, ?, ?)",
            [(key, entry.status, entry.date.isoformat(), entry.notes, entry.reviewer) for entry in entries],
        )

    def _load_history(self, conn: sqlite3.Connection, table: str, key_column: str, key: str) -> AuditTrail:
        rows = conn.execute(
            f"SELECT status, date, notes, reviewer FROM {table} WHERE {key_column} = ? ORDER BY id ASC",
            (key,),
        ).fetchall()
        return AuditTrail(
            AuditEntry(
                status=row["status"],
                date=datetime.fromisoformat(row["date"]),
                notes=row["notes"],
                reviewer=row["reviewer"],
            )
            for row in rows
        )

default_db = str(Path(__file__).resolve().parents[2] / "data" / "homeserve.sqlite3")
workflow_store = WorkflowStore(db_path=os.getenv("HOMESERVE_DB_PATH", default_db))
