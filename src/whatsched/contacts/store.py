"""Kontakt-Store: SQLite-Adressbuch für die Empfänger-Auswahl.

Async-Methoden nutzen asyncio.to_thread um den Event Loop nicht zu blockieren.
Telefonnummern werden nur als Ziffern gespeichert und sind eindeutig.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any, Sequence

from whatsched.core.errors import ContactError, DuplicateContactError
from whatsched.models import Contact, _utc_now, normalize_phone
from whatsched.utils.logging import get_logger

log = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS contacts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    phone TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_contacts_phone ON contacts(phone);
"""

_COLUMNS = "id, name, phone, created_at, updated_at"


class ContactStore:
    """SQLite-Backend für Kontakte mit Row-Factory."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._ensure_connection()

    def _ensure_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._conn.executescript(_SCHEMA)
            log.info("contact_db_opened", path=self._db_path)
        return self._conn

    # ── Sync-Hilfsmethoden (für asyncio.to_thread) ──────────────

    def _fetchone_sync(self, query: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        with self._lock:
            row = self._ensure_connection().execute(query, params).fetchone()
        return dict(row) if row is not None else None

    def _fetchall_sync(self, query: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._ensure_connection().execute(query, params).fetchall()
        return [dict(r) for r in rows]

    def _write_sync(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            conn = self._ensure_connection()
            try:
                cursor = conn.execute(query, params)
                conn.commit()
            except sqlite3.IntegrityError as exc:
                conn.rollback()
                if "UNIQUE" in str(exc):
                    raise DuplicateContactError(
                        "Ein Kontakt mit dieser Telefonnummer existiert bereits",
                    ) from exc
                raise ContactError(str(exc)) from exc
            return cursor

    def _close_sync(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                log.info("contact_db_closed", path=self._db_path)

    # ── Öffentliche API ─────────────────────────────────────────

    async def list_contacts(self) -> list[Contact]:
        """Alle Kontakte, alphabetisch nach Name."""
        rows = await asyncio.to_thread(
            self._fetchall_sync,
            f"SELECT {_COLUMNS} FROM contacts ORDER BY name COLLATE NOCASE ASC, id ASC",
        )
        return [Contact(**row) for row in rows]

    async def get_contact(self, contact_id: int) -> Contact | None:
        row = await asyncio.to_thread(
            self._fetchone_sync,
            f"SELECT {_COLUMNS} FROM contacts WHERE id = ?",
            (contact_id,),
        )
        return Contact(**row) if row else None

    async def get_contact_by_phone(self, phone: str) -> Contact | None:
        row = await asyncio.to_thread(
            self._fetchone_sync,
            f"SELECT {_COLUMNS} FROM contacts WHERE phone = ?",
            (normalize_phone(phone),),
        )
        return Contact(**row) if row else None

    async def create_contact(self, name: str, phone: str) -> Contact:
        """Legt einen Kontakt an.

        Raises:
            ContactError: Leerer Name oder Telefonnummer ohne Ziffern.
            DuplicateContactError: Telefonnummer existiert bereits.
        """
        now = _utc_now().isoformat()
        cursor = await asyncio.to_thread(
            self._write_sync,
            "INSERT INTO contacts (name, phone, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (_clean_name(name), _clean_phone(phone), now, now),
        )
        contact = await self.get_contact(cursor.lastrowid)
        if contact is None:
            raise ContactError("Kontakt nach dem Anlegen nicht gefunden")
        log.info("contact_created", contact_id=contact.id)
        return contact

    async def update_contact(
        self,
        contact_id: int,
        *,
        name: str | None = None,
        phone: str | None = None,
    ) -> Contact | None:
        """Teil-Update. Ohne Felder wird der aktuelle Stand zurückgegeben.

        Returns:
            Der aktualisierte Kontakt oder None wenn die ID unbekannt ist.
        """
        updates: list[str] = []
        values: list[Any] = []

        if name is not None:
            updates.append("name = ?")
            values.append(_clean_name(name))
        if phone is not None:
            updates.append("phone = ?")
            values.append(_clean_phone(phone))

        if not updates:
            return await self.get_contact(contact_id)

        updates.append("updated_at = ?")
        values.append(_utc_now().isoformat())
        values.append(contact_id)
        cursor = await asyncio.to_thread(
            self._write_sync,
            f"UPDATE contacts SET {', '.join(updates)} WHERE id = ?",
            tuple(values),
        )
        if cursor.rowcount == 0:
            return None
        log.info("contact_updated", contact_id=contact_id)
        return await self.get_contact(contact_id)

    async def delete_contact(self, contact_id: int) -> bool:
        cursor = await asyncio.to_thread(
            self._write_sync,
            "DELETE FROM contacts WHERE id = ?",
            (contact_id,),
        )
        deleted = cursor.rowcount > 0
        if deleted:
            log.info("contact_deleted", contact_id=contact_id)
        return deleted

    async def close(self) -> None:
        await asyncio.to_thread(self._close_sync)


def _clean_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise ContactError("Name darf nicht leer sein", details={"field": "name"})
    return cleaned


def _clean_phone(phone: str) -> str:
    digits = normalize_phone(phone)
    if not digits:
        raise ContactError("Telefonnummer enthält keine Ziffern", details={"field": "phone"})
    return digits
