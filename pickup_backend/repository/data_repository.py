"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Optional

from pickup_backend.domain.models import AssignmentLedger, Guide
from pickup_backend.utils.config import Settings, get_settings
from pickup_backend.utils.logger import format_event, get_logger


logger = get_logger(__name__)


class PersistenceError(Exception):
    """Raised when the store cannot read or write a document."""


class DataRepository:
    """SQLite-backed document store for guide rosters and daily ledgers.

    Each date's ledger is a single JSON document written wholesale. Writes are
    atomic per document only; callers get no cross-document transactions and
    no compare-and-swap, so concurrent writers resolve as last-writer-wins.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_timeout_seconds,
        )
        connection.row_factory = sqlite3.Row
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Guides (
                        position INTEGER PRIMARY KEY AUTOINCREMENT,
                        guide_id TEXT NOT NULL UNIQUE,
                        display_name TEXT NOT NULL,
                        bus_capacity INTEGER CHECK (bus_capacity IS NULL OR bus_capacity > 0),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS PickupLedgers (
                        date TEXT PRIMARY KEY,
                        document TEXT NOT NULL,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Database initialization failed: {exc}") from exc

    # --- guide roster ---

    def upsert_guide(self, guide: Guide) -> Guide:
        """Insert or rename a guide; roster position is kept on update."""
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO Guides (guide_id, display_name, bus_capacity)
                    VALUES (?, ?, ?)
                    ON CONFLICT(guide_id) DO UPDATE SET
                        display_name = excluded.display_name,
                        bus_capacity = excluded.bus_capacity;
                    """,
                    (guide.guide_id, guide.display_name, guide.bus_capacity),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Saving guide {guide.guide_id} failed: {exc}") from exc
        return guide

    def list_guides(self) -> list[Guide]:
        """Return the roster in registration order."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    SELECT guide_id, display_name, bus_capacity
                    FROM Guides
                    ORDER BY position ASC;
                    """
                )
                rows = cursor.fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Loading guide roster failed: {exc}") from exc
        return [self._row_to_guide(row) for row in rows]

    def get_guide(self, guide_id: str) -> Optional[Guide]:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT guide_id, display_name, bus_capacity FROM Guides WHERE guide_id = ?;",
                    (guide_id,),
                )
                row = cursor.fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Loading guide {guide_id} failed: {exc}") from exc
        if row is None:
            return None
        return self._row_to_guide(row)

    @staticmethod
    def _row_to_guide(row: sqlite3.Row) -> Guide:
        return Guide(
            guide_id=str(row["guide_id"]),
            display_name=str(row["display_name"]),
            bus_capacity=int(row["bus_capacity"]) if row["bus_capacity"] is not None else None,
        )

    # --- ledgers ---

    def load_ledger(self, date: str) -> Optional[AssignmentLedger]:
        """Return the stored ledger for ``date`` or None when nothing is stored."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT document FROM PickupLedgers WHERE date = ?;",
                    (date,),
                )
                row = cursor.fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Loading ledger for {date} failed: {exc}") from exc
        if row is None:
            return None
        try:
            return AssignmentLedger.from_document(json.loads(row["document"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Stored ledger for {date} is unreadable: {exc}") from exc

    def list_ledgers(self) -> list[AssignmentLedger]:
        """Return every stored ledger, oldest date first."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT date, document FROM PickupLedgers ORDER BY date ASC;")
                rows = cursor.fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Loading stored ledgers failed: {exc}") from exc
        ledgers: list[AssignmentLedger] = []
        for row in rows:
            try:
                ledgers.append(AssignmentLedger.from_document(json.loads(row["document"])))
            except (KeyError, TypeError, ValueError) as exc:
                raise PersistenceError(
                    f"Stored ledger for {row['date']} is unreadable: {exc}"
                ) from exc
        return ledgers

    def save_ledger(self, ledger: AssignmentLedger) -> None:
        """Overwrite the date's document; an empty ledger removes it."""
        try:
            with self._connect() as conn:
                if not ledger.bookings():
                    conn.execute("DELETE FROM PickupLedgers WHERE date = ?;", (ledger.date,))
                else:
                    conn.execute(
                        """
                        INSERT INTO PickupLedgers (date, document)
                        VALUES (?, ?)
                        ON CONFLICT(date) DO UPDATE SET
                            document = excluded.document,
                            updated_at = CURRENT_TIMESTAMP;
                        """,
                        (ledger.date, json.dumps(ledger.to_document(), sort_keys=True)),
                    )
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Saving ledger for {ledger.date} failed: {exc}") from exc
        logger.debug(
            format_event(
                "Ledger saved",
                date=ledger.date,
                bookings=len(ledger.bookings()),
                guides=len(ledger.guide_ids()),
            )
        )
