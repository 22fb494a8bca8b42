"""
SQLite-based compound store.

Suitable for local runs, tests and small corpora. Requires SQLite 3.24+
for ``INSERT ... ON CONFLICT DO UPDATE``.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union

from ..core.exceptions import StoreError
from ..core.models import CompoundRecord, VersionMarker
from ..core.store import CompoundStore
from ..core.transaction import Transaction


logger = logging.getLogger(__name__)


MEMORY = ":memory:"


@contextmanager
def _driver_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as e:
        logger.error(f"Failed to {action}: {e}")
        raise StoreError(f"Failed to {action}: {e}") from e


class SqliteCompoundStore(CompoundStore):
    """
    SQLite implementation of the compound store.

    The connection runs in autocommit mode; begin() issues an explicit
    BEGIN so that every write of a run belongs to one transaction.
    """

    def __init__(self, db_path: Union[str, Path] = MEMORY, auto_init: bool = True):
        """
        Initialize the SQLite store.

        Args:
            db_path: Path to the SQLite database file, or ':memory:'
            auto_init: Whether to create tables automatically
        """
        self.db_path = str(db_path)
        self.conn: Optional[sqlite3.Connection] = None
        self._connect()

        if auto_init:
            self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != MEMORY:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to SQLite compound store: {self.db_path}")

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with _driver_errors("initialize schema"):
            cursor = self.conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS compounds (
                    id INTEGER PRIMARY KEY,
                    payload TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS ix_compounds_version
                ON compounds (version)
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS compound_stats (
                    dataset TEXT PRIMARY KEY,
                    version TEXT,
                    generation INTEGER NOT NULL DEFAULT 0,
                    record_count INTEGER,
                    checked_at TEXT
                )
            """)
        logger.debug("Initialized compound store schema")

    def begin(self) -> Transaction:
        if self.conn.in_transaction:
            raise StoreError("A transaction is already active on this store")
        with _driver_errors("begin transaction"):
            self.conn.execute("BEGIN")
        txn = Transaction(self.conn)
        logger.debug(f"Began transaction {txn.transaction_id}")
        return txn

    def upsert_compounds(self, txn: Transaction, records: Sequence[CompoundRecord]) -> int:
        with _driver_errors("upsert compounds"):
            txn.cursor().executemany("""
                INSERT INTO compounds (id, payload, version)
                VALUES (?, ?, COALESCE(?, 0))
                ON CONFLICT (id) DO UPDATE SET
                    payload = excluded.payload,
                    version = COALESCE(?, compounds.version)
            """, [
                (r.compound_id, r.payload, r.version, r.version)
                for r in records
            ])
        return len(records)

    def delete_compounds(self, txn: Transaction, compound_ids: Sequence[int]) -> int:
        with _driver_errors("delete compounds"):
            txn.cursor().executemany(
                "DELETE FROM compounds WHERE id = ?",
                [(compound_id,) for compound_id in compound_ids],
            )
        return len(compound_ids)

    def iter_compound_ids(self, txn: Transaction) -> Iterator[int]:
        cursor = txn.cursor()
        cursor.execute("SELECT id FROM compounds")
        for row in cursor:
            yield row[0]

    def max_version(self, txn: Transaction) -> int:
        cursor = txn.cursor()
        cursor.execute("SELECT COALESCE(MAX(version), 0) FROM compounds")
        return int(cursor.fetchone()[0])

    def delete_older_than(self, txn: Transaction, version: int) -> int:
        with _driver_errors("delete stale compounds"):
            cursor = txn.cursor()
            cursor.execute("DELETE FROM compounds WHERE version < ?", (version,))
        return cursor.rowcount

    def count_compounds(self, txn: Transaction) -> int:
        cursor = txn.cursor()
        cursor.execute("SELECT COUNT(*) FROM compounds")
        return int(cursor.fetchone()[0])

    def get_compound(self, compound_id: int) -> Optional[CompoundRecord]:
        """Fetch one compound by identifier, outside any run transaction."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT id, payload, version FROM compounds WHERE id = ?", (compound_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return CompoundRecord(compound_id=row["id"], payload=row["payload"], version=row["version"])

    def read_marker(self, dataset: str) -> Optional[VersionMarker]:
        cursor = self.conn.cursor()
        cursor.execute("""
            SELECT dataset, version, generation, record_count, checked_at
            FROM compound_stats WHERE dataset = ?
        """, (dataset,))
        row = cursor.fetchone()
        if row is None:
            return None
        return VersionMarker(
            dataset=row["dataset"],
            version=row["version"],
            generation=row["generation"],
            record_count=row["record_count"],
            checked_at=datetime.fromisoformat(row["checked_at"]) if row["checked_at"] else None,
        )

    def write_marker(self, txn: Transaction, marker: VersionMarker) -> None:
        cursor = txn.cursor()
        cursor.execute("SELECT generation FROM compound_stats WHERE dataset = ?", (marker.dataset,))
        row = cursor.fetchone()
        if row is not None and marker.generation <= row["generation"]:
            raise StoreError(
                f"Marker generation for {marker.dataset} must increase: "
                f"{marker.generation} <= {row['generation']}"
            )

        with _driver_errors("write version marker"):
            cursor.execute("""
                INSERT INTO compound_stats (dataset, version, generation, record_count, checked_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (dataset) DO UPDATE SET
                    version = excluded.version,
                    generation = excluded.generation,
                    record_count = excluded.record_count,
                    checked_at = excluded.checked_at
            """, (
                marker.dataset,
                marker.version,
                marker.generation,
                marker.record_count,
                marker.checked_at.isoformat() if marker.checked_at else None,
            ))
        logger.debug(f"Wrote marker {marker.dataset}={marker.version} (generation {marker.generation})")

    def touch_check_date(self, dataset: str, checked_at: datetime) -> None:
        with _driver_errors("update check date"):
            cursor = self.conn.cursor()
            cursor.execute(
                "UPDATE compound_stats SET checked_at = ? WHERE dataset = ?",
                (checked_at.isoformat(), dataset),
            )
            if cursor.rowcount == 0:
                cursor.execute(
                    "INSERT INTO compound_stats (dataset, checked_at) VALUES (?, ?)",
                    (dataset, checked_at.isoformat()),
                )
        logger.debug(f"Updated check date of {dataset}")

    def close(self) -> None:
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed SQLite compound store")
