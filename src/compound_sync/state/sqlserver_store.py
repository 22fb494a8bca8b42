"""
SQL Server-based compound store.

The production backend. Tables live in a configurable schema that is
created on first use.
"""

import logging
import re
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional, Sequence

try:
    import pyodbc
except ImportError:
    pyodbc = None

from ..core.exceptions import StoreError
from ..core.models import CompoundRecord, VersionMarker
from ..core.store import CompoundStore
from ..core.transaction import Transaction


logger = logging.getLogger(__name__)


FETCH_SIZE = 10000


@contextmanager
def _driver_errors(action: str) -> Iterator[None]:
    try:
        yield
    except pyodbc.Error as e:
        logger.error(f"Failed to {action}: {e}")
        raise StoreError(f"Failed to {action}: {e}") from e


class SqlServerCompoundStore(CompoundStore):
    """
    SQL Server implementation of the compound store.

    Uses a single connection with autocommit disabled; a run's Transaction
    wraps that connection and is the only place commit or rollback happen.
    """

    def __init__(
        self,
        connection_string: Optional[str] = None,
        host: str = "localhost",
        port: int = 1433,
        database: str = "Compounds",
        username: str = "sa",
        password: Optional[str] = None,
        driver: str = "ODBC Driver 18 for SQL Server",
        schema: str = "compound_sync",
        auto_init: bool = True,
        trust_server_certificate: bool = True,
    ):
        """
        Initialize the SQL Server store.

        Args:
            connection_string: Full ODBC connection string (if provided, other params ignored)
            host: SQL Server host
            port: SQL Server port
            database: Database name
            username: Database username
            password: Database password
            driver: ODBC driver name
            schema: Schema name for tables (default: 'compound_sync')
            auto_init: Whether to create schema and tables automatically
            trust_server_certificate: Whether to trust self-signed certificates
        """
        if pyodbc is None:
            raise ImportError(
                "pyodbc is required for SqlServerCompoundStore. "
                "Install with: pip install pyodbc"
            )

        if not self._is_valid_identifier(schema):
            raise ValueError(f"Invalid schema name: {schema}")

        self.schema = schema

        if connection_string:
            self.connection_string = connection_string
        else:
            trust_cert = "yes" if trust_server_certificate else "no"
            self.connection_string = (
                f"Driver={{{driver}}};"
                f"Server={host},{port};"
                f"Database={database};"
                f"UID={username};"
                f"PWD={password};"
                f"TrustServerCertificate={trust_cert}"
            )

        self.conn = None
        self._active: Optional[Transaction] = None
        self._connect()

        if auto_init:
            self._init_schema()

    def _is_valid_identifier(self, name: str) -> bool:
        """
        Validate that a name is a safe SQL identifier.

        Must start with a letter or underscore, contain only letters, digits
        and underscores, be at most 128 characters and not be a reserved word.
        """
        if not name or len(name) > 128:
            return False

        if not re.match(r'^[a-zA-Z_][a-zA-Z0-9_]*$', name):
            return False

        reserved_words = {
            'select', 'insert', 'update', 'delete', 'drop', 'create', 'alter',
            'exec', 'execute', 'union', 'where', 'from', 'table', 'database',
            'schema', 'index', 'grant', 'revoke', 'truncate', 'declare', 'set'
        }
        return name.lower() not in reserved_words

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self.conn = pyodbc.connect(self.connection_string, autocommit=False)
            logger.debug(f"Connected to SQL Server compound store (schema: {self.schema})")
        except pyodbc.Error as e:
            logger.error(f"Failed to connect to SQL Server: {e}")
            raise

    def _init_schema(self) -> None:
        """Initialize database schema and tables."""
        cursor = self.conn.cursor()

        try:
            # Schema name is validated by _is_valid_identifier(); CREATE SCHEMA
            # cannot take parameters.
            cursor.execute(f"""
                IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = ?)
                BEGIN
                    EXEC('CREATE SCHEMA [{self.schema}]')
                END
            """, (self.schema,))

            cursor.execute(f"""
                IF NOT EXISTS (SELECT * FROM sys.tables t
                               JOIN sys.schemas s ON t.schema_id = s.schema_id
                               WHERE t.name = 'compounds' AND s.name = ?)
                BEGIN
                    CREATE TABLE [{self.schema}].[compounds] (
                        id BIGINT NOT NULL PRIMARY KEY,
                        payload NVARCHAR(MAX) NOT NULL,
                        version INT NOT NULL DEFAULT 0
                    );
                    CREATE INDEX ix_compounds_version ON [{self.schema}].[compounds] (version);
                END
            """, (self.schema,))

            cursor.execute(f"""
                IF NOT EXISTS (SELECT * FROM sys.tables t
                               JOIN sys.schemas s ON t.schema_id = s.schema_id
                               WHERE t.name = 'compound_stats' AND s.name = ?)
                BEGIN
                    CREATE TABLE [{self.schema}].[compound_stats] (
                        dataset NVARCHAR(200) NOT NULL PRIMARY KEY,
                        version NVARCHAR(200),
                        generation INT NOT NULL DEFAULT 0,
                        record_count BIGINT,
                        checked_at DATETIME2
                    )
                END
            """, (self.schema,))

            self.conn.commit()
            logger.debug("Initialized compound store schema")

        except pyodbc.Error as e:
            logger.error(f"Failed to initialize schema: {e}")
            self.conn.rollback()
            raise

    def _table(self, name: str) -> str:
        return f"[{self.schema}].[{name}]"

    def begin(self) -> Transaction:
        if self._active is not None and self._active.is_active:
            raise StoreError("A transaction is already active on this store")
        # pyodbc opens the transaction implicitly on the first statement.
        self._active = Transaction(self.conn)
        logger.debug(f"Began transaction {self._active.transaction_id}")
        return self._active

    def upsert_compounds(self, txn: Transaction, records: Sequence[CompoundRecord]) -> int:
        if not records:
            return 0
        with _driver_errors("upsert compounds"):
            txn.cursor().executemany(f"""
                MERGE {self._table('compounds')} WITH (HOLDLOCK) AS target
                USING (SELECT ? AS id, ? AS payload, ? AS version) AS source
                ON target.id = source.id
                WHEN MATCHED THEN
                    UPDATE SET payload = source.payload,
                               version = COALESCE(source.version, target.version)
                WHEN NOT MATCHED THEN
                    INSERT (id, payload, version)
                    VALUES (source.id, source.payload, COALESCE(source.version, 0));
            """, [
                (r.compound_id, r.payload, r.version)
                for r in records
            ])
        return len(records)

    def delete_compounds(self, txn: Transaction, compound_ids: Sequence[int]) -> int:
        if not compound_ids:
            return 0
        with _driver_errors("delete compounds"):
            txn.cursor().executemany(
                f"DELETE FROM {self._table('compounds')} WHERE id = ?",
                [(compound_id,) for compound_id in compound_ids],
            )
        return len(compound_ids)

    def iter_compound_ids(self, txn: Transaction) -> Iterator[int]:
        cursor = txn.cursor()
        cursor.execute(f"SELECT id FROM {self._table('compounds')}")
        while True:
            rows = cursor.fetchmany(FETCH_SIZE)
            if not rows:
                return
            for row in rows:
                yield int(row[0])

    def max_version(self, txn: Transaction) -> int:
        cursor = txn.cursor()
        cursor.execute(f"SELECT COALESCE(MAX(version), 0) FROM {self._table('compounds')}")
        return int(cursor.fetchone()[0])

    def delete_older_than(self, txn: Transaction, version: int) -> int:
        with _driver_errors("delete stale compounds"):
            cursor = txn.cursor()
            cursor.execute(f"DELETE FROM {self._table('compounds')} WHERE version < ?", (version,))
        return cursor.rowcount

    def count_compounds(self, txn: Transaction) -> int:
        cursor = txn.cursor()
        cursor.execute(f"SELECT COUNT_BIG(*) FROM {self._table('compounds')}")
        return int(cursor.fetchone()[0])

    def read_marker(self, dataset: str) -> Optional[VersionMarker]:
        cursor = self.conn.cursor()
        cursor.execute(f"""
            SELECT dataset, version, generation, record_count, checked_at
            FROM {self._table('compound_stats')} WHERE dataset = ?
        """, (dataset,))
        row = cursor.fetchone()
        if row is None:
            return None
        return VersionMarker(
            dataset=row.dataset,
            version=row.version,
            generation=row.generation,
            record_count=row.record_count,
            checked_at=row.checked_at,
        )

    def write_marker(self, txn: Transaction, marker: VersionMarker) -> None:
        cursor = txn.cursor()
        cursor.execute(
            f"SELECT generation FROM {self._table('compound_stats')} WITH (UPDLOCK) WHERE dataset = ?",
            (marker.dataset,),
        )
        row = cursor.fetchone()
        if row is not None and marker.generation <= row.generation:
            raise StoreError(
                f"Marker generation for {marker.dataset} must increase: "
                f"{marker.generation} <= {row.generation}"
            )

        with _driver_errors("write version marker"):
            cursor.execute(f"""
                MERGE {self._table('compound_stats')} AS target
                USING (SELECT ? AS dataset, ? AS version, ? AS generation,
                              ? AS record_count, ? AS checked_at) AS source
                ON target.dataset = source.dataset
                WHEN MATCHED THEN
                    UPDATE SET version = source.version,
                               generation = source.generation,
                               record_count = source.record_count,
                               checked_at = source.checked_at
                WHEN NOT MATCHED THEN
                    INSERT (dataset, version, generation, record_count, checked_at)
                    VALUES (source.dataset, source.version, source.generation,
                            source.record_count, source.checked_at);
            """, (
                marker.dataset,
                marker.version,
                marker.generation,
                marker.record_count,
                marker.checked_at,
            ))
        logger.debug(f"Wrote marker {marker.dataset}={marker.version} (generation {marker.generation})")

    def touch_check_date(self, dataset: str, checked_at: datetime) -> None:
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                f"UPDATE {self._table('compound_stats')} SET checked_at = ? WHERE dataset = ?",
                (checked_at, dataset),
            )
            if cursor.rowcount == 0:
                cursor.execute(
                    f"INSERT INTO {self._table('compound_stats')} (dataset, checked_at) VALUES (?, ?)",
                    (dataset, checked_at),
                )
            self.conn.commit()
        except pyodbc.Error as e:
            logger.error(f"Failed to update check date: {e}")
            self.conn.rollback()
            raise StoreError(f"Failed to update check date: {e}") from e
        logger.debug(f"Updated check date of {dataset}")

    def close(self) -> None:
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed SQL Server compound store")
