"""
Compound store implementations.

Two backends are available:
    - sqlite: local file (or in-memory) database, the default
    - sqlserver: SQL Server through pyodbc

To select the backend without configuration, set COMPOUND_SYNC_DB_BACKEND
(or DB_BACKEND) to 'sqlite' or 'sqlserver'.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from ..core.store import CompoundStore
from .sqlite_store import SqliteCompoundStore


logger = logging.getLogger(__name__)


BACKENDS = ("sqlite", "sqlserver")
DEFAULT_SQLITE_PATH = Path("local/state/compounds.db")


def _get_sqlserver_store():
    from .sqlserver_store import SqlServerCompoundStore
    return SqlServerCompoundStore


def create_compound_store(
    backend: Optional[str] = None,
    # SQLite options
    db_path: Optional[Union[str, Path]] = None,
    # SQL Server options
    connection_string: Optional[str] = None,
    host: str = "localhost",
    port: int = 1433,
    database: str = "Compounds",
    username: str = "sa",
    password: Optional[str] = None,
    driver: str = "ODBC Driver 18 for SQL Server",
    schema: str = "compound_sync",
    trust_server_certificate: bool = True,
    auto_init: bool = True,
) -> CompoundStore:
    """
    Factory function to create the configured compound store.

    Args:
        backend: 'sqlite' or 'sqlserver'. Defaults to COMPOUND_SYNC_DB_BACKEND,
            then DB_BACKEND, then 'sqlite'.

        SQLite options:
            db_path: Path to SQLite database file

        SQL Server options:
            connection_string: Full ODBC connection string
            host: SQL Server host
            port: SQL Server port
            database: Database name
            username: Database username
            password: Database password (defaults to COMPOUND_SYNC_SQLSERVER_PASSWORD)
            driver: ODBC driver name
            schema: Schema name for tables
            trust_server_certificate: Trust self-signed certs
            auto_init: Auto-create schema/tables

    Returns:
        CompoundStore instance

    Raises:
        ValueError: If backend is not recognized
        ImportError: If pyodbc is missing for the sqlserver backend
    """
    if backend is None:
        backend = os.environ.get("COMPOUND_SYNC_DB_BACKEND") or os.environ.get("DB_BACKEND", "sqlite")
    backend = backend.lower()

    if backend == "sqlite":
        if db_path is None:
            db_path = DEFAULT_SQLITE_PATH
        logger.info(f"Using SQLite compound store: {db_path}")
        return SqliteCompoundStore(db_path=db_path, auto_init=auto_init)

    elif backend == "sqlserver":
        SqlServerCompoundStore = _get_sqlserver_store()

        if password is None:
            password = os.environ.get("COMPOUND_SYNC_SQLSERVER_PASSWORD") or os.environ.get("MSSQL_SA_PASSWORD")

        if connection_string is None:
            connection_string = os.environ.get("COMPOUND_SYNC_SQLSERVER_CONN_STR")

        logger.info(f"Using SQL Server compound store: {host},{port}/{database} (schema: {schema})")
        return SqlServerCompoundStore(
            connection_string=connection_string,
            host=host,
            port=port,
            database=database,
            username=username,
            password=password,
            driver=driver,
            schema=schema,
            auto_init=auto_init,
            trust_server_certificate=trust_server_certificate,
        )

    else:
        raise ValueError(
            f"Unknown backend: {backend}. "
            f"Supported backends: {', '.join(BACKENDS)}"
        )


__all__ = ["SqliteCompoundStore", "create_compound_store", "BACKENDS"]
