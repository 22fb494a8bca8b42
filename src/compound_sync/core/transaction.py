"""
Explicit transaction handle shared by every store operation in a run.
"""

import logging
import uuid
from typing import Any

from .exceptions import StoreError


logger = logging.getLogger(__name__)


class Transaction:
    """
    A single database transaction.

    A run obtains one Transaction from ``CompoundStore.begin()`` and passes it
    to every store operation. ``commit()`` and ``rollback()`` are the only exit
    points; once either has been called the handle is finished and further use
    raises StoreError.

    Used as a context manager, an unfinished transaction is rolled back on exit.
    """

    def __init__(self, connection: Any):
        """
        Initialize the transaction.

        Args:
            connection: DB-API connection with autocommit disabled
        """
        self.connection = connection
        self.transaction_id = str(uuid.uuid4())
        self._active = True

    @property
    def is_active(self) -> bool:
        return self._active

    def cursor(self) -> Any:
        """Return a cursor bound to this transaction."""
        self._require_active()
        return self.connection.cursor()

    def commit(self) -> None:
        """Commit all work done in this transaction."""
        self._require_active()
        self.connection.commit()
        self._active = False
        logger.debug(f"Committed transaction {self.transaction_id}")

    def rollback(self) -> None:
        """Undo all work done in this transaction. No-op once finished."""
        if not self._active:
            return
        try:
            self.connection.rollback()
        finally:
            self._active = False
        logger.info(f"Rolled back transaction {self.transaction_id}")

    def _require_active(self) -> None:
        if not self._active:
            raise StoreError(f"Transaction {self.transaction_id} is already finished")

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._active:
            self.rollback()
