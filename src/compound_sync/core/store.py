"""
Compound store interface.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterator, Optional, Sequence

from .models import CompoundRecord, VersionMarker
from .transaction import Transaction


class CompoundStore(ABC):
    """
    Abstract base class for compound stores.

    The store is the sole durable owner of compound rows and version markers.
    Every write goes through an explicit Transaction obtained from begin().
    """

    @abstractmethod
    def begin(self) -> Transaction:
        """
        Start a new transaction.

        Returns:
            Transaction handle to pass to every operation of the run
        """
        pass

    @abstractmethod
    def upsert_compounds(self, txn: Transaction, records: Sequence[CompoundRecord]) -> int:
        """
        Insert records, or overwrite payload and version on identifier collision.

        Records are applied in sequence order, so the last occurrence of an
        identifier wins.

        Args:
            txn: Active transaction
            records: Records to write

        Returns:
            Number of records written
        """
        pass

    @abstractmethod
    def delete_compounds(self, txn: Transaction, compound_ids: Sequence[int]) -> int:
        """
        Delete compounds by identifier. Unknown identifiers are ignored.

        Returns:
            Number of identifiers submitted
        """
        pass

    @abstractmethod
    def iter_compound_ids(self, txn: Transaction) -> Iterator[int]:
        """Iterate over all stored compound identifiers."""
        pass

    @abstractmethod
    def max_version(self, txn: Transaction) -> int:
        """Return the highest version stamp across all rows (0 for an empty store)."""
        pass

    @abstractmethod
    def delete_older_than(self, txn: Transaction, version: int) -> int:
        """
        Delete every row whose version is strictly less than ``version``.

        Returns:
            Number of rows deleted
        """
        pass

    @abstractmethod
    def count_compounds(self, txn: Transaction) -> int:
        """Return the number of stored compounds."""
        pass

    @abstractmethod
    def read_marker(self, dataset: str) -> Optional[VersionMarker]:
        """
        Read the persisted marker of a dataset.

        Returns:
            VersionMarker if the dataset was synchronized before, None otherwise
        """
        pass

    @abstractmethod
    def write_marker(self, txn: Transaction, marker: VersionMarker) -> None:
        """
        Persist a dataset marker as part of the run transaction.

        Raises:
            StoreError: If the generation does not increase
        """
        pass

    @abstractmethod
    def touch_check_date(self, dataset: str, checked_at: datetime) -> None:
        """Record that the remote side was checked, without touching compound data."""
        pass

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
