"""
Reconciliation strategies that remove records no longer present in a source.

Both strategies guarantee that after a full reload a record untouched by
every scanned source file is removed, and a record present in any scanned
file survives with its latest payload.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Set

from ..core.exceptions import SyncConfigError
from ..core.store import CompoundStore
from ..core.transaction import Transaction


logger = logging.getLogger(__name__)


STAMPED = "stamped"
SET_DIFFERENCE = "set_difference"
STRATEGIES = (STAMPED, SET_DIFFERENCE)

DEFAULT_DELETE_BATCH_SIZE = 10000


class Reconciler(ABC):
    """
    Tracks one full reload and removes stale records when it completes.

    Lifecycle: prepare() at reload start, mark_loaded() for every flushed
    batch, finish() after all sources were loaded. All three run inside the
    same transaction.
    """

    @abstractmethod
    def prepare(self, store: CompoundStore, txn: Transaction) -> None:
        pass

    @property
    def version(self) -> Optional[int]:
        """Version stamp to write on every upsert, None to leave stamps alone."""
        return None

    def mark_loaded(self, compound_ids: Iterable[int]) -> None:
        """Record identifiers that were written by this reload."""
        pass

    @abstractmethod
    def finish(self, store: CompoundStore, txn: Transaction) -> int:
        """
        Delete records that were not refreshed.

        Returns:
            Number of records removed
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass


class SetDifferenceReconciler(Reconciler):
    """
    Removes identifiers present before the reload but absent from every source.

    Keeps the complete identifier set of the store in memory; use it only for
    stores without a version column.
    """

    def __init__(self, delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE):
        self.delete_batch_size = delete_batch_size
        self._pending: Optional[Set[int]] = None

    def prepare(self, store: CompoundStore, txn: Transaction) -> None:
        self._pending = set(store.iter_compound_ids(txn))
        logger.info(f"Snapshotted {len(self._pending)} existing compound ids for removal tracking")

    def mark_loaded(self, compound_ids: Iterable[int]) -> None:
        pending = self._require_prepared()
        pending.difference_update(compound_ids)

    @property
    def pending_ids(self) -> Set[int]:
        return set(self._require_prepared())

    def finish(self, store: CompoundStore, txn: Transaction) -> int:
        pending = sorted(self._require_prepared())
        removed = 0
        for start in range(0, len(pending), self.delete_batch_size):
            batch = pending[start:start + self.delete_batch_size]
            removed += store.delete_compounds(txn, batch)
        logger.info(f"Removed {removed} compounds absent from the reloaded sources")
        self._pending = None
        return removed

    def get_name(self) -> str:
        return SET_DIFFERENCE

    def _require_prepared(self) -> Set[int]:
        if self._pending is None:
            raise RuntimeError("SetDifferenceReconciler.prepare() must be called first")
        return self._pending


class StampedReconciler(Reconciler):
    """
    Stamps every upsert with the next generation and sweeps older rows.

    The next generation is computed once, inside the run transaction, as
    the highest existing version plus one.
    """

    def __init__(self):
        self.next_version: Optional[int] = None

    def prepare(self, store: CompoundStore, txn: Transaction) -> None:
        self.next_version = store.max_version(txn) + 1
        logger.info(f"Stamping reloaded compounds with version {self.next_version}")

    @property
    def version(self) -> Optional[int]:
        if self.next_version is None:
            raise RuntimeError("StampedReconciler.prepare() must be called first")
        return self.next_version

    def finish(self, store: CompoundStore, txn: Transaction) -> int:
        removed = store.delete_older_than(txn, self.version)
        logger.info(f"Removed {removed} compounds with version < {self.next_version}")
        return removed

    def get_name(self) -> str:
        return STAMPED


def create_reconciler(strategy: str = STAMPED, delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE) -> Reconciler:
    """
    Create the reconciler for a configured strategy.

    Args:
        strategy: 'stamped' (default) or 'set_difference'
        delete_batch_size: Batch size for set-difference deletes

    Raises:
        SyncConfigError: If the strategy is unknown
    """
    if strategy == STAMPED:
        return StampedReconciler()
    if strategy == SET_DIFFERENCE:
        return SetDifferenceReconciler(delete_batch_size=delete_batch_size)
    raise SyncConfigError(
        f"Unknown reconciliation strategy: {strategy}. "
        f"Supported strategies: {', '.join(STRATEGIES)}"
    )
