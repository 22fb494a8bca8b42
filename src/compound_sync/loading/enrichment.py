"""
Ordered parallel enrichment of parsed records before they are written.

A transform receives one record and a worker context (e.g. a chemistry
toolkit handle that is not thread-safe) and returns the record to store.
Contexts are explicit objects, created once per worker and checked out per
task, so no context is ever used by two threads at the same time.
"""

import logging
import queue
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Sequence

from ..core.models import CompoundRecord


logger = logging.getLogger(__name__)


Transform = Callable[[CompoundRecord, Any], CompoundRecord]


class EnrichmentStage:
    """
    Applies a transform to a batch of records, preserving input order.

    With ``workers <= 1`` the transform runs inline on a single context.
    Otherwise a ThreadPoolExecutor with ``workers`` threads is used and a pool
    of ``workers`` contexts is shared between them.
    """

    def __init__(
        self,
        transform: Transform,
        context_factory: Optional[Callable[[], Any]] = None,
        workers: int = 1,
    ):
        """
        Initialize the enrichment stage.

        Args:
            transform: Function (record, context) -> record
            context_factory: Creates one worker context; None gives a None context
            workers: Number of worker threads
        """
        self.transform = transform
        self.context_factory = context_factory or (lambda: None)
        self.workers = max(1, int(workers))
        self._executor: Optional[ThreadPoolExecutor] = None
        self._contexts: "queue.Queue[Any]" = queue.Queue()

        for _ in range(self.workers):
            self._contexts.put(self.context_factory())

    def apply(self, records: Sequence[CompoundRecord]) -> List[CompoundRecord]:
        """
        Enrich a batch of records.

        Returns:
            Transformed records in the order of ``records``

        Raises:
            Whatever the transform raises for the first failing record
        """
        if not records:
            return []

        if self.workers == 1:
            context = self._contexts.get()
            try:
                return [self.transform(record, context) for record in records]
            finally:
                self._contexts.put(context)

        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="enrichment"
            )

        futures = [self._executor.submit(self._run_one, record) for record in records]
        return [future.result() for future in futures]

    def _run_one(self, record: CompoundRecord) -> CompoundRecord:
        context = self._contexts.get()
        try:
            return self.transform(record, context)
        finally:
            self._contexts.put(context)

    def close(self) -> None:
        """Shut down the worker threads."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            logger.debug("Enrichment workers shut down")

    def __enter__(self) -> "EnrichmentStage":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
