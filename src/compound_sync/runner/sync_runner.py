"""
Synchronization runner that drives one run from remote check to commit.

A run moves through the phases

    IDLE -> CHECKING_REMOTE_VERSION -> (UP_TO_DATE | RESOLVING_DELTAS)
         -> FETCHING -> LOADING -> COMMITTING -> DONE

and ends in FAILED if any phase raises. All compound writes of a run share
one Transaction; a failed run rolls it back in full, so the store is left
exactly as it was. Downloaded files are kept on disk either way.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from ..core.models import FetchedUpdate, SyncPhase, SyncPlan, SyncState, VersionMarker
from ..core.source import UpdateSource
from ..core.store import CompoundStore
from ..core.transaction import Transaction
from ..loading.batch_loader import BatchLoader, DEFAULT_BATCH_SIZE, LoadStats, read_removed_ids
from ..loading.enrichment import EnrichmentStage
from ..loading.reconciler import DEFAULT_DELETE_BATCH_SIZE, STAMPED, StampedReconciler, create_reconciler
from ..parsing.containers import CompressedContainerReader
from ..parsing.sdf_parser import SdfRecordParser


logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """
    Outcome of a synchronization run.

    Attributes:
        phase: Terminal phase (DONE or UP_TO_DATE)
        final_version: Version marker after the run
        applied: Names of the applied updates, in order
        records_loaded: Records upserted
        records_removed: Records deleted by manifests or reconciliation
        generation: Marker generation written by the run
        phase_history: Every phase the run entered
    """
    phase: SyncPhase
    final_version: Optional[str] = None
    applied: List[str] = field(default_factory=list)
    records_loaded: int = 0
    records_removed: int = 0
    generation: Optional[int] = None
    phase_history: List[SyncPhase] = field(default_factory=list)


class SyncOrchestrator:
    """
    Runs one synchronization of a dataset against an update source.

    The orchestrator owns the run state; the store owns compound rows and
    the version marker. One orchestrator must not run concurrently with
    another against the same store.
    """

    def __init__(
        self,
        store: CompoundStore,
        source: UpdateSource,
        parser: SdfRecordParser,
        dataset: str,
        work_directory: Path,
        container_reader: Optional[CompressedContainerReader] = None,
        strategy: str = STAMPED,
        batch_size: int = DEFAULT_BATCH_SIZE,
        delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE,
        enrichment: Optional[EnrichmentStage] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Compound store
            source: Remote update source
            parser: Record stream parser
            dataset: Logical dataset name the marker is stored under
            work_directory: Local directory for downloads
            container_reader: Reader for plain/gzip/zip containers
            strategy: Reconciliation strategy for full reloads
            batch_size: Records per upsert batch
            delete_batch_size: Identifiers per delete batch
            enrichment: Optional transform applied before each flush
        """
        self.store = store
        self.source = source
        self.parser = parser
        self.dataset = dataset
        self.work_directory = Path(work_directory)
        self.container_reader = container_reader or CompressedContainerReader()
        self.strategy = strategy
        self.batch_size = batch_size
        self.delete_batch_size = delete_batch_size
        self.enrichment = enrichment

        # Validates the strategy before any run starts.
        create_reconciler(strategy, delete_batch_size)

        self.phase = SyncPhase.IDLE
        self.phase_history: List[SyncPhase] = [SyncPhase.IDLE]
        self.state = SyncState()

    def run(self) -> SyncResult:
        """
        Execute one synchronization run.

        Returns:
            SyncResult with phase DONE, or UP_TO_DATE when nothing was newer

        Raises:
            Whatever a phase raised, after the transaction was rolled back
        """
        checked_at = datetime.now()
        txn: Optional[Transaction] = None
        self.state = SyncState()
        self.phase = SyncPhase.IDLE
        self.phase_history = [SyncPhase.IDLE]

        try:
            self._enter(SyncPhase.CHECKING_REMOTE_VERSION)
            marker = self.store.read_marker(self.dataset)
            local_version = marker.version if marker else None
            self.state.last_applied_marker = local_version
            logger.info(f"Local version of {self.dataset}: {local_version}")

            remote_state = self.source.check_remote_version(local_version)

            if self.source.is_up_to_date(local_version, remote_state):
                self._enter(SyncPhase.UP_TO_DATE)
                self.store.touch_check_date(self.dataset, checked_at)
                logger.info(f"{self.dataset} is up to date ({local_version})")
                return self._result(SyncPhase.UP_TO_DATE, final_version=local_version)

            self._enter(SyncPhase.RESOLVING_DELTAS)
            plan = self.source.plan(local_version, remote_state)
            self.state.pending_deltas = [u.window for u in plan.updates if u.window is not None]
            self.state.resolved_final_marker = plan.final_version
            logger.info(
                f"Planned {len(plan.updates)} updates from {local_version} to {plan.final_version}"
            )

            self._enter(SyncPhase.FETCHING)
            fetched = self.source.fetch(plan, self.work_directory)

            self._enter(SyncPhase.LOADING)
            txn = self.store.begin()
            stats, stamp = self._load(txn, plan, fetched)

            self._enter(SyncPhase.COMMITTING)
            previous_generation = marker.generation if marker else 0
            generation = max(previous_generation + 1, stamp or 0)
            self.store.write_marker(txn, VersionMarker(
                dataset=self.dataset,
                version=plan.final_version,
                generation=generation,
                record_count=self.store.count_compounds(txn),
                checked_at=checked_at,
            ))
            txn.commit()

            self._enter(SyncPhase.DONE)
            logger.info(
                f"Synchronized {self.dataset} to {plan.final_version}: "
                f"{stats.records} loaded, {stats.removed} removed"
            )
            return self._result(
                SyncPhase.DONE,
                final_version=plan.final_version,
                applied=[update.name for update in fetched],
                records_loaded=stats.records,
                records_removed=stats.removed,
                generation=generation,
            )

        except Exception as e:
            if txn is not None and txn.is_active:
                txn.rollback()
            logger.error(f"Synchronization of {self.dataset} failed in {self.phase.value}: {e}")
            self._enter(SyncPhase.FAILED)
            raise

    def _load(self, txn: Transaction, plan: SyncPlan, fetched: List[FetchedUpdate]):
        stats = LoadStats()
        stamp = None

        if plan.base_directory is not None:
            logger.info(f"Loading base corpus {plan.base_directory}")
            reload_stats, stamp = self._reload(txn, plan.base_directory)
            stats.add(reload_stats)

        for update in fetched:
            if update.full_reload:
                logger.info(f"Reloading {update.name} from {update.sdf_directory}")
                reload_stats, stamp = self._reload(txn, update.sdf_directory)
                stats.add(reload_stats)
                continue

            logger.info(f"Applying delta {update.name}")
            loader = self._loader(txn, version=self._delta_version(txn, stamp))
            if update.removed_ids_file is not None:
                removed_ids = read_removed_ids(update.removed_ids_file)
                stats.removed += loader.delete_ids(removed_ids, batch_size=self.delete_batch_size)
            stats.add(loader.load_directory(update.sdf_directory))

        return stats, stamp

    def _delta_version(self, txn: Transaction, stamp: Optional[int]) -> Optional[int]:
        # Delta rows never carry a stamp below the newest one in the store.
        if self.strategy != STAMPED:
            return None
        if stamp is not None:
            return stamp
        return self.store.max_version(txn)

    def _reload(self, txn: Transaction, directory: Path) -> Tuple[LoadStats, Optional[int]]:
        reconciler = create_reconciler(self.strategy, self.delete_batch_size)
        stats = self._loader(txn, reconciler=reconciler).reload_directory(directory)
        stamp = reconciler.next_version if isinstance(reconciler, StampedReconciler) else None
        return stats, stamp

    def _loader(self, txn: Transaction, reconciler=None, version: Optional[int] = None) -> BatchLoader:
        return BatchLoader(
            self.store,
            txn,
            self.parser,
            container_reader=self.container_reader,
            batch_size=self.batch_size,
            reconciler=reconciler,
            version=version,
            enrichment=self.enrichment,
        )

    def _enter(self, phase: SyncPhase) -> None:
        logger.debug(f"Phase {self.phase.value} -> {phase.value}")
        self.phase = phase
        self.phase_history.append(phase)

    def _result(self, phase: SyncPhase, **kwargs) -> SyncResult:
        return SyncResult(phase=phase, phase_history=list(self.phase_history), **kwargs)


def run_directory_load(
    store: CompoundStore,
    parser: SdfRecordParser,
    directory: Path,
    dataset: str,
    version: Optional[str] = None,
    container_reader: Optional[CompressedContainerReader] = None,
    strategy: str = STAMPED,
    batch_size: int = DEFAULT_BATCH_SIZE,
    delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE,
    enrichment: Optional[EnrichmentStage] = None,
) -> LoadStats:
    """
    Replace a dataset with the containers of a local directory.

    The whole load is one transaction. The dataset marker is written with
    ``version`` (which may be None) and the next generation.

    Returns:
        LoadStats of the reload

    Raises:
        Whatever the load raised, after the transaction was rolled back
    """
    reconciler = create_reconciler(strategy, delete_batch_size)
    marker = store.read_marker(dataset)

    with store.begin() as txn:
        loader = BatchLoader(
            store,
            txn,
            parser,
            container_reader=container_reader,
            batch_size=batch_size,
            reconciler=reconciler,
            enrichment=enrichment,
        )
        stats = loader.reload_directory(directory)

        stamp = reconciler.next_version if isinstance(reconciler, StampedReconciler) else None
        generation = max((marker.generation if marker else 0) + 1, stamp or 0)
        store.write_marker(txn, VersionMarker(
            dataset=dataset,
            version=version,
            generation=generation,
            record_count=store.count_compounds(txn),
            checked_at=datetime.now(),
        ))
        txn.commit()

    logger.info(
        f"Loaded {dataset} from {directory}: {stats.records} records in {stats.files} files, "
        f"{stats.removed} removed"
    )
    return stats
