"""
Batch loader that streams parsed records into a compound store.

Records are buffered up to ``batch_size`` and flushed as one upsert. All
batches of a run go through the same Transaction, so nothing becomes
visible until the caller commits.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..core.exceptions import MalformedRecordError, MissingIdentifierError
from ..core.models import CompoundRecord, ParsedRecord
from ..core.store import CompoundStore
from ..core.transaction import Transaction
from ..parsing.containers import CompressedContainerReader
from ..parsing.sdf_parser import SdfRecordParser
from .enrichment import EnrichmentStage
from .reconciler import DEFAULT_DELETE_BATCH_SIZE, Reconciler


logger = logging.getLogger(__name__)


DEFAULT_BATCH_SIZE = 1000

_INTEGER = re.compile(r"-?[0-9]+")


@dataclass
class LoadStats:
    """
    Counters for one load operation.

    Attributes:
        files: Container files read
        records: Records upserted
        batches: Upsert batches flushed
        removed: Records deleted by reconciliation or removal manifests
    """
    files: int = 0
    records: int = 0
    batches: int = 0
    removed: int = 0

    def add(self, other: "LoadStats") -> "LoadStats":
        self.files += other.files
        self.records += other.records
        self.batches += other.batches
        self.removed += other.removed
        return self


class BatchLoader:
    """
    Streams records from containers into a store in fixed-size batches.

    Within a batch the last occurrence of an identifier wins; across batches
    the store's upsert gives the same result, so the final payload of an
    identifier is always the one seen last in traversal order.
    """

    def __init__(
        self,
        store: CompoundStore,
        txn: Transaction,
        parser: SdfRecordParser,
        container_reader: Optional[CompressedContainerReader] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        reconciler: Optional[Reconciler] = None,
        version: Optional[int] = None,
        enrichment: Optional[EnrichmentStage] = None,
    ):
        """
        Initialize the loader.

        Args:
            store: Target compound store
            txn: Run transaction shared by every write
            parser: Record stream parser
            container_reader: Reader for plain/gzip/zip containers
            batch_size: Records per upsert batch
            reconciler: Receives identifiers after each flush; its version,
                when set, overrides ``version``
            version: Version stamp for upserted rows, None to keep existing stamps
            enrichment: Optional transform applied to every batch before flush
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        self.store = store
        self.txn = txn
        self.parser = parser
        self.container_reader = container_reader or CompressedContainerReader()
        self.batch_size = batch_size
        self.reconciler = reconciler
        self.version = version
        self.enrichment = enrichment

    def load_records(self, records: Iterable[ParsedRecord], source: str = "<stream>") -> LoadStats:
        """
        Upsert parsed records in batches.

        Args:
            records: Parsed records in source order
            source: Name used in error messages

        Returns:
            LoadStats with records and batches filled in

        Raises:
            MissingIdentifierError: If a record has no identifier
        """
        stats = LoadStats()
        buffer: List[CompoundRecord] = []

        for position, parsed in enumerate(records, start=1):
            if parsed.compound_id is None:
                raise MissingIdentifierError(
                    f"record {position} has no identifier tag '{self.parser.tag_line}'",
                    source=source,
                )
            buffer.append(CompoundRecord(compound_id=parsed.compound_id, payload=parsed.payload))

            if len(buffer) >= self.batch_size:
                stats.records += self._flush(buffer, source)
                stats.batches += 1
                buffer = []

        if buffer:
            stats.records += self._flush(buffer, source)
            stats.batches += 1

        return stats

    def load_file(self, path: Path) -> LoadStats:
        """
        Upsert every record of one container file.

        Raises:
            UnsupportedContainerError: If the file is not a known container
            MalformedRecordError: If a record cannot be parsed
        """
        path = Path(path)
        logger.info(f"Loading {path}")
        stats = LoadStats(files=1)

        for member in self.container_reader.open_members(path):
            records = self.parser.parse(member.stream, source=member.name)
            stats.add(self.load_records(records, source=member.name))

        logger.info(f"Loaded {stats.records} records from {path.name} in {stats.batches} batches")
        return stats

    def load_directory(self, directory: Path) -> LoadStats:
        """
        Upsert every container of a directory in ascending file name order.

        Files that are not containers are skipped.
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Directory not found: {directory}")

        stats = LoadStats()
        for path in self.container_reader.iter_directory(directory):
            stats.add(self.load_file(path))

        logger.info(f"Loaded {stats.records} records from {stats.files} files in {directory}")
        return stats

    def reload_directory(self, directory: Path) -> LoadStats:
        """
        Replace the whole corpus with the contents of a directory.

        Runs the reconciler lifecycle around load_directory(), so records
        absent from every file are removed afterwards.

        Raises:
            ValueError: If the loader has no reconciler
        """
        if self.reconciler is None:
            raise ValueError("reload_directory() requires a reconciler")

        self.reconciler.prepare(self.store, self.txn)
        stats = self.load_directory(directory)
        stats.removed += self.reconciler.finish(self.store, self.txn)
        return stats

    def delete_ids(self, compound_ids: Iterable[int], batch_size: int = DEFAULT_DELETE_BATCH_SIZE) -> int:
        """
        Delete identifiers in batches.

        Returns:
            Number of identifiers submitted for deletion
        """
        deleted = 0
        batch: List[int] = []
        for compound_id in compound_ids:
            batch.append(compound_id)
            if len(batch) >= batch_size:
                deleted += self.store.delete_compounds(self.txn, batch)
                batch = []
        if batch:
            deleted += self.store.delete_compounds(self.txn, batch)
        logger.info(f"Deleted {deleted} compounds")
        return deleted

    def _flush(self, buffer: List[CompoundRecord], source: str) -> int:
        if self.enrichment is not None:
            buffer = self.enrichment.apply(buffer)

        version = self.reconciler.version if self.reconciler is not None else None
        if version is None:
            version = self.version

        # Last occurrence of an identifier inside one batch wins.
        latest: Dict[int, CompoundRecord] = {}
        for record in buffer:
            latest.pop(record.compound_id, None)
            record.version = version
            latest[record.compound_id] = record
        batch = list(latest.values())

        written = self.store.upsert_compounds(self.txn, batch)
        if self.reconciler is not None:
            self.reconciler.mark_loaded(latest.keys())

        logger.debug(f"Flushed batch of {len(batch)} records from {source}")
        return written


def read_removed_ids(path: Path) -> List[int]:
    """
    Read a manifest of removed identifiers.

    The manifest is plain text with one integer per line; blank lines are
    ignored.

    Raises:
        MalformedRecordError: If a line is not an integer
    """
    path = Path(path)
    compound_ids = []
    with open(path, "r", encoding="ascii") as f:
        for line_number, line in enumerate(f, start=1):
            text = line.strip()
            if not text:
                continue
            if not _INTEGER.fullmatch(text):
                raise MalformedRecordError(
                    f"removed identifier {text!r} is not an integer",
                    source=str(path),
                    line_number=line_number,
                )
            compound_ids.append(int(text))
    logger.debug(f"Read {len(compound_ids)} removed identifiers from {path}")
    return compound_ids
