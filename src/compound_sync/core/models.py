"""
Core data models for compound synchronization.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple


DATE_FORMAT = "%Y-%m-%d"


class DeltaKind(str, Enum):
    """Granularity of a remote update window."""
    DAILY = "daily"
    WEEKLY = "weekly"


class SyncPhase(str, Enum):
    """Phases of a synchronization run."""
    IDLE = "idle"
    CHECKING_REMOTE_VERSION = "checking_remote_version"
    UP_TO_DATE = "up_to_date"
    RESOLVING_DELTAS = "resolving_deltas"
    FETCHING = "fetching"
    LOADING = "loading"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ParsedRecord:
    """
    One record extracted from a record stream.

    Attributes:
        compound_id: Identifier parsed from the id tag, None if no tag was seen
        payload: Verbatim structure block, newline separated
    """
    compound_id: Optional[int]
    payload: str


@dataclass
class CompoundRecord:
    """
    A compound row as persisted in the store.

    Attributes:
        compound_id: External stable identifier (unique per store)
        payload: Serialized structure block, stored byte-for-byte
        version: Generation stamp written by the run that last upserted it
    """
    compound_id: int
    payload: str
    version: Optional[int] = None


@dataclass
class VersionMarker:
    """
    Persisted synchronization state of one dataset.

    Attributes:
        dataset: Logical dataset name
        version: Last applied delta token or release tag
        generation: Run generation, strictly increasing across committed runs
        record_count: Number of compounds after the last committed run
        checked_at: When the remote side was last checked
    """
    dataset: str
    version: Optional[str] = None
    generation: int = 0
    record_count: Optional[int] = None
    checked_at: Optional[datetime] = None


@dataclass(frozen=True)
class DeltaWindow:
    """
    A named, time-bounded increment of remote data.

    Weekly windows cover the seven days preceding their name.
    """
    kind: DeltaKind
    name: str

    @property
    def covered_span(self) -> Optional[Tuple[str, str]]:
        """Half-open [start, end) span covered by a weekly window."""
        if self.kind != DeltaKind.WEEKLY:
            return None
        end = datetime.strptime(self.name, DATE_FORMAT)
        start = end - timedelta(days=7)
        return start.strftime(DATE_FORMAT), self.name

    @property
    def remote_path(self) -> str:
        """Path of the window relative to the feed root, e.g. /Daily/2020-01-11."""
        folder = "Daily" if self.kind == DeltaKind.DAILY else "Weekly"
        return f"/{folder}/{self.name}"


@dataclass
class SyncState:
    """
    Run-scoped synchronization state, discarded when the run ends.

    Attributes:
        last_applied_marker: Marker read from the store at run start
        pending_deltas: Ordered windows still to be applied
        resolved_final_marker: Marker to persist on commit
    """
    last_applied_marker: Optional[str] = None
    pending_deltas: List[DeltaWindow] = field(default_factory=list)
    resolved_final_marker: Optional[str] = None


@dataclass
class UpdateUnit:
    """
    One remote update to fetch.

    Attributes:
        name: Delta token or release tag
        window: The delta window for feed sources, None for releases
        full_reload: Whether the update replaces the whole corpus
    """
    name: str
    window: Optional[DeltaWindow] = None
    full_reload: bool = False


@dataclass
class SyncPlan:
    """
    Updates required to bring the store to the remote version.

    Attributes:
        local_version: Marker version at run start (None for an empty store)
        updates: Ordered updates to fetch and apply
        final_version: Version to persist after the updates are applied
        base_directory: Local corpus to load first when no marker exists
    """
    local_version: Optional[str]
    updates: List[UpdateUnit] = field(default_factory=list)
    final_version: Optional[str] = None
    base_directory: Optional[Path] = None

    @property
    def is_up_to_date(self) -> bool:
        return self.local_version is not None and not self.updates and self.base_directory is None


@dataclass
class FetchedUpdate:
    """
    An update available on local disk.

    Attributes:
        name: Delta token or release tag
        sdf_directory: Directory of record containers
        removed_ids_file: Manifest of identifiers removed by this delta
        full_reload: Whether the directory replaces the whole corpus
    """
    name: str
    sdf_directory: Path
    removed_ids_file: Optional[Path] = None
    full_reload: bool = False


@dataclass
class RemoteState:
    """
    What the remote side currently offers.

    Attributes:
        daily: Sorted daily window names (feed sources)
        weekly: Sorted weekly window names (feed sources)
        latest_version: Latest release tag (release sources)
    """
    daily: List[str] = field(default_factory=list)
    weekly: List[str] = field(default_factory=list)
    latest_version: Optional[str] = None
