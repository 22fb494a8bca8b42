"""
Core abstractions and models for compound synchronization.
"""

from .models import (
    CompoundRecord, ParsedRecord, VersionMarker, DeltaKind, DeltaWindow,
    SyncPhase, SyncState, SyncPlan, UpdateUnit, FetchedUpdate, RemoteState,
)
from .exceptions import (
    CompoundSyncError, MalformedRecordError, MissingIdentifierError,
    UnsupportedContainerError, InconsistentServerDataError, StaleDatabaseError,
    RemoteVersionError, SyncConfigError, StoreError,
)
from .transaction import Transaction
from .store import CompoundStore
from .source import UpdateSource

__all__ = [
    "CompoundRecord",
    "ParsedRecord",
    "VersionMarker",
    "DeltaKind",
    "DeltaWindow",
    "SyncPhase",
    "SyncState",
    "SyncPlan",
    "UpdateUnit",
    "FetchedUpdate",
    "RemoteState",
    "CompoundSyncError",
    "MalformedRecordError",
    "MissingIdentifierError",
    "UnsupportedContainerError",
    "InconsistentServerDataError",
    "StaleDatabaseError",
    "RemoteVersionError",
    "SyncConfigError",
    "StoreError",
    "Transaction",
    "CompoundStore",
    "UpdateSource",
]
