"""
Loading of parsed records into a compound store.
"""

from .batch_loader import BatchLoader, LoadStats, read_removed_ids, DEFAULT_BATCH_SIZE
from .enrichment import EnrichmentStage
from .reconciler import (
    Reconciler,
    SetDifferenceReconciler,
    StampedReconciler,
    create_reconciler,
    STAMPED,
    SET_DIFFERENCE,
    STRATEGIES,
    DEFAULT_DELETE_BATCH_SIZE,
)

__all__ = [
    "BatchLoader",
    "LoadStats",
    "read_removed_ids",
    "DEFAULT_BATCH_SIZE",
    "EnrichmentStage",
    "Reconciler",
    "SetDifferenceReconciler",
    "StampedReconciler",
    "create_reconciler",
    "STAMPED",
    "SET_DIFFERENCE",
    "STRATEGIES",
    "DEFAULT_DELETE_BATCH_SIZE",
]
