"""
Synchronization runners.
"""

from .sync_runner import SyncOrchestrator, SyncResult, run_directory_load

__all__ = ["SyncOrchestrator", "SyncResult", "run_directory_load"]
