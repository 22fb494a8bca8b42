"""
Update source interface for remote compound corpora.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from .models import FetchedUpdate, RemoteState, SyncPlan


class UpdateSource(ABC):
    """
    Abstract base class for update sources.

    An update source knows how to ask the remote side what it offers, turn
    that into a plan relative to the local version, and bring the planned
    updates onto local disk.
    """

    @abstractmethod
    def check_remote_version(self, local_version: Optional[str]) -> RemoteState:
        """
        Read the remote listing or latest release.

        Args:
            local_version: Version persisted in the store, None if never synced

        Returns:
            Snapshot of what the remote side offers
        """
        pass

    @abstractmethod
    def plan(self, local_version: Optional[str], remote_state: RemoteState) -> SyncPlan:
        """
        Compute the ordered updates required to reach the remote version.

        Raises:
            InconsistentServerDataError: If the remote data has a gap
            StaleDatabaseError: If the local version is too old to catch up
        """
        pass

    def is_up_to_date(self, local_version: Optional[str], remote_state: RemoteState) -> bool:
        """Whether the remote side offers nothing newer than local_version."""
        return self.plan(local_version, remote_state).is_up_to_date

    @abstractmethod
    def fetch(self, plan: SyncPlan, work_directory: Path) -> List[FetchedUpdate]:
        """
        Download the planned updates, one local directory per update.

        Partially downloaded files are left in place on failure.

        Returns:
            Fetched updates in application order
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Return the source name/identifier."""
        pass

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
