"""
FTP delta feed source.

The feed publishes one directory per delta window under ``<root>/Daily``
and ``<root>/Weekly``. Each window directory holds a ``killed-CIDs``
manifest of removed identifiers and an ``SDF`` directory of record
containers.
"""

import ftplib
import logging
import posixpath
import re
from pathlib import Path
from typing import Callable, List, Optional

from ..core.exceptions import SyncConfigError
from ..core.models import DeltaKind, FetchedUpdate, RemoteState, SyncPlan, UpdateUnit
from ..core.source import UpdateSource
from .resolver import DeltaResolver


logger = logging.getLogger(__name__)


REMOVED_IDS_FILE = "killed-CIDs"
SDF_DIRECTORY = "SDF"
DEFAULT_FILE_PATTERN = r".*\.sdf\.gz"


class FtpDeltaSource(UpdateSource):
    """
    Update source for a daily/weekly FTP delta feed.

    When the store has no version yet, the plan carries the configured base
    directory, which is loaded before the deltas published since
    ``base_version``.
    """

    def __init__(
        self,
        host: str,
        port: int = 21,
        username: str = "anonymous",
        password: str = "",
        root_path: str = "",
        file_pattern: str = DEFAULT_FILE_PATTERN,
        base_directory: Optional[Path] = None,
        base_version: Optional[str] = None,
        timeout: int = 60,
        resolver: Optional[DeltaResolver] = None,
        ftp_factory: Callable[[], ftplib.FTP] = ftplib.FTP,
    ):
        """
        Initialize the FTP source.

        Args:
            host: FTP server host
            port: FTP server port
            username: Login user
            password: Login password
            root_path: Feed root containing Daily/ and Weekly/
            file_pattern: Regex a container file name must fully match to be downloaded
            base_directory: Local base corpus loaded when the store has no version
            base_version: Version of the base corpus
            timeout: Socket timeout in seconds
            resolver: Delta resolver
            ftp_factory: Creates the unconnected FTP client
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.root_path = root_path.rstrip("/")
        self.file_pattern = re.compile(file_pattern)
        self.base_directory = Path(base_directory) if base_directory else None
        self.base_version = base_version
        self.timeout = timeout
        self.resolver = resolver or DeltaResolver()
        self.ftp_factory = ftp_factory
        self._ftp: Optional[ftplib.FTP] = None

    def get_name(self) -> str:
        return f"ftp://{self.host}{self.root_path}"

    def check_remote_version(self, local_version: Optional[str]) -> RemoteState:
        daily = self._list_names(f"{self.root_path}/Daily")
        weekly = self._list_names(f"{self.root_path}/Weekly")
        logger.info(f"Remote feed lists {len(daily)} daily and {len(weekly)} weekly windows")
        return RemoteState(daily=daily, weekly=weekly)

    def is_up_to_date(self, local_version: Optional[str], remote_state: RemoteState) -> bool:
        if local_version is None:
            return False
        return bool(remote_state.daily) and all(name <= local_version for name in remote_state.daily)

    def plan(self, local_version: Optional[str], remote_state: RemoteState) -> SyncPlan:
        base_directory = None
        if local_version is None:
            if self.base_directory is None or self.base_version is None:
                raise SyncConfigError(
                    "The store has no version; a base directory and base version are required",
                    missing_keys=["paths.base_directory", "paths.base_version"],
                )
            base_directory = self.base_directory

        delta_plan = self.resolver.resolve(
            local_version, self.base_version, remote_state.daily, remote_state.weekly
        )
        updates = [UpdateUnit(name=window.name, window=window) for window in delta_plan.deltas]
        return SyncPlan(
            local_version=local_version,
            updates=updates,
            final_version=delta_plan.final_version,
            base_directory=base_directory,
        )

    def fetch(self, plan: SyncPlan, work_directory: Path) -> List[FetchedUpdate]:
        work_directory = Path(work_directory)
        fetched = []

        for update in plan.updates:
            window = update.window
            folder = "Daily" if window.kind == DeltaKind.DAILY else "Weekly"
            remote_base = f"{self.root_path}{window.remote_path}"
            local_base = work_directory / folder / window.name
            sdf_directory = local_base / SDF_DIRECTORY
            sdf_directory.mkdir(parents=True, exist_ok=True)

            logger.info(f"Downloading {window.remote_path}")

            removed_ids_file = local_base / REMOVED_IDS_FILE
            self._download(f"{remote_base}/{REMOVED_IDS_FILE}", removed_ids_file)

            for name in self._list_names(f"{remote_base}/{SDF_DIRECTORY}"):
                if not self.file_pattern.fullmatch(name):
                    logger.debug(f"Skipping {name}: does not match file pattern")
                    continue
                logger.info(f"  {name}")
                self._download(f"{remote_base}/{SDF_DIRECTORY}/{name}", sdf_directory / name)

            fetched.append(FetchedUpdate(
                name=window.name,
                sdf_directory=sdf_directory,
                removed_ids_file=removed_ids_file,
            ))

        return fetched

    def close(self) -> None:
        if self._ftp is None:
            return
        try:
            self._ftp.quit()
        except ftplib.all_errors as e:
            logger.debug(f"FTP quit failed, closing connection: {e}")
            self._ftp.close()
        finally:
            self._ftp = None

    def _connection(self) -> ftplib.FTP:
        if self._ftp is None:
            ftp = self.ftp_factory()
            ftp.connect(self.host, self.port, timeout=self.timeout)
            ftp.login(self.username, self.password)
            ftp.set_pasv(True)
            self._ftp = ftp
            logger.debug(f"Connected to {self.get_name()}")
        return self._ftp

    def _list_names(self, remote_path: str) -> List[str]:
        names = [posixpath.basename(entry.rstrip("/")) for entry in self._connection().nlst(remote_path)]
        return sorted(name for name in names if name not in ("", ".", ".."))

    def _download(self, remote_path: str, local_path: Path) -> None:
        with open(local_path, "wb") as f:
            self._connection().retrbinary(f"RETR {remote_path}", f.write)
