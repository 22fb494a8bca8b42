"""
HTTP release source: a single "latest release" published as a full corpus.
"""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import requests

from ..core.exceptions import RemoteVersionError
from ..core.models import FetchedUpdate, RemoteState, SyncPlan, UpdateUnit
from ..core.source import UpdateSource


logger = logging.getLogger(__name__)


RELEASE_PATTERN = re.compile(r'href="/releases/([^/]+)/downloads/all-structures"')
DOWNLOAD_DIRECTORY_FORMAT = "%Y-%m-%d_%H-%M-%S"
CHUNK_SIZE = 8 * 1024


class HttpReleaseSource(UpdateSource):
    """
    Update source for a release page that links the latest structure dump.

    A new release replaces the whole corpus, so the plan holds at most one
    full-reload update.
    """

    def __init__(
        self,
        server: str,
        file_name: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: int = 60,
        user_agent: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the HTTP source.

        Args:
            server: Base URL of the release server
            file_name: Local name of the downloaded container (e.g. structures.sdf.zip)
            username: Basic auth user for the download
            password: Basic auth password for the download
            timeout: Request timeout in seconds
            user_agent: Custom User-Agent header
            session: Requests session to use
        """
        self.server = server.rstrip("/")
        self.file_name = file_name
        self.username = username
        self.password = password
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = user_agent or "CompoundSync/1.0"

    def get_name(self) -> str:
        return self.server

    def check_remote_version(self, local_version: Optional[str]) -> RemoteState:
        """
        Read the latest release tag from the release page.

        Raises:
            RemoteVersionError: If the page links no release
            requests.RequestException: On transport errors
        """
        url = f"{self.server}/releases/latest"
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()

        tags = RELEASE_PATTERN.findall(response.text)
        if not tags:
            raise RemoteVersionError(f"The latest published version cannot be determined from {url}")

        latest = tags[-1]
        logger.info(f"Latest remote release: {latest} (local: {local_version})")
        return RemoteState(latest_version=latest)

    def is_up_to_date(self, local_version: Optional[str], remote_state: RemoteState) -> bool:
        return local_version is not None and remote_state.latest_version == local_version

    def plan(self, local_version: Optional[str], remote_state: RemoteState) -> SyncPlan:
        latest = remote_state.latest_version
        if latest is None:
            raise RemoteVersionError("No remote release version available")
        if latest == local_version:
            return SyncPlan(local_version=local_version, final_version=local_version)
        return SyncPlan(
            local_version=local_version,
            updates=[UpdateUnit(name=latest, full_reload=True)],
            final_version=latest,
        )

    def fetch(self, plan: SyncPlan, work_directory: Path) -> List[FetchedUpdate]:
        fetched = []
        for update in plan.updates:
            directory = Path(work_directory) / datetime.now().strftime(DOWNLOAD_DIRECTORY_FORMAT)
            directory.mkdir(parents=True, exist_ok=True)
            self._download_release(update.name, directory / self.file_name)
            fetched.append(FetchedUpdate(name=update.name, sdf_directory=directory, full_reload=True))
        return fetched

    def close(self) -> None:
        self.session.close()

    def _download_release(self, tag: str, target: Path) -> int:
        url = f"{self.server}/releases/{tag}/downloads/all-structures"
        auth = (self.username, self.password) if self.username else None

        # The download link redirects to a signed URL that must not receive the credentials.
        response = self.session.get(
            url, auth=auth, allow_redirects=False, stream=True, timeout=self.timeout
        )
        location = response.headers.get("Location")
        if response.is_redirect and location:
            response.close()
            logger.debug(f"Release {tag} redirected to {location}")
            response = self.session.get(location, stream=True, timeout=self.timeout)
        response.raise_for_status()

        size = 0
        with response, open(target, "wb") as f:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                f.write(chunk)
                size += len(chunk)

        logger.info(f"Downloaded release {tag} to {target} ({size} bytes)")
        return size
