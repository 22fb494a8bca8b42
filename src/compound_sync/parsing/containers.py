"""
Readers for plain, gzip and zip record containers.
"""

import gzip
import io
import logging
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, TextIO

from ..core.exceptions import UnsupportedContainerError


logger = logging.getLogger(__name__)


DEFAULT_ENCODING = "latin-1"
DEFAULT_MEMBER_SUFFIX = ".sdf"


class ContainerKind(str, Enum):
    """Container format, determined by file name suffix."""
    PLAIN = "plain"
    GZIP = "gzip"
    ZIP = "zip"


@dataclass
class ContainerMember:
    """
    One logical record stream inside a container.

    Attributes:
        name: Display name (file name, or archive!member for zip members)
        stream: Decoded text stream, valid until the next member is requested
    """
    name: str
    stream: TextIO


class CompressedContainerReader:
    """
    Opens record containers and exposes their members as text streams.

    Supported suffixes:
    - ``*.sdf``: plain file, one member
    - ``*.sdf.gz``: single-member gzip
    - ``*.zip``: archive; members ending with the member suffix, in archive order
    """

    def __init__(self, encoding: str = DEFAULT_ENCODING, member_suffix: str = DEFAULT_MEMBER_SUFFIX):
        """
        Initialize the reader.

        Args:
            encoding: Single-byte text encoding used to decode members
            member_suffix: Suffix selecting record members inside zip archives
        """
        self.encoding = encoding
        self.member_suffix = member_suffix

    def kind_for(self, path: Path) -> ContainerKind:
        """
        Determine the container kind of a file.

        Raises:
            UnsupportedContainerError: If the suffix is not recognized
        """
        name = Path(path).name
        if name.endswith(".sdf.gz"):
            return ContainerKind.GZIP
        if name.endswith(".zip"):
            return ContainerKind.ZIP
        if name.endswith(".sdf"):
            return ContainerKind.PLAIN
        raise UnsupportedContainerError(f"Unsupported container: {name}", path=str(path))

    def open_members(self, path: Path) -> Iterator[ContainerMember]:
        """
        Iterate over the record streams of a container.

        Each member's stream is closed when the iteration advances.

        Args:
            path: Container file

        Yields:
            ContainerMember per logical record stream

        Raises:
            UnsupportedContainerError: If the suffix is not recognized
        """
        path = Path(path)
        kind = self.kind_for(path)

        if kind == ContainerKind.ZIP:
            with zipfile.ZipFile(path) as archive:
                for info in archive.infolist():
                    if info.is_dir() or not info.filename.endswith(self.member_suffix):
                        continue
                    logger.debug(f"Reading member {info.filename} of {path.name}")
                    with archive.open(info) as raw, self._decode(raw) as stream:
                        yield ContainerMember(name=f"{path.name}!{info.filename}", stream=stream)
            return

        with self._open_single(path, kind) as stream:
            yield ContainerMember(name=path.name, stream=stream)

    def iter_directory(self, directory: Path) -> Iterator[Path]:
        """
        Iterate over container files of a directory in ascending name order.

        Unsupported files are skipped silently; this order determines the
        last-write-wins outcome of a load.
        """
        directory = Path(directory)
        for path in sorted(directory.iterdir(), key=lambda p: p.name):
            if not path.is_file():
                continue
            try:
                self.kind_for(path)
            except UnsupportedContainerError:
                logger.debug(f"Skipping unsupported file: {path.name}")
                continue
            yield path

    @contextmanager
    def _open_single(self, path: Path, kind: ContainerKind) -> Iterator[TextIO]:
        if kind == ContainerKind.GZIP:
            raw = gzip.open(path, "rb")
        else:
            raw = open(path, "rb")
        with raw, self._decode(raw) as stream:
            yield stream

    def _decode(self, raw) -> TextIO:
        # newline="" keeps line terminators intact; the parser strips them.
        return io.TextIOWrapper(raw, encoding=self.encoding, newline="")
