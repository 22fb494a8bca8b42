"""
Remote update sources and delta window resolution.
"""

from .resolver import DeltaResolver, DeltaPlan
from .ftp_source import FtpDeltaSource, REMOVED_IDS_FILE, SDF_DIRECTORY
from .http_source import HttpReleaseSource, RELEASE_PATTERN

__all__ = [
    "DeltaResolver",
    "DeltaPlan",
    "FtpDeltaSource",
    "REMOVED_IDS_FILE",
    "SDF_DIRECTORY",
    "HttpReleaseSource",
    "RELEASE_PATTERN",
]
