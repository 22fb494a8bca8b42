"""
Exception hierarchy for compound synchronization.
"""

from typing import Optional


class CompoundSyncError(Exception):
    """Base exception for all compound-sync errors."""
    pass


class MalformedRecordError(CompoundSyncError):
    """
    A record block could not be parsed.

    Raised when:
    - The stream ends in the middle of a record
    - The declared identifier is not an integer
    - A structured header declares counts that are not integers
    """

    def __init__(self, message: str, source: Optional[str] = None, line_number: Optional[int] = None):
        if source is not None and line_number is not None:
            message = f"{source}:{line_number}: {message}"
        elif source is not None:
            message = f"{source}: {message}"
        super().__init__(message)
        self.source = source
        self.line_number = line_number


class MissingIdentifierError(CompoundSyncError):
    """A record carried no recognizable identifier tag."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(f"{source}: {message}" if source else message)
        self.source = source


class UnsupportedContainerError(CompoundSyncError):
    """
    The file is not a recognized record container.

    Not fatal during a directory scan: the file is skipped.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class InconsistentServerDataError(CompoundSyncError):
    """The remote delta listings contain a gap that cannot be bridged."""
    pass


class StaleDatabaseError(CompoundSyncError):
    """The local version predates all recoverable remote history."""
    pass


class RemoteVersionError(CompoundSyncError):
    """The latest remote version cannot be determined."""
    pass


class SyncConfigError(CompoundSyncError):
    """
    Error in synchronization configuration.

    Raised when:
    - The configuration file is missing or unreadable
    - Required configuration values are not set
    - A value is outside its allowed set
    """

    def __init__(self, message: str, missing_keys: list = None):
        super().__init__(message)
        self.missing_keys = missing_keys or []


class StoreError(CompoundSyncError):
    """Error reading from or writing to the compound store."""
    pass
