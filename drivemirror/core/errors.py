"""Error taxonomy for a sync run.

Every error below is fatal to the run that raised it. The engine records the
message into the metadata document's ``output.error`` field before giving up.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all sync failures."""


class RemoteFetchError(SyncError):
    """Resolving, expanding or reading a remote node failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class DownloadError(SyncError):
    """Fetching or writing the content of one file failed."""

    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(message)


class LocalIOError(SyncError):
    """Creating directories, writing or deleting local files failed."""


class PersistError(SyncError):
    """Reading, serializing or writing the metadata document failed."""


class NotFoundError(SyncError):
    """The metadata document does not exist where it is required."""
