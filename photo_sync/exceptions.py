"""
Custom exception hierarchy for the photo catalog sync engine.

Structural failures (missing target folder, unreachable store or catalog)
propagate and fail the job; per-object problems are logged and absorbed.
"""


class PhotoSyncError(Exception):
    """Base exception for all photo sync errors."""
    pass


class ConfigError(PhotoSyncError):
    """Raised when configuration values are missing or out of range."""
    pass


class DatabaseError(PhotoSyncError):
    """Raised when catalog operations fail."""
    pass


class StoreError(PhotoSyncError):
    """Raised when the object store cannot be listed or read."""
    pass


class MetadataExtractionError(PhotoSyncError):
    """Raised when metadata cannot be extracted from an object."""
    pass


class FolderNotFoundError(PhotoSyncError):
    """Raised when a scan targets a folder the catalog does not know."""
    pass


class InvalidFolderPathError(PhotoSyncError):
    """Raised when an on-demand request names a malformed folder path."""
    pass


class StatusTransitionError(PhotoSyncError):
    """Raised when a status update would move a record backwards."""
    pass


class JobError(PhotoSyncError):
    """Base class for caller-visible job outcomes."""

    def __init__(self, job_id: int, message: str):
        super().__init__(message)
        self.job_id = job_id


class JobFailedError(JobError):
    """Raised to a waiting caller when its job ends in 'failed'."""
    pass


class JobTimeoutError(JobError):
    """Raised to a waiting caller when its job does not finish in time."""
    pass


class JobNotFoundError(JobError):
    """Raised when a job id does not exist in the catalog."""
    pass


class PhotoNotFoundError(PhotoSyncError):
    """Raised when an operation names a photo id the catalog does not have."""
    pass
