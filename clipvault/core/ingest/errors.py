"""
Error taxonomy for video ingestion.

Each failure kind is its own class so callers (and the orchestrator's
rollback logic) can tell a bad request from a broken decoder, an
unreachable object store, or a metadata conflict without inspecting
messages.
"""

from typing import Optional


class IngestError(Exception):
    """Base class for all ingestion failures."""
    pass


class ValidationError(IngestError):
    """Bad or missing input. Raised before any side effect occurs."""
    pass


class DecodeError(IngestError):
    """Frame extraction or image decoding failed on the uploaded media."""
    pass


class StoreError(IngestError):
    """
    Object store operation failed.

    Carries the key and operation that failed so log lines and error
    responses point at the exact blob involved.
    """

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.operation = operation


class PersistError(IngestError):
    """Metadata store write failed."""
    pass


class VideoIdConflictError(PersistError):
    """A record with the same client-generated video_id already exists."""

    def __init__(self, video_id: str) -> None:
        super().__init__(f"videoId {video_id} already exists")
        self.video_id = video_id


class UploadCancelledError(IngestError):
    """The caller cancelled the upload mid-pipeline."""
    pass


class VideoNotFoundError(IngestError):
    """Requested video doesn't exist, belongs to someone else, or is deleted."""
    pass
