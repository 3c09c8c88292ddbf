"""
Video ingestion: upload orchestration, storage keys and domain types.
"""

from .errors import (
    DecodeError,
    IngestError,
    PersistError,
    StoreError,
    UploadCancelledError,
    ValidationError,
    VideoIdConflictError,
    VideoNotFoundError,
)
from .keys import format_duration, new_key, parse_duration
from .models import (
    AssetView,
    PendingUploadState,
    UploadRequest,
    UploadStage,
    VideoAsset,
    VideoMetadata,
    VideoPage,
    VideoStatus,
)
from .orchestrator import UploadOrchestrator, VideoDetail

__all__ = [
    "AssetView",
    "DecodeError",
    "IngestError",
    "PendingUploadState",
    "PersistError",
    "StoreError",
    "UploadCancelledError",
    "UploadOrchestrator",
    "UploadRequest",
    "UploadStage",
    "ValidationError",
    "VideoAsset",
    "VideoDetail",
    "VideoIdConflictError",
    "VideoMetadata",
    "VideoNotFoundError",
    "VideoPage",
    "VideoStatus",
    "format_duration",
    "new_key",
    "parse_duration",
]
