"""
Domain models for video ingestion.

These types describe what an ingested video *is* (VideoAsset), what the
caller gets back (AssetView), and the bookkeeping one upload run keeps
while it's in flight (PendingUploadState). None of them know about boto3,
Snowflake or FastAPI.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VideoStatus(Enum):
    """Lifecycle of a stored video. Deletion is logical only."""
    ACTIVE = "active"
    DELETED = "deleted"


class UploadStage(Enum):
    """
    Where one upload run currently stands.

    Happy path: INIT -> ORIGINAL_STORED -> FRAME_EXTRACTED ->
    DERIVED_ASSETS_STORED -> PERSISTED. Any failure before PERSISTED goes
    through ROLLING_BACK and ends in FAILED.
    """
    INIT = "init"
    ORIGINAL_STORED = "original_stored"
    FRAME_EXTRACTED = "frame_extracted"
    DERIVED_ASSETS_STORED = "derived_assets_stored"
    PERSISTED = "persisted"
    ROLLING_BACK = "rolling_back"
    FAILED = "failed"


@dataclass
class VideoMetadata:
    """
    Free-form descriptive fields supplied with an upload.

    Stored as a structured column rather than an opaque string, so every
    key that can appear here is listed explicitly.
    """
    title: str = ""
    category: str = "other"
    tags: list[str] = field(default_factory=list)
    description: Optional[str] = None
    duration: Optional[str] = None  # "mm:ss" or "hh:mm:ss" if the client knows it
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "category": self.category,
            "tags": list(self.tags),
            "description": self.description,
            "duration": self.duration,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "VideoMetadata":
        data = data or {}
        return cls(
            title=data.get("title") or "",
            category=data.get("category") or "other",
            tags=[str(t) for t in data.get("tags") or []],
            description=data.get("description"),
            duration=data.get("duration"),
            client_ip=data.get("client_ip"),
            user_agent=data.get("user_agent"),
        )


@dataclass
class UploadRequest:
    """Everything the caller hands over for one upload."""
    data: bytes
    original_name: str
    mime_type: str
    user_id: Optional[int]
    video_id: Optional[str]
    metadata: VideoMetadata = field(default_factory=VideoMetadata)

    @property
    def size(self) -> int:
        return len(self.data) if self.data else 0


@dataclass
class VideoAsset:
    """
    Persisted record of an ingested video.

    Only created after every blob it references has been written.
    """
    video_id: str
    user_id: int
    original_name: str
    mime_type: str
    size: int
    storage_key: str
    cover_key: str
    thumbnail_key: str
    bucket: str = ""
    metadata: VideoMetadata = field(default_factory=VideoMetadata)
    duration_seconds: int = 0
    status: VideoStatus = VideoStatus.ACTIVE
    id: UUID = field(default_factory=uuid4)
    upload_time: datetime = field(default_factory=_utcnow)
    delete_time: Optional[datetime] = None

    @property
    def storage_keys(self) -> list[str]:
        """All blobs this record references, original first."""
        return [self.storage_key, self.cover_key, self.thumbnail_key]

    @property
    def is_active(self) -> bool:
        return self.status == VideoStatus.ACTIVE


@dataclass
class AssetView:
    """What a successful upload returns to the caller."""
    id: UUID
    video_id: str
    file_name: str
    url: str
    cover_url: str
    thumbnail_url: str
    duration_seconds: int
    size: int
    mime_type: str
    title: str
    category: str
    tags: list[str]
    description: Optional[str]
    upload_time: datetime


@dataclass
class PendingUploadState:
    """
    Undo-list for one upload run.

    Keys are appended as each write starts, in write order; rollback walks
    them in reverse. Lives only for the duration of a single call.
    """
    stage: UploadStage = UploadStage.INIT
    written_keys: list[str] = field(default_factory=list)

    def record(self, key: str) -> None:
        self.written_keys.append(key)

    def advance(self, stage: UploadStage) -> None:
        self.stage = stage

    def undo_order(self) -> list[str]:
        return list(reversed(self.written_keys))


@dataclass
class VideoPage:
    """One page of a user's videos plus pagination metadata."""
    videos: list[VideoAsset]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return math.ceil(self.total / self.limit)
