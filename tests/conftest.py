"""
Shared fixtures.

Everything here is in-memory: MockObjectStore for blobs, the Pillow
mock extractor instead of FFmpeg, and MockSnowflakeConnection behind the
real VideoRepository so the SQL the repository builds is still exercised.
"""

import pytest

from clipvault.core.ingest.models import UploadRequest, VideoMetadata
from clipvault.core.ingest.orchestrator import UploadOrchestrator
from clipvault.infrastructure.images.resizer import PillowImageResizer
from clipvault.infrastructure.snowflake.client import MockSnowflakeConnection
from clipvault.infrastructure.snowflake.repositories.videos import VideoRepository
from clipvault.infrastructure.storage.client import MockObjectStore
from clipvault.infrastructure.video.frames import MockFrameExtractor

MiB = 1024 * 1024


@pytest.fixture
def store() -> MockObjectStore:
    return MockObjectStore(bucket_name="videos")


@pytest.fixture
def extractor() -> MockFrameExtractor:
    return MockFrameExtractor()


@pytest.fixture
def connection() -> MockSnowflakeConnection:
    return MockSnowflakeConnection()


@pytest.fixture
def repository(connection) -> VideoRepository:
    return VideoRepository(connection)


@pytest.fixture
def orchestrator(store, extractor, repository) -> UploadOrchestrator:
    return UploadOrchestrator(store, extractor, PillowImageResizer(), repository)


def make_request(
    video_id: str = "v1",
    user_id: int = 42,
    size: int = 5 * MiB,
    mime_type: str = "video/mp4",
    original_name: str = "demo.mp4",
    **metadata,
) -> UploadRequest:
    return UploadRequest(
        data=b"\x00" * size,
        original_name=original_name,
        mime_type=mime_type,
        user_id=user_id,
        video_id=video_id,
        metadata=VideoMetadata(**metadata),
    )


@pytest.fixture
def make_upload():
    """Factory fixture: make_upload(video_id="v2", size=...) -> UploadRequest."""
    return make_request
