"""
FastAPI dependency injection.

Dependencies hand route handlers the services they need, so routes never
construct clients themselves and tests can override any of them with
app.dependency_overrides.

Long-lived handles (object store client, frame extractor) are built once
in the application lifespan and kept on app.state. The Snowflake
connection is opened per request and closed when the request finishes.
"""

import logging
from typing import Annotated, Generator

from fastapi import Depends, Request

from ..config.settings import Settings, get_settings
from ..core.ingest.orchestrator import UploadOrchestrator
from ..infrastructure.images.resizer import ImageResizer, PillowImageResizer
from ..infrastructure.snowflake.client import MockSnowflakeConnection, create_snowflake_connection
from ..infrastructure.snowflake.repositories.videos import SnowflakeConfig, VideoRepository
from ..infrastructure.storage.client import ObjectStore, StorageConfig, create_object_store
from ..infrastructure.video.frames import FrameExtractor, create_frame_extractor

logger = logging.getLogger(__name__)

# Shared mock connection so records persist across requests in mock mode
_mock_snowflake_connection = None


# ---------------------------------------------------------------------------
# Builders (called once from the application lifespan)
# ---------------------------------------------------------------------------

def build_object_store(settings: Settings) -> ObjectStore:
    """Create the object store client described by settings."""
    config = StorageConfig(
        access_key_id=settings.storage_access_key_id,
        secret_access_key=settings.storage_secret_access_key,
        bucket_name=settings.storage_bucket_name,
        endpoint_url=settings.storage_endpoint_url or None,
        region=settings.storage_region,
        public_read=settings.storage_public_read,
    )
    return create_object_store(config=config, mock_mode=settings.storage_mock_mode)


def build_frame_extractor(settings: Settings) -> FrameExtractor:
    """Create the frame extractor described by settings."""
    return create_frame_extractor(
        mock_mode=settings.video_mock_mode,
        ffmpeg_path=settings.ffmpeg_path,
        ffprobe_path=settings.ffprobe_path,
        max_width=settings.frame_max_width,
        timeout_seconds=settings.ffmpeg_timeout_seconds,
    )


def ensure_video_schema(settings: Settings) -> None:
    """Create the videos table if it doesn't exist. Called once at startup."""
    if settings.snowflake_mock_mode:
        VideoRepository(_shared_mock_connection()).ensure_schema()
        return

    with create_snowflake_connection(config=snowflake_config(settings)) as conn:
        VideoRepository(conn).ensure_schema()


def _shared_mock_connection() -> MockSnowflakeConnection:
    global _mock_snowflake_connection

    if _mock_snowflake_connection is None:
        _mock_snowflake_connection = MockSnowflakeConnection()
        logger.info("Created shared mock Snowflake connection")
    return _mock_snowflake_connection


def snowflake_config(settings: Settings) -> SnowflakeConfig:
    return SnowflakeConfig(
        account=settings.snowflake_account,
        user=settings.snowflake_user,
        password=settings.snowflake_password or None,
        private_key_path=settings.snowflake_private_key_path,
        private_key_base64=settings.snowflake_private_key_base64,
        database=settings.snowflake_database,
        schema=settings.snowflake_schema,
        warehouse=settings.snowflake_warehouse,
        role=settings.snowflake_role,
    )


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_object_store(request: Request) -> ObjectStore:
    """Provide the process-wide object store client."""
    return request.app.state.object_store


def get_frame_extractor(request: Request) -> FrameExtractor:
    """Provide the process-wide frame extractor."""
    return request.app.state.frame_extractor


def get_image_resizer() -> ImageResizer:
    """The resizer is stateless, so a new one per request is fine."""
    return PillowImageResizer()


def get_video_repository(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Generator[VideoRepository, None, None]:
    """
    Provide VideoRepository with a database connection.

    Generator dependency: FastAPI runs the code after ``yield`` once the
    response is sent, which closes the connection.

    In mock mode the same in-memory connection is reused across requests
    so that uploaded records survive between calls.
    """
    if settings.snowflake_mock_mode:
        yield VideoRepository(_shared_mock_connection())
    else:
        with create_snowflake_connection(config=snowflake_config(settings)) as conn:
            yield VideoRepository(conn)


def get_orchestrator(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[ObjectStore, Depends(get_object_store)],
    extractor: Annotated[FrameExtractor, Depends(get_frame_extractor)],
    resizer: Annotated[ImageResizer, Depends(get_image_resizer)],
    videos: Annotated[VideoRepository, Depends(get_video_repository)],
) -> UploadOrchestrator:
    """Assemble an orchestrator from the injected collaborators."""
    return UploadOrchestrator(
        store,
        extractor,
        resizer,
        videos,
        allowed_mime_types=settings.allowed_mime_types_list,
        max_size_bytes=settings.max_upload_size_bytes,
        thumbnail_size=settings.thumbnail_size,
        presign_ttl_seconds=settings.presign_ttl_seconds,
        delete_derived_assets=settings.delete_derived_assets,
    )


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

SettingsDep = Annotated[Settings, Depends(get_settings)]
ObjectStoreDep = Annotated[ObjectStore, Depends(get_object_store)]
OrchestratorDep = Annotated[UploadOrchestrator, Depends(get_orchestrator)]
