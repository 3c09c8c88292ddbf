"""
Video upload API endpoints.

Thin HTTP layer over UploadOrchestrator: parse the multipart form, hand
an UploadRequest to the orchestrator and translate domain errors into
status codes. All of the rollback behaviour lives in the orchestrator.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Annotated, Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, File, Form, HTTPException, Query, Request, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ...core.ingest.errors import (
    DecodeError,
    IngestError,
    PersistError,
    StoreError,
    UploadCancelledError,
    ValidationError,
    VideoIdConflictError,
    VideoNotFoundError,
)
from ...core.ingest.models import AssetView, UploadRequest, VideoAsset, VideoMetadata
from ..dependencies import OrchestratorDep, SettingsDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class CamelModel(BaseModel):
    """Serialize with camelCase keys, which is what the web client sends and expects."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AssetResponse(CamelModel):
    """A successfully ingested video."""
    id: UUID = Field(description="Internal record id")
    video_id: str = Field(description="Client-generated video id")
    file_name: str = Field(description="Original filename")
    url: str = Field(description="Public URL of the original video")
    cover_url: str = Field(description="Public URL of the full-size cover frame")
    thumbnail_url: str = Field(description="Public URL of the 320x180 thumbnail")
    duration_seconds: int = Field(description="Video duration in seconds (0 if unknown)")
    size: int = Field(description="Original size in bytes")
    mime_type: str
    title: str
    category: str
    tags: list[str]
    description: Optional[str] = None
    upload_time: datetime


class VideoRecordResponse(AssetResponse):
    """A stored video as returned by list/get."""
    status: str
    temp_url: Optional[str] = Field(None, description="Presigned URL, only on single-video reads")


class PaginationResponse(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class VideoListResponse(CamelModel):
    videos: list[VideoRecordResponse]
    pagination: PaginationResponse


class BatchItemResult(CamelModel):
    file_name: str
    video_id: str
    success: bool
    asset: Optional[AssetResponse] = None
    error: Optional[str] = None


class BatchUploadResponse(CamelModel):
    total: int
    success_count: int
    failed_count: int
    results: list[BatchItemResult]


class MessageResponse(CamelModel):
    success: bool = True
    message: str


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def _asset_response(view: AssetView) -> AssetResponse:
    return AssetResponse(
        id=view.id,
        video_id=view.video_id,
        file_name=view.file_name,
        url=view.url,
        cover_url=view.cover_url,
        thumbnail_url=view.thumbnail_url,
        duration_seconds=view.duration_seconds,
        size=view.size,
        mime_type=view.mime_type,
        title=view.title,
        category=view.category,
        tags=view.tags,
        description=view.description,
        upload_time=view.upload_time,
    )


def _record_response(
    asset: VideoAsset,
    urls: dict[str, str],
    temp_url: Optional[str] = None,
) -> VideoRecordResponse:
    return VideoRecordResponse(
        id=asset.id,
        video_id=asset.video_id,
        file_name=asset.original_name,
        url=urls["url"],
        cover_url=urls["cover_url"],
        thumbnail_url=urls["thumbnail_url"],
        duration_seconds=asset.duration_seconds,
        size=asset.size,
        mime_type=asset.mime_type,
        title=asset.metadata.title,
        category=asset.metadata.category,
        tags=asset.metadata.tags,
        description=asset.metadata.description,
        upload_time=asset.upload_time,
        status=asset.status.value,
        temp_url=temp_url,
    )


def parse_json_list(raw: Optional[str]) -> list[str]:
    """Parse a JSON array form field (tags, videoIds). Anything unparseable becomes []."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse JSON list field", extra={"error": str(e)})
        return []
    if not isinstance(value, list):
        return []
    return [str(tag) for tag in value if tag is not None]


def parse_user_id(raw: Optional[str]) -> int:
    if raw is None or not str(raw).strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="userId is required",
        )
    try:
        return int(raw)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="userId must be an integer",
        )


def to_http_error(error: IngestError) -> HTTPException:
    """Map a domain error onto an HTTP status."""
    if isinstance(error, VideoIdConflictError):
        return HTTPException(status.HTTP_409_CONFLICT, "videoId already exists, please generate a new one")
    if isinstance(error, ValidationError):
        return HTTPException(status.HTTP_400_BAD_REQUEST, str(error))
    if isinstance(error, DecodeError):
        return HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, f"Could not process video: {error}")
    if isinstance(error, VideoNotFoundError):
        return HTTPException(status.HTTP_404_NOT_FOUND, str(error))
    if isinstance(error, StoreError):
        return HTTPException(status.HTTP_502_BAD_GATEWAY, "Object storage unavailable")
    if isinstance(error, UploadCancelledError):
        return HTTPException(499, "Upload cancelled")
    if isinstance(error, PersistError):
        return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to save video record")
    return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Upload failed")


def _check_declared_size(video: UploadFile, max_bytes: int, max_mb: int) -> None:
    # Reject before reading the body into memory when the size is known
    if video.size is not None and video.size > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Video too large. Maximum size: {max_mb}MB",
        )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/video",
    response_model=AssetResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a video",
    description="Store a video, derive cover and thumbnail images and save its record",
)
async def upload_video(
    request: Request,
    orchestrator: OrchestratorDep,
    settings: SettingsDep,
    video: Annotated[UploadFile, File(description="Video file (MP4, WebM, MOV, ...)")],
    user_id: Annotated[Optional[str], Form(alias="userId")] = None,
    video_id: Annotated[Optional[str], Form(alias="videoId")] = None,
    title: Annotated[Optional[str], Form()] = None,
    category: Annotated[Optional[str], Form()] = None,
    tags: Annotated[Optional[str], Form(description="JSON array of strings")] = None,
    description: Annotated[Optional[str], Form()] = None,
    duration: Annotated[Optional[str], Form(description="mm:ss or hh:mm:ss")] = None,
) -> AssetResponse:
    owner = parse_user_id(user_id)
    if not video_id:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "videoId is required")

    _check_declared_size(video, settings.max_upload_size_bytes, settings.max_upload_size_mb)
    data = await video.read()

    upload = UploadRequest(
        data=data,
        original_name=video.filename or "",
        mime_type=video.content_type or "",
        user_id=owner,
        video_id=video_id,
        metadata=VideoMetadata(
            title=title or "",
            category=category or "",
            tags=parse_json_list(tags),
            description=description,
            duration=duration,
            client_ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        ),
    )

    try:
        view = await orchestrator.upload_video(upload)
    except IngestError as e:
        logger.warning(
            "Upload rejected",
            extra={"video_id": video_id, "error_type": type(e).__name__, "error": str(e)}
        )
        raise to_http_error(e)

    return _asset_response(view)


@router.post(
    "/videos",
    response_model=BatchUploadResponse,
    summary="Upload several videos",
    description="Each file is ingested independently; one failure doesn't affect the others",
)
async def upload_videos(
    request: Request,
    orchestrator: OrchestratorDep,
    settings: SettingsDep,
    videos: Annotated[list[UploadFile], File(description="Up to 10 video files")],
    user_id: Annotated[Optional[str], Form(alias="userId")] = None,
    video_ids: Annotated[Optional[str], Form(alias="videoIds", description="JSON array, one per file")] = None,
) -> BatchUploadResponse:
    owner = parse_user_id(user_id)

    if not videos:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No video files provided")
    if len(videos) > 10:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "At most 10 files per batch")
    for video in videos:
        _check_declared_size(video, settings.max_upload_size_bytes, settings.max_upload_size_mb)

    supplied_ids = parse_json_list(video_ids)
    ids = [
        supplied_ids[i] if i < len(supplied_ids) and supplied_ids[i] else uuid4().hex
        for i in range(len(videos))
    ]

    uploads = []
    for video, vid in zip(videos, ids):
        uploads.append(UploadRequest(
            data=await video.read(),
            original_name=video.filename or "",
            mime_type=video.content_type or "",
            user_id=owner,
            video_id=vid,
            metadata=VideoMetadata(
                client_ip=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
            ),
        ))

    outcomes = await asyncio.gather(
        *(orchestrator.upload_video(u) for u in uploads),
        return_exceptions=True,
    )

    results: list[BatchItemResult] = []
    for upload, outcome in zip(uploads, outcomes):
        if isinstance(outcome, AssetView):
            results.append(BatchItemResult(
                file_name=upload.original_name,
                video_id=upload.video_id,
                success=True,
                asset=_asset_response(outcome),
            ))
        elif isinstance(outcome, IngestError):
            results.append(BatchItemResult(
                file_name=upload.original_name,
                video_id=upload.video_id,
                success=False,
                error=str(outcome),
            ))
        else:
            raise outcome

    success_count = sum(1 for r in results if r.success)
    return BatchUploadResponse(
        total=len(results),
        success_count=success_count,
        failed_count=len(results) - success_count,
        results=results,
    )


@router.get(
    "/videos",
    response_model=VideoListResponse,
    summary="List a user's videos",
)
async def list_videos(
    orchestrator: OrchestratorDep,
    user_id: Annotated[Optional[str], Query(alias="userId")] = None,
    page: int = 1,
    limit: int = 20,
    title: Optional[str] = None,
    category: Optional[str] = None,
) -> VideoListResponse:
    owner = parse_user_id(user_id)
    result = await orchestrator.list_videos(owner, page=page, limit=limit, title=title, category=category)

    videos = [
        _record_response(asset, await orchestrator.urls_for(asset))
        for asset in result.videos
    ]
    return VideoListResponse(
        videos=videos,
        pagination=PaginationResponse(
            page=result.page,
            limit=result.limit,
            total=result.total,
            pages=result.pages,
        ),
    )


@router.get(
    "/video/by-video-id/{video_id}",
    response_model=VideoRecordResponse,
    summary="Get a video by its client-generated id",
)
async def get_video_by_video_id(
    video_id: str,
    orchestrator: OrchestratorDep,
    user_id: Annotated[Optional[str], Query(alias="userId")] = None,
) -> VideoRecordResponse:
    owner = parse_user_id(user_id) if user_id is not None else None
    try:
        detail = await orchestrator.get_video(video_id=video_id, user_id=owner)
    except IngestError as e:
        raise to_http_error(e)

    urls = await orchestrator.urls_for(detail.asset)
    return _record_response(detail.asset, urls, detail.temp_url)


@router.get(
    "/video/{asset_id}",
    response_model=VideoRecordResponse,
    summary="Get a video by internal id",
)
async def get_video(
    asset_id: UUID,
    orchestrator: OrchestratorDep,
    user_id: Annotated[Optional[str], Query(alias="userId")] = None,
) -> VideoRecordResponse:
    owner = parse_user_id(user_id) if user_id is not None else None
    try:
        detail = await orchestrator.get_video(asset_id=asset_id, user_id=owner)
    except IngestError as e:
        raise to_http_error(e)

    urls = await orchestrator.urls_for(detail.asset)
    return _record_response(detail.asset, urls, detail.temp_url)


@router.delete(
    "/video/{asset_id}",
    response_model=MessageResponse,
    summary="Delete a video",
    description="Logical delete: the record is kept with status=deleted, the blobs are removed",
)
async def delete_video(
    asset_id: UUID,
    orchestrator: OrchestratorDep,
    user_id: Annotated[Optional[str], Query(alias="userId")] = None,
) -> MessageResponse:
    owner = parse_user_id(user_id)
    try:
        await orchestrator.soft_delete(asset_id, owner)
    except IngestError as e:
        raise to_http_error(e)

    return MessageResponse(message="Video deleted")
