"""
Video upload orchestration.

The object store and the metadata store can't share a transaction, so an
upload is a sequence of independent writes:

    store original -> extract frame -> resize -> store cover + thumbnail
    -> persist record

Every blob written is pushed onto an undo-list (PendingUploadState). If any
later step fails, or the caller cancels, the undo-list is replayed in
reverse and each blob is deleted. A failed delete is logged and the next
one is still attempted; the caller always receives the error that caused
the failure, never one from cleanup.

Keys are freshly generated on every run, so a retry can't collide with
leftovers from a previous attempt whose cleanup didn't fully succeed.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Iterable, Optional, Protocol, TypeVar
from uuid import UUID

from .errors import (
    PersistError,
    UploadCancelledError,
    ValidationError,
    VideoNotFoundError,
)
from .keys import extension_for, new_key, parse_duration
from .models import (
    AssetView,
    PendingUploadState,
    UploadRequest,
    UploadStage,
    VideoAsset,
    VideoMetadata,
    VideoPage,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ALLOWED_MIME_TYPES = frozenset({
    "video/mp4",
    "video/webm",
    "video/ogg",
    "video/quicktime",
    "video/x-msvideo",
    "video/x-matroska",
    "video/3gpp",
    "video/3gpp2",
})

MAX_UPLOAD_SIZE_BYTES = 100 * 1024 * 1024

THUMBNAIL_SIZE = (320, 180)

VIDEO_FOLDER = "videos"
COVER_FOLDER = "covers"

MAX_PAGE_SIZE = 100


class VideoRecordStore(Protocol):
    """
    Metadata store for video records.

    Methods are synchronous (DB-API style); the orchestrator runs them in a
    worker thread.
    """

    def create(self, asset: VideoAsset) -> VideoAsset: ...

    def get_by_id(self, asset_id: UUID, user_id: Optional[int] = None) -> Optional[VideoAsset]: ...

    def get_by_video_id(self, video_id: str) -> Optional[VideoAsset]: ...

    def list_for_user(
        self,
        user_id: int,
        offset: int,
        limit: int,
        title: Optional[str] = None,
        category: Optional[str] = None,
    ) -> tuple[list[VideoAsset], int]: ...

    def mark_deleted(self, asset_id: UUID, deleted_at: datetime) -> bool: ...


@dataclass
class VideoDetail:
    """A stored video plus a freshly signed, time-limited read URL."""
    asset: VideoAsset
    temp_url: str


class UploadOrchestrator:
    """
    Drives one upload end to end and owns the rollback protocol.

    All collaborators are passed in. There is no module-level client, so
    tests can substitute any of them with an in-memory or failing double.
    """

    def __init__(
        self,
        store,
        extractor,
        resizer,
        videos: VideoRecordStore,
        *,
        allowed_mime_types: Iterable[str] = ALLOWED_MIME_TYPES,
        max_size_bytes: int = MAX_UPLOAD_SIZE_BYTES,
        thumbnail_size: tuple[int, int] = THUMBNAIL_SIZE,
        presign_ttl_seconds: int = 7 * 24 * 60 * 60,
        delete_derived_assets: bool = True,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._resizer = resizer
        self._videos = videos
        self._allowed_mime_types = frozenset(m.lower() for m in allowed_mime_types)
        self._max_size_bytes = max_size_bytes
        self._thumbnail_size = thumbnail_size
        self._presign_ttl = presign_ttl_seconds
        self._delete_derived_assets = delete_derived_assets

    # -----------------------------------------------------------------------
    # Upload
    # -----------------------------------------------------------------------

    async def upload_video(
        self,
        request: UploadRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AssetView:
        """
        Ingest one video.

        Raises:
            ValidationError: input rejected, nothing was written
            DecodeError: frame extraction failed, blobs rolled back
            StoreError: object store write failed, blobs rolled back
            PersistError: record write failed (VideoIdConflictError for a
                duplicate videoId), blobs rolled back
            UploadCancelledError: cancel_event was set, blobs rolled back
        """
        self._validate(request)

        state = PendingUploadState()

        logger.info(
            "Video upload started",
            extra={
                "video_id": request.video_id,
                "user_id": request.user_id,
                "original_name": request.original_name,
                "mime_type": request.mime_type,
                "size_bytes": request.size,
            }
        )

        try:
            view = await self._run(request, state, cancel_event)
        except BaseException as error:
            await self._finish_rollback(state, error, request.video_id)
            raise

        logger.info(
            "Video upload completed",
            extra={"video_id": view.video_id, "asset_id": str(view.id)}
        )
        return view

    def _validate(self, request: UploadRequest) -> None:
        if not request.data:
            raise ValidationError("No video file provided")

        mime_type = (request.mime_type or "").lower()
        if mime_type not in self._allowed_mime_types:
            raise ValidationError(
                f"Unsupported file type: {request.mime_type}. "
                f"Allowed types: {', '.join(sorted(self._allowed_mime_types))}"
            )

        if request.size > self._max_size_bytes:
            raise ValidationError(
                f"File too large: {request.size} bytes "
                f"(maximum {self._max_size_bytes} bytes)"
            )

        if request.user_id is None or str(request.user_id).strip() == "":
            raise ValidationError("userId is required")

        try:
            int(request.user_id)
        except (TypeError, ValueError):
            raise ValidationError(f"userId must be an integer, got {request.user_id!r}")

        if not isinstance(request.video_id, str) or not request.video_id.strip():
            raise ValidationError("videoId is required")

    async def _run(
        self,
        request: UploadRequest,
        state: PendingUploadState,
        cancel_event: Optional[asyncio.Event],
    ) -> AssetView:
        original_name = request.original_name or f"video.{extension_for(None, request.mime_type)}"
        metadata = _normalize_metadata(request.metadata, original_name)

        # 1. original
        _check_cancelled(cancel_event)
        video_key = new_key(VIDEO_FOLDER, extension_for(original_name, request.mime_type))
        await self._put(state, video_key, request.data, request.mime_type, original_name)
        state.advance(UploadStage.ORIGINAL_STORED)

        # 2. cover frame, from the buffer we already hold
        _check_cancelled(cancel_event)
        cover_data = await self._extractor.extract_frame(request.data)
        state.advance(UploadStage.FRAME_EXTRACTED)

        # 3. thumbnail
        _check_cancelled(cancel_event)
        width, height = self._thumbnail_size
        thumbnail_data = await asyncio.to_thread(
            self._resizer.resize, cover_data, width, height
        )

        # 4. derived assets
        _check_cancelled(cancel_event)
        cover_key = new_key(COVER_FOLDER, "jpg", suffix="-cover")
        await self._put(state, cover_key, cover_data, "image/jpeg", f"cover-{original_name}")

        thumbnail_key = new_key(COVER_FOLDER, "jpg", suffix="-thumb")
        await self._put(state, thumbnail_key, thumbnail_data, "image/jpeg", f"thumbnail-{original_name}")
        state.advance(UploadStage.DERIVED_ASSETS_STORED)

        # 5. duration: client value if given, otherwise ask ffprobe
        _check_cancelled(cancel_event)
        duration_text = metadata.duration or await self._extractor.probe_duration(request.data)
        duration_seconds = parse_duration(duration_text)

        # URLs are resolved before the record exists so a failure here is
        # still covered by rollback
        url = await self._store.public_url(video_key)
        cover_url = await self._store.public_url(cover_key)
        thumbnail_url = await self._store.public_url(thumbnail_key)

        # 6. record
        _check_cancelled(cancel_event)
        asset = VideoAsset(
            video_id=request.video_id,
            user_id=int(request.user_id),
            original_name=original_name,
            mime_type=request.mime_type,
            size=request.size,
            storage_key=video_key,
            cover_key=cover_key,
            thumbnail_key=thumbnail_key,
            bucket=self._store.bucket_name,
            metadata=metadata,
            duration_seconds=duration_seconds,
        )

        try:
            saved = await asyncio.to_thread(self._videos.create, asset)
        except PersistError:
            raise
        except Exception as e:
            raise PersistError(f"Failed to save video record: {e}") from e

        state.advance(UploadStage.PERSISTED)

        return AssetView(
            id=saved.id,
            video_id=saved.video_id,
            file_name=saved.original_name,
            url=url,
            cover_url=cover_url,
            thumbnail_url=thumbnail_url,
            duration_seconds=saved.duration_seconds,
            size=saved.size,
            mime_type=saved.mime_type,
            title=saved.metadata.title,
            category=saved.metadata.category,
            tags=list(saved.metadata.tags),
            description=saved.metadata.description,
            upload_time=saved.upload_time,
        )

    async def _put(
        self,
        state: PendingUploadState,
        key: str,
        data: bytes,
        content_type: str,
        original_name: str,
    ) -> None:
        """
        Write one blob, recording its key first.

        A put that raises or is cancelled may still have landed in the
        bucket, so the key goes on the undo-list before the write starts;
        deleting a key that was never written is a no-op. The write itself
        is allowed to settle before a cancellation propagates, so rollback
        never races a put still running in a worker thread.
        """
        state.record(key)
        await _settle(self._store.put(key, data, content_type, original_name))

    # -----------------------------------------------------------------------
    # Rollback
    # -----------------------------------------------------------------------

    async def _finish_rollback(
        self,
        state: PendingUploadState,
        error: BaseException,
        video_id: Optional[str],
    ) -> None:
        """
        Run rollback to completion, even if the caller cancels again.

        The undo work runs in its own shielded task; a second cancellation
        while we wait on it is absorbed so we never return with blobs left
        behind. The original error is re-raised by the caller.
        """
        failed_stage = state.stage
        state.advance(UploadStage.ROLLING_BACK)

        logger.error(
            "Video upload failed, rolling back",
            extra={
                "video_id": video_id,
                "stage": failed_stage.value,
                "error_type": type(error).__name__,
                "error": str(error),
                "keys": list(state.written_keys),
            }
        )

        rollback = asyncio.ensure_future(self._rollback(state))
        while not rollback.done():
            try:
                await asyncio.shield(rollback)
            except asyncio.CancelledError:
                continue

        state.advance(UploadStage.FAILED)

    async def _rollback(self, state: PendingUploadState) -> list[str]:
        """
        Delete every recorded blob, newest first.

        Returns the keys that could not be deleted. Each delete is isolated:
        one failure never stops the others.
        """
        leftover: list[str] = []

        for key in state.undo_order():
            try:
                await self._store.delete(key)
                logger.debug("Rolled back object", extra={"key": key})
            except Exception as e:
                leftover.append(key)
                logger.warning(
                    "Rollback delete failed",
                    extra={"key": key, "error": str(e)}
                )

        if leftover:
            logger.warning(
                "Rollback incomplete",
                extra={"leftover_keys": leftover}
            )
        return leftover

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def soft_delete(self, asset_id: UUID, user_id: int) -> None:
        """
        Mark a video deleted and remove its blobs.

        Blobs go first: delete is idempotent, so if the record update then
        fails the whole call can simply be retried.
        """
        asset = await asyncio.to_thread(self._videos.get_by_id, asset_id, user_id)
        if asset is None:
            raise VideoNotFoundError("Video not found or already deleted")

        keys = asset.storage_keys if self._delete_derived_assets else [asset.storage_key]
        for key in keys:
            await self._store.delete(key)

        deleted_at = datetime.now(timezone.utc)
        try:
            updated = await asyncio.to_thread(self._videos.mark_deleted, asset.id, deleted_at)
        except Exception as e:
            raise PersistError(f"Failed to mark video deleted: {e}") from e

        if not updated:
            raise VideoNotFoundError("Video not found or already deleted")

        logger.info(
            "Video deleted",
            extra={"asset_id": str(asset.id), "user_id": user_id, "keys": keys}
        )

    async def list_videos(
        self,
        user_id: int,
        page: int = 1,
        limit: int = 20,
        title: Optional[str] = None,
        category: Optional[str] = None,
    ) -> VideoPage:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        offset = (page - 1) * limit

        videos, total = await asyncio.to_thread(
            self._videos.list_for_user,
            user_id,
            offset,
            limit,
            title or None,
            category or None,
        )
        return VideoPage(videos=videos, page=page, limit=limit, total=total)

    async def get_video(
        self,
        asset_id: Optional[UUID] = None,
        video_id: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> VideoDetail:
        """Fetch an active video by internal id or by client videoId."""
        if asset_id is not None:
            asset = await asyncio.to_thread(self._videos.get_by_id, asset_id, user_id)
        elif video_id:
            asset = await asyncio.to_thread(self._videos.get_by_video_id, video_id)
            if asset is not None and user_id is not None and asset.user_id != user_id:
                asset = None
        else:
            raise ValidationError("Either asset id or videoId is required")

        if asset is None:
            raise VideoNotFoundError("Video not found")

        temp_url = await self._store.presigned_url(asset.storage_key, self._presign_ttl)
        return VideoDetail(asset=asset, temp_url=temp_url)

    async def urls_for(self, asset: VideoAsset) -> dict[str, str]:
        """Stable public URLs for every blob an asset references."""
        return {
            "url": await self._store.public_url(asset.storage_key),
            "cover_url": await self._store.public_url(asset.cover_key),
            "thumbnail_url": await self._store.public_url(asset.thumbnail_key),
        }


async def _settle(awaitable: Awaitable[T]) -> T:
    """
    Await ``awaitable``; if the caller is cancelled meanwhile, wait for it
    to finish anyway and then re-raise the cancellation.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        if task.done():
            raise
        while not task.done():
            try:
                await asyncio.wait([task])
            except asyncio.CancelledError:
                continue
        if not task.cancelled():
            # Cancellation wins; mark the outcome retrieved
            task.exception()
        raise


def _check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise UploadCancelledError("Upload cancelled")


def _normalize_metadata(metadata: Optional[VideoMetadata], original_name: str) -> VideoMetadata:
    metadata = metadata or VideoMetadata()
    return VideoMetadata(
        title=(metadata.title or "").strip() or original_name,
        category=(metadata.category or "").strip() or "other",
        tags=[t.strip() for t in metadata.tags if isinstance(t, str) and t.strip()],
        description=metadata.description,
        duration=metadata.duration,
        client_ip=metadata.client_ip,
        user_agent=metadata.user_agent,
    )
