"""
Snowflake repository for video records.

Translates between VideoAsset and rows of the ``videos`` table. The
application never writes SQL directly; the orchestrator asks this
repository for what it needs in domain terms.

Snowflake accepts UNIQUE constraints but doesn't enforce them, so
``create`` relies on a MERGE with only a WHEN NOT MATCHED branch: if a row
with the same video_id already exists the statement inserts nothing, and a
zero row count is reported as a VideoIdConflictError.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol
from uuid import UUID

from clipvault.core.ingest.errors import PersistError, VideoIdConflictError
from clipvault.core.ingest.models import VideoAsset, VideoMetadata, VideoStatus

logger = logging.getLogger(__name__)


class SnowflakeConnection(Protocol):
    """
    Protocol for Snowflake connections.

    Using a protocol means tests can provide a mock without
    importing the actual snowflake-connector-python.
    """

    def cursor(self): ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...


@dataclass
class SnowflakeConfig:
    """Configuration for Snowflake connection."""
    account: str
    user: str
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    private_key_base64: Optional[str] = None
    database: str = "CLIPVAULT"
    schema: str = "MEDIA"
    warehouse: str = "COMPUTE_WH"
    role: Optional[str] = None


# Column order shared by every SELECT and by _row_to_asset
VIDEO_COLUMNS = (
    "id",
    "video_id",
    "user_id",
    "original_name",
    "mime_type",
    "size",
    "bucket",
    "storage_key",
    "cover_key",
    "thumbnail_key",
    "metadata",
    "duration_seconds",
    "status",
    "upload_time",
    "delete_time",
)

_SELECT_COLUMNS = ", ".join(VIDEO_COLUMNS)

CREATE_VIDEOS_TABLE = """
    CREATE TABLE IF NOT EXISTS videos (
        id VARCHAR(36) NOT NULL PRIMARY KEY,
        video_id VARCHAR(255) NOT NULL UNIQUE,
        user_id NUMBER NOT NULL,
        original_name VARCHAR,
        mime_type VARCHAR(100),
        size NUMBER,
        bucket VARCHAR(255),
        storage_key VARCHAR(1024) NOT NULL,
        cover_key VARCHAR(1024),
        thumbnail_key VARCHAR(1024),
        metadata VARIANT,
        duration_seconds NUMBER DEFAULT 0,
        status VARCHAR(16) DEFAULT 'active',
        upload_time TIMESTAMP_TZ,
        delete_time TIMESTAMP_TZ
    )
"""


class VideoRepository:
    """
    Repository for video record persistence.

    Each method corresponds to a use case the orchestrator needs:
    - create: insert a new record, rejecting duplicate video_ids
    - get_by_id / get_by_video_id: load one active record
    - list_for_user: one page of a user's active records plus the total
    - mark_deleted: logical delete
    """

    def __init__(self, connection: SnowflakeConnection) -> None:
        self._conn = connection

    def ensure_schema(self) -> None:
        """Create the videos table if it doesn't exist."""
        cursor = self._conn.cursor()
        try:
            cursor.execute(CREATE_VIDEOS_TABLE)
            self._conn.commit()
        finally:
            cursor.close()

    def create(self, asset: VideoAsset) -> VideoAsset:
        """
        Insert a new video record.

        Raises:
            VideoIdConflictError: a record with this video_id already exists
            PersistError: any other database failure
        """
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                MERGE INTO videos AS target
                USING (SELECT %s AS video_id) AS source
                ON target.video_id = source.video_id
                WHEN NOT MATCHED THEN INSERT (
                    id, video_id, user_id, original_name, mime_type, size,
                    bucket, storage_key, cover_key, thumbnail_key, metadata,
                    duration_seconds, status, upload_time
                ) VALUES (
                    %s, source.video_id, %s, %s, %s, %s,
                    %s, %s, %s, %s, PARSE_JSON(%s),
                    %s, %s, %s
                )
            """, (
                asset.video_id,
                str(asset.id),
                asset.user_id,
                asset.original_name,
                asset.mime_type,
                asset.size,
                asset.bucket,
                asset.storage_key,
                asset.cover_key,
                asset.thumbnail_key,
                json.dumps(asset.metadata.to_dict()),
                asset.duration_seconds,
                asset.status.value,
                asset.upload_time,
            ))

            inserted = cursor.rowcount
            if not inserted:
                self._conn.rollback()
                raise VideoIdConflictError(asset.video_id)

            self._conn.commit()

        except PersistError:
            raise
        except Exception as e:
            logger.error(
                "Failed to save video record",
                extra={"video_id": asset.video_id, "error": str(e)}
            )
            raise PersistError(f"Failed to save video record: {e}") from e
        finally:
            cursor.close()

        logger.debug(
            "Saved video record",
            extra={"video_id": asset.video_id, "asset_id": str(asset.id)}
        )
        return asset

    def get_by_id(self, asset_id: UUID, user_id: Optional[int] = None) -> Optional[VideoAsset]:
        """Load an active record by internal id, optionally scoped to its owner."""
        query = f"""
            SELECT {_SELECT_COLUMNS}
            FROM videos
            WHERE id = %s AND status = 'active'
        """
        params: list[Any] = [str(asset_id)]
        if user_id is not None:
            query += " AND user_id = %s"
            params.append(user_id)

        return self._fetch_one(query, tuple(params))

    def get_by_video_id(self, video_id: str) -> Optional[VideoAsset]:
        """Load an active record by the client-generated videoId."""
        return self._fetch_one(f"""
            SELECT {_SELECT_COLUMNS}
            FROM videos
            WHERE video_id = %s AND status = 'active'
        """, (video_id,))

    def list_for_user(
        self,
        user_id: int,
        offset: int,
        limit: int,
        title: Optional[str] = None,
        category: Optional[str] = None,
    ) -> tuple[list[VideoAsset], int]:
        """
        One page of a user's active videos, newest first, plus the total.

        ``title`` is a case-insensitive substring match; ``category`` is
        exact. CONTAINS is used instead of ILIKE so user input needs no
        wildcard escaping.
        """
        where = "WHERE user_id = %s AND status = 'active'"
        params: list[Any] = [user_id]

        if title:
            where += " AND CONTAINS(LOWER(metadata:title::string), LOWER(%s))"
            params.append(title)
        if category:
            where += " AND metadata:category::string = %s"
            params.append(category)

        cursor = self._conn.cursor()
        try:
            cursor.execute(f"SELECT COUNT(*) FROM videos {where}", tuple(params))
            count_row = cursor.fetchone()
            total = int(count_row[0]) if count_row else 0

            cursor.execute(f"""
                SELECT {_SELECT_COLUMNS}
                FROM videos
                {where}
                ORDER BY upload_time DESC
                LIMIT %s OFFSET %s
            """, tuple(params) + (limit, offset))

            rows = cursor.fetchall()
            return [self._row_to_asset(row) for row in rows], total

        finally:
            cursor.close()

    def mark_deleted(self, asset_id: UUID, deleted_at: datetime) -> bool:
        """Flip an active record to deleted. Returns False if nothing matched."""
        cursor = self._conn.cursor()
        try:
            cursor.execute("""
                UPDATE videos
                SET status = 'deleted', delete_time = %s
                WHERE id = %s AND status = 'active'
            """, (deleted_at, str(asset_id)))
            updated = cursor.rowcount
            self._conn.commit()
            return bool(updated)
        finally:
            cursor.close()

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    def _fetch_one(self, query: str, params: tuple) -> Optional[VideoAsset]:
        cursor = self._conn.cursor()
        try:
            cursor.execute(query, params)
            row = cursor.fetchone()
            return self._row_to_asset(row) if row else None
        finally:
            cursor.close()

    def _row_to_asset(self, row: tuple) -> VideoAsset:
        data = dict(zip(VIDEO_COLUMNS, row))

        # VARIANT columns come back as JSON text from the connector
        metadata = data["metadata"]
        if isinstance(metadata, str):
            metadata = json.loads(metadata) if metadata else {}

        return VideoAsset(
            id=UUID(str(data["id"])),
            video_id=data["video_id"],
            user_id=int(data["user_id"]),
            original_name=data["original_name"] or "",
            mime_type=data["mime_type"] or "",
            size=int(data["size"] or 0),
            bucket=data["bucket"] or "",
            storage_key=data["storage_key"],
            cover_key=data["cover_key"] or "",
            thumbnail_key=data["thumbnail_key"] or "",
            metadata=VideoMetadata.from_dict(metadata),
            duration_seconds=int(data["duration_seconds"] or 0),
            status=VideoStatus(data["status"] or VideoStatus.ACTIVE.value),
            upload_time=data["upload_time"],
            delete_time=data["delete_time"],
        )
