"""
Unit tests for VideoRepository against the in-memory Snowflake mock.

These check the domain <-> row mapping and the conflict signal, not
Snowflake itself.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from clipvault.core.ingest.errors import PersistError, VideoIdConflictError
from clipvault.core.ingest.models import VideoAsset, VideoMetadata, VideoStatus


def make_asset(video_id: str = "v1", user_id: int = 42, **metadata) -> VideoAsset:
    return VideoAsset(
        video_id=video_id,
        user_id=user_id,
        original_name="demo.mp4",
        mime_type="video/mp4",
        size=1024,
        storage_key=f"videos/{video_id}.mp4",
        cover_key=f"covers/{video_id}-cover.jpg",
        thumbnail_key=f"covers/{video_id}-thumb.jpg",
        bucket="videos",
        metadata=VideoMetadata(**metadata),
        duration_seconds=630,
    )


class ExplodingConnection:
    """Connection whose cursor fails every statement."""

    class _Cursor:
        def execute(self, query, params=None):
            raise RuntimeError("connection reset")

        def close(self):
            pass

    def cursor(self):
        return self._Cursor()

    def commit(self):
        pass

    def rollback(self):
        pass


class TestCreate:
    """Tests for inserting records."""

    def test_create_round_trips_through_row(self, repository):
        asset = make_asset(title="Demo", tags=["a", "b"], description="hello")
        repository.create(asset)

        loaded = repository.get_by_id(asset.id)

        assert loaded.id == asset.id
        assert loaded.video_id == "v1"
        assert loaded.metadata.title == "Demo"
        assert loaded.metadata.tags == ["a", "b"]
        assert loaded.metadata.description == "hello"
        assert loaded.duration_seconds == 630
        assert loaded.status == VideoStatus.ACTIVE
        assert loaded.storage_keys == [asset.storage_key, asset.cover_key, asset.thumbnail_key]

    def test_create_commits(self, repository, connection):
        repository.create(make_asset())
        assert connection.commits == 1

    def test_duplicate_video_id_is_conflict(self, repository, connection):
        repository.create(make_asset(video_id="dup"))

        with pytest.raises(VideoIdConflictError, match="dup"):
            repository.create(make_asset(video_id="dup"))

        assert len(connection.rows()) == 1
        assert connection.rollbacks == 1

    def test_driver_failure_is_persist_error(self):
        from clipvault.infrastructure.snowflake.repositories.videos import VideoRepository

        repository = VideoRepository(ExplodingConnection())

        with pytest.raises(PersistError, match="connection reset"):
            repository.create(make_asset())

    def test_ensure_schema_is_harmless_on_mock(self, repository, connection):
        repository.ensure_schema()
        assert connection.commits == 1


class TestReads:
    """Tests for loading records."""

    def test_get_by_id_scoped_to_owner(self, repository):
        asset = repository.create(make_asset())

        assert repository.get_by_id(asset.id, user_id=42) is not None
        assert repository.get_by_id(asset.id, user_id=7) is None

    def test_get_unknown_id(self, repository):
        assert repository.get_by_id(uuid4()) is None

    def test_get_by_video_id(self, repository):
        repository.create(make_asset(video_id="client-123"))

        assert repository.get_by_video_id("client-123").video_id == "client-123"
        assert repository.get_by_video_id("nope") is None

    def test_list_newest_first_with_total(self, repository):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for i in range(3):
            asset = make_asset(video_id=f"v{i}")
            asset.upload_time = base + timedelta(minutes=i)
            repository.create(asset)

        videos, total = repository.list_for_user(42, offset=0, limit=2)

        assert total == 3
        assert [v.video_id for v in videos] == ["v2", "v1"]

        rest, _ = repository.list_for_user(42, offset=2, limit=2)
        assert [v.video_id for v in rest] == ["v0"]

    def test_list_filters_title_case_insensitively(self, repository):
        repository.create(make_asset(video_id="a", title="Morning Swim"))
        repository.create(make_asset(video_id="b", title="Evening run"))

        videos, total = repository.list_for_user(42, 0, 10, title="SWIM")

        assert total == 1
        assert videos[0].video_id == "a"

    def test_list_filters_category_exactly(self, repository):
        repository.create(make_asset(video_id="a", category="sport"))
        repository.create(make_asset(video_id="b", category="sports"))

        videos, total = repository.list_for_user(42, 0, 10, category="sport")

        assert total == 1
        assert videos[0].video_id == "a"

    def test_list_excludes_other_users(self, repository):
        repository.create(make_asset(video_id="mine"))
        repository.create(make_asset(video_id="theirs", user_id=7))

        videos, total = repository.list_for_user(42, 0, 10)

        assert total == 1
        assert videos[0].video_id == "mine"


class TestMarkDeleted:
    """Tests for logical deletion."""

    def test_mark_deleted_hides_record(self, repository, connection):
        asset = repository.create(make_asset())
        deleted_at = datetime.now(timezone.utc)

        assert repository.mark_deleted(asset.id, deleted_at) is True

        assert repository.get_by_id(asset.id) is None
        row = connection.rows()[0]
        assert row["status"] == "deleted"
        assert row["delete_time"] == deleted_at

    def test_mark_deleted_twice_reports_nothing_matched(self, repository):
        asset = repository.create(make_asset())
        repository.mark_deleted(asset.id, datetime.now(timezone.utc))

        assert repository.mark_deleted(asset.id, datetime.now(timezone.utc)) is False

    def test_deleted_video_id_still_blocks_reuse(self, repository):
        """videoId uniqueness spans deleted records too."""
        asset = repository.create(make_asset(video_id="once"))
        repository.mark_deleted(asset.id, datetime.now(timezone.utc))

        with pytest.raises(VideoIdConflictError):
            repository.create(make_asset(video_id="once"))
