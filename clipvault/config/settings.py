"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables (and an optional .env
file) with sensible defaults. Pydantic validates types at startup, so a
malformed value fails fast instead of surfacing mid-upload.

Mock modes enable local development without object storage, Snowflake
or FFmpeg.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like allowed_mime_types), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "ClipVault API"
    api_version: str = "v1"

    # Object Storage Configuration (S3-compatible: MinIO, R2, S3)
    storage_endpoint_url: Optional[str] = Field(
        default="http://localhost:9000",
        description="S3-compatible endpoint. Leave empty to use AWS S3."
    )
    storage_access_key_id: str = Field(
        default="",
        description="Object store access key"
    )
    storage_secret_access_key: str = Field(
        default="",
        description="Object store secret key"
    )
    storage_bucket_name: str = Field(
        default="videos",
        description="Bucket holding original videos, covers and thumbnails"
    )
    storage_region: str = Field(
        default="us-east-1",
        description="Region for the object store"
    )
    storage_public_read: bool = Field(
        default=True,
        description="Apply a public-read bucket policy at startup"
    )
    storage_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of a real object store."
    )
    presign_ttl_seconds: int = Field(
        default=7 * 24 * 60 * 60,
        description="Lifetime of presigned read URLs (SigV4 maximum is 7 days)"
    )

    # Snowflake Configuration
    snowflake_account: str = Field(
        default="",
        description="Snowflake account identifier"
    )
    snowflake_user: str = Field(
        default="",
        description="Snowflake service account username"
    )
    snowflake_password: str = Field(
        default="",
        description="Snowflake service account password"
    )
    snowflake_private_key_path: Optional[str] = Field(
        default=None,
        description="Path to RSA private key file for key-pair authentication"
    )
    snowflake_private_key_base64: Optional[str] = Field(
        default=None,
        description="Base64-encoded private key (for deployment, alternative to file path)"
    )
    snowflake_database: str = Field(
        default="CLIPVAULT",
        description="Snowflake database name"
    )
    snowflake_schema: str = Field(
        default="MEDIA",
        description="Snowflake schema name"
    )
    snowflake_warehouse: str = Field(
        default="COMPUTE_WH",
        description="Snowflake warehouse for query execution"
    )
    snowflake_role: Optional[str] = Field(
        default=None,
        description="Snowflake role to use (optional)"
    )
    snowflake_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real Snowflake connection."
    )

    # FFmpeg Configuration
    ffmpeg_path: str = Field(default="ffmpeg", description="Path to ffmpeg binary")
    ffprobe_path: str = Field(default="ffprobe", description="Path to ffprobe binary")
    frame_max_width: int = Field(
        default=1280,
        description="Cover frames wider than this are scaled down"
    )
    ffmpeg_timeout_seconds: float = Field(
        default=30.0,
        description="Per-invocation timeout for ffmpeg/ffprobe"
    )
    video_mock_mode: bool = Field(
        default=False,
        description="Use a Pillow-rendered placeholder frame instead of FFmpeg."
    )

    # Ingestion Behavior
    max_upload_size_mb: int = Field(
        default=100,
        description="Maximum original video size in MiB, enforced before any blob write"
    )
    allowed_mime_types: str = Field(
        default=(
            "video/mp4,video/webm,video/ogg,video/quicktime,video/x-msvideo,"
            "video/x-matroska,video/3gpp,video/3gpp2"
        ),
        description="Comma-separated list of accepted video mime types"
    )
    thumbnail_width: int = Field(default=320, description="Thumbnail width in pixels")
    thumbnail_height: int = Field(default=180, description="Thumbnail height in pixels")
    delete_derived_assets: bool = Field(
        default=True,
        description="Soft delete also removes cover and thumbnail blobs, not just the original."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def allowed_mime_types_list(self) -> list[str]:
        """Parse comma-separated mime types into a list."""
        return [m.strip().lower() for m in self.allowed_mime_types.split(",") if m.strip()]

    @property
    def thumbnail_size(self) -> tuple[int, int]:
        return (self.thumbnail_width, self.thumbnail_height)

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        if not self.snowflake_mock_mode:
            if not self.snowflake_account:
                missing.append("SNOWFLAKE_ACCOUNT")
            if not self.snowflake_user:
                missing.append("SNOWFLAKE_USER")
            has_key = self.snowflake_private_key_path or self.snowflake_private_key_base64
            if not self.snowflake_password and not has_key:
                missing.append("SNOWFLAKE_PASSWORD or SNOWFLAKE_PRIVATE_KEY_PATH")

        if not self.storage_mock_mode:
            if not self.storage_access_key_id:
                missing.append("STORAGE_ACCESS_KEY_ID")
            if not self.storage_secret_access_key:
                missing.append("STORAGE_SECRET_ACCESS_KEY")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once per process. For tests, call
    get_settings.cache_clear() to reset.
    """
    return Settings()
