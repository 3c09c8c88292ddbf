"""
Object storage client for uploaded videos and their derived images.

Talks to any S3-compatible backend (MinIO, Cloudflare R2, AWS S3) through
boto3, with an in-memory mock for local development and tests.

The contract the ingestion pipeline relies on:
- put is overwrite-idempotent (same key twice = last write wins)
- delete succeeds when the key is already gone, because rollback may run
  more than once for the same key
- every backend failure surfaces as StoreError with the key and operation
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.parse import quote

from ...core.ingest.errors import StoreError

logger = logging.getLogger(__name__)

# 7 days, the longest expiry SigV4 allows
DEFAULT_PRESIGN_TTL_SECONDS = 7 * 24 * 60 * 60

_MISSING_CODES = ("404", "NoSuchKey", "NotFound", "NoSuchBucket")


@dataclass
class StorageConfig:
    """Configuration for an S3-compatible object store."""
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    endpoint_url: Optional[str] = None
    region: str = "us-east-1"
    public_read: bool = True


class ObjectStore(Protocol):
    """
    Protocol for object storage operations.

    The orchestrator only ever sees this protocol, so tests can hand it a
    MockObjectStore (or a deliberately broken double) instead of boto3.
    """

    bucket_name: str

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        original_name: Optional[str] = None,
    ) -> str:
        """Write a blob, replacing any existing content. Returns the key."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a blob. Succeeds if the blob doesn't exist."""
        ...

    async def exists(self, key: str) -> bool:
        """Check whether a blob exists."""
        ...

    async def presigned_url(
        self,
        key: str,
        ttl_seconds: int = DEFAULT_PRESIGN_TTL_SECONDS,
    ) -> str:
        """Generate a time-limited read URL."""
        ...

    async def public_url(self, key: str) -> str:
        """Stable URL for the blob (presigned URL without its signature)."""
        ...

    async def ensure_bucket(self) -> None:
        """Create the bucket and its read policy if missing. Idempotent."""
        ...


def _error_code(error: Exception) -> str:
    response = getattr(error, "response", None) or {}
    return str(response.get("Error", {}).get("Code", ""))


def _public_read_policy(bucket_name: str) -> str:
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": "*",
                "Action": ["s3:GetObject"],
                "Resource": [f"arn:aws:s3:::{bucket_name}/*"],
            }
        ],
    })


class S3ObjectStore:
    """
    S3-compatible object store client.

    boto3 is synchronous, so each call is pushed onto a worker thread with
    asyncio.to_thread. That keeps concurrent uploads from stalling the
    event loop while one of them waits on the network.
    """

    def __init__(self, config: StorageConfig) -> None:
        import boto3
        from botocore.config import Config

        self._config = config
        self.bucket_name = config.bucket_name

        # MinIO and R2 both want SigV4 and path-style addressing
        boto_config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
        )

        self._s3_client = boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
            config=boto_config,
        )

        logger.info(
            "Initialized S3 object store client",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
            }
        )

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        original_name: Optional[str] = None,
    ) -> str:
        params = {
            "Bucket": self.bucket_name,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if original_name:
            params["ContentDisposition"] = f'inline; filename="{quote(original_name)}"'

        try:
            await asyncio.to_thread(self._s3_client.put_object, **params)
        except Exception as e:
            logger.error(
                "Failed to upload object",
                extra={"key": key, "size_bytes": len(data), "error": str(e)}
            )
            raise StoreError(f"Upload failed: {e}", key=key, operation="put") from e

        logger.debug(
            "Uploaded object",
            extra={"key": key, "size_bytes": len(data), "content_type": content_type}
        )
        return key

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(
                self._s3_client.delete_object,
                Bucket=self.bucket_name,
                Key=key,
            )
        except Exception as e:
            if _error_code(e) in _MISSING_CODES:
                logger.debug("Object already absent", extra={"key": key})
                return
            logger.error(
                "Failed to delete object",
                extra={"key": key, "error": str(e)}
            )
            raise StoreError(f"Delete failed: {e}", key=key, operation="delete") from e

        logger.debug("Deleted object", extra={"key": key})

    async def exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(
                self._s3_client.head_object,
                Bucket=self.bucket_name,
                Key=key,
            )
            return True
        except Exception as e:
            if _error_code(e) in _MISSING_CODES:
                return False
            raise StoreError(f"Head failed: {e}", key=key, operation="exists") from e

    async def presigned_url(
        self,
        key: str,
        ttl_seconds: int = DEFAULT_PRESIGN_TTL_SECONDS,
    ) -> str:
        try:
            return await asyncio.to_thread(
                self._s3_client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except Exception as e:
            logger.error(
                "Failed to generate presigned URL",
                extra={"key": key, "error": str(e)}
            )
            raise StoreError(
                f"Presigned URL generation failed: {e}",
                key=key,
                operation="presign",
            ) from e

    async def public_url(self, key: str) -> str:
        url = await self.presigned_url(key)
        return url.split("?", 1)[0]

    async def ensure_bucket(self) -> None:
        """
        Make sure the bucket exists and is publicly readable.

        Runs once at startup. Safe to repeat: an existing bucket is left
        alone and the policy write is a plain overwrite.
        """
        bucket = self.bucket_name

        try:
            await asyncio.to_thread(self._s3_client.head_bucket, Bucket=bucket)
            created = False
        except Exception as e:
            if _error_code(e) not in _MISSING_CODES:
                raise StoreError(
                    f"Bucket check failed: {e}",
                    key=bucket,
                    operation="ensure_bucket",
                ) from e
            try:
                create_params = {"Bucket": bucket}
                # us-east-1 rejects an explicit LocationConstraint
                if self._config.region and self._config.region != "us-east-1":
                    create_params["CreateBucketConfiguration"] = {
                        "LocationConstraint": self._config.region,
                    }
                await asyncio.to_thread(self._s3_client.create_bucket, **create_params)
                created = True
            except Exception as create_error:
                # Another instance may have created it between head and create
                if _error_code(create_error) not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                    raise StoreError(
                        f"Bucket creation failed: {create_error}",
                        key=bucket,
                        operation="ensure_bucket",
                    ) from create_error
                created = False

        if self._config.public_read:
            try:
                await asyncio.to_thread(
                    self._s3_client.put_bucket_policy,
                    Bucket=bucket,
                    Policy=_public_read_policy(bucket),
                )
            except Exception as e:
                raise StoreError(
                    f"Bucket policy update failed: {e}",
                    key=bucket,
                    operation="ensure_bucket",
                ) from e

        logger.info(
            "Bucket ready",
            extra={"bucket": bucket, "created": created}
        )


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

class MockObjectStore:
    """
    In-memory object store.

    Blobs live in a dict keyed by storage key and URLs are mock URIs.
    Tracks how many calls each operation received and can be told to fail
    specific operations, which is what the rollback tests lean on.
    """

    def __init__(self, bucket_name: str = "videos") -> None:
        self.bucket_name = bucket_name
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.calls: dict[str, int] = {
            "put": 0,
            "delete": 0,
            "exists": 0,
            "presign": 0,
            "ensure_bucket": 0,
        }
        self.bucket_exists = False
        # operation -> set of keys that should fail ("*" fails every key)
        self._failures: dict[str, set[str]] = {}
        logger.info("Initialized mock object store (in-memory)")

    def fail_on(self, operation: str, key: str = "*") -> None:
        """Make calls to ``operation`` on ``key`` raise StoreError from now on."""
        self._failures.setdefault(operation, set()).add(key)

    def fail_puts_under(self, prefix: str) -> None:
        """Fail every put whose key starts with ``prefix``."""
        self._failures.setdefault("put_prefix", set()).add(prefix)

    def _maybe_fail(self, operation: str, key: str) -> None:
        keys = self._failures.get(operation, set())
        if "*" in keys or key in keys:
            raise StoreError(f"Injected {operation} failure", key=key, operation=operation)
        if operation == "put":
            for prefix in self._failures.get("put_prefix", set()):
                if key.startswith(prefix):
                    raise StoreError("Injected put failure", key=key, operation=operation)

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        original_name: Optional[str] = None,
    ) -> str:
        self.calls["put"] += 1
        self._maybe_fail("put", key)
        self.objects[key] = bytes(data)
        self.content_types[key] = content_type
        logger.debug(
            "Stored object in mock storage",
            extra={"key": key, "size_bytes": len(data)}
        )
        return key

    async def delete(self, key: str) -> None:
        self.calls["delete"] += 1
        self._maybe_fail("delete", key)
        self.objects.pop(key, None)
        self.content_types.pop(key, None)

    async def exists(self, key: str) -> bool:
        self.calls["exists"] += 1
        return key in self.objects

    async def presigned_url(
        self,
        key: str,
        ttl_seconds: int = DEFAULT_PRESIGN_TTL_SECONDS,
    ) -> str:
        self.calls["presign"] += 1
        self._maybe_fail("presign", key)
        return f"mock://{self.bucket_name}/{key}?expires={ttl_seconds}"

    async def public_url(self, key: str) -> str:
        url = await self.presigned_url(key)
        return url.split("?", 1)[0]

    async def ensure_bucket(self) -> None:
        self.calls["ensure_bucket"] += 1
        self.bucket_exists = True

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_object_store(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> ObjectStore:
    """
    Create an object store client.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return the in-memory store

    Returns:
        ObjectStore implementation (S3 or Mock)
    """
    if mock_mode:
        return MockObjectStore(bucket_name=config.bucket_name if config else "videos")

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return S3ObjectStore(config)
