"""
Object storage for uploaded videos, cover frames and thumbnails.

Works with any S3-compatible backend (MinIO, R2, S3) via boto3.
Includes an in-memory mock for local development without credentials.
"""

from .client import (
    MockObjectStore,
    ObjectStore,
    S3ObjectStore,
    StorageConfig,
    create_object_store,
)

__all__ = [
    "MockObjectStore",
    "ObjectStore",
    "S3ObjectStore",
    "StorageConfig",
    "create_object_store",
]
