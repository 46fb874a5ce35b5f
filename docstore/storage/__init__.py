"""Blob storage backends and the shared key scheme."""

from .base import BlobStore, MoveResult
from .errors import (
    BlobConflictError,
    InvalidKeyError,
    MissingBlobError,
    OperationCancelled,
    StorageError,
)
from .factory import ObjectStorageNotConfiguredError, build_blob_store, build_object_store
from .layout import BlobRef, StorageLayout, unclaimed_user_id
from .local import LocalBlobStore
from .s3 import S3BlobStore

__all__ = [
    "BlobConflictError",
    "BlobRef",
    "BlobStore",
    "InvalidKeyError",
    "LocalBlobStore",
    "MissingBlobError",
    "MoveResult",
    "ObjectStorageNotConfiguredError",
    "OperationCancelled",
    "S3BlobStore",
    "StorageError",
    "StorageLayout",
    "build_blob_store",
    "build_object_store",
    "unclaimed_user_id",
]
