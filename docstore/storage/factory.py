"""Construct the configured blob store."""

from __future__ import annotations

from typing import Any, Optional

import boto3
from botocore.config import Config

from ..config_manager.settings import DocstoreSettings
from .base import BlobStore
from .local import LocalBlobStore
from .s3 import S3BlobStore


class ObjectStorageNotConfiguredError(RuntimeError):
    """Raised when an operation needs S3 but the bucket settings are incomplete."""

    def __init__(self) -> None:
        super().__init__(
            "S3 is not configured. Set S3_BUCKET, S3_REGION, S3_ACCESS_KEY_ID, S3_SECRET_ACCESS_KEY."
        )


def create_s3_client(settings: DocstoreSettings) -> Any:
    if not settings.s3_configured:
        raise ObjectStorageNotConfiguredError()
    secret = settings.s3_secret_access_key.get_secret_value() if settings.s3_secret_access_key else None
    return boto3.client(
        "s3",
        region_name=settings.s3_region,
        endpoint_url=settings.s3_endpoint or None,
        aws_access_key_id=settings.s3_access_key_id,
        aws_secret_access_key=secret,
        config=Config(
            signature_version="s3v4",
            s3={"addressing_style": "path" if settings.s3_force_path_style else "virtual"},
        ),
    )


def build_object_store(settings: DocstoreSettings, *, client: Optional[Any] = None) -> S3BlobStore:
    if not settings.s3_configured:
        raise ObjectStorageNotConfiguredError()
    return S3BlobStore(
        bucket=str(settings.s3_bucket),
        client=client if client is not None else create_s3_client(settings),
        key_prefix=settings.s3_prefix,
        presign_expires=settings.s3_presign_expires_seconds,
    )


def build_blob_store(settings: DocstoreSettings, *, s3_client: Optional[Any] = None) -> BlobStore:
    """Return the S3 store when configured, otherwise a local store under the root."""

    if settings.storage_backend == "s3":
        return build_object_store(settings, client=s3_client)
    return LocalBlobStore(settings.root)


__all__ = [
    "ObjectStorageNotConfiguredError",
    "build_blob_store",
    "build_object_store",
    "create_s3_client",
]
