"""Blob store backed by an S3 compatible bucket."""

from __future__ import annotations

import threading
from typing import Any, List, Optional

from botocore.exceptions import ClientError

from .. import logging_manager as log_mgr
from ..fsutils.moves import MoveResult
from .base import validate_range
from .errors import MissingBlobError, OperationCancelled, StorageError
from .local import normalize_key

logger = log_mgr.get_logger().getChild("storage.s3")

_CHUNK_SIZE = 1 << 20
_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
_PRECONDITION_CODES = {"412", "PreconditionFailed"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _status_code(exc: ClientError) -> Optional[int]:
    return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def is_missing_error(exc: ClientError) -> bool:
    return _error_code(exc) in _MISSING_CODES or _status_code(exc) == 404


def is_precondition_failed(exc: ClientError) -> bool:
    return _error_code(exc) in _PRECONDITION_CODES or _status_code(exc) == 412


class S3BlobStore:
    """Store objects in ``bucket`` below an optional ``key_prefix``."""

    backend_name = "s3"

    def __init__(
        self,
        *,
        bucket: str,
        client: Any,
        key_prefix: str = "",
        presign_expires: int = 900,
    ) -> None:
        self.bucket = bucket
        self.client = client
        self.key_prefix = key_prefix.strip("/")
        self.presign_expires = presign_expires

    def _full_key(self, key: str) -> str:
        normalized = normalize_key(key)
        return f"{self.key_prefix}/{normalized}" if self.key_prefix else normalized

    def _strip_prefix(self, full_key: str) -> str:
        if self.key_prefix and full_key.startswith(self.key_prefix + "/"):
            return full_key[len(self.key_prefix) + 1 :]
        return full_key

    def put_object(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
        *,
        if_absent: bool = True,
    ) -> bool:
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": self._full_key(key), "Body": bytes(data)}
        if content_type:
            params["ContentType"] = content_type
        if if_absent:
            params["IfNoneMatch"] = "*"
        try:
            self.client.put_object(**params)
        except ClientError as exc:
            if if_absent and is_precondition_failed(exc):
                return False
            raise StorageError(f"Failed to put {key}: {_error_code(exc)}") from exc
        return True

    def get_object(self, key: str, *, cancel: Optional[threading.Event] = None) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self._full_key(key))
        except ClientError as exc:
            if is_missing_error(exc):
                raise MissingBlobError(normalize_key(key)) from exc
            raise StorageError(f"Failed to get {key}: {_error_code(exc)}") from exc
        body = response["Body"]
        chunks = []
        try:
            while True:
                if cancel is not None and cancel.is_set():
                    raise OperationCancelled(f"Read of {key} cancelled")
                chunk = body.read(_CHUNK_SIZE)
                if not chunk:
                    break
                chunks.append(chunk)
        finally:
            body.close()
        return b"".join(chunks)

    def get_object_range(self, key: str, start: int, end: int) -> bytes:
        validate_range(start, end)
        try:
            response = self.client.get_object(
                Bucket=self.bucket, Key=self._full_key(key), Range=f"bytes={start}-{end}"
            )
        except ClientError as exc:
            if is_missing_error(exc):
                raise MissingBlobError(normalize_key(key)) from exc
            if _error_code(exc) == "InvalidRange":
                return b""
            raise StorageError(f"Failed to get {key}: {_error_code(exc)}") from exc
        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def object_exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=self._full_key(key))
        except ClientError as exc:
            if is_missing_error(exc):
                return False
            raise StorageError(f"Failed to head {key}: {_error_code(exc)}") from exc
        return True

    def delete_object(self, key: str) -> bool:
        existed = self.object_exists(key)
        if not existed:
            return False
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._full_key(key))
        except ClientError as exc:
            if is_missing_error(exc):
                return False
            raise StorageError(f"Failed to delete {key}: {_error_code(exc)}") from exc
        return True

    def list_objects(self, prefix: str) -> List[str]:
        normalized = normalize_key(prefix) if prefix.strip("/ ") else ""
        full_prefix = self._full_key(normalized) if normalized else self.key_prefix
        if full_prefix:
            full_prefix += "/"
        keys: List[str] = []
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=full_prefix):
                for entry in page.get("Contents", []) or []:
                    keys.append(self._strip_prefix(entry["Key"]))
        except ClientError as exc:
            raise StorageError(f"Failed to list {prefix}: {_error_code(exc)}") from exc
        return sorted(keys)

    def presign_get(self, key: str, *, expires_in: Optional[int] = None) -> Optional[str]:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": self._full_key(key)},
                ExpiresIn=int(expires_in or self.presign_expires),
            )
        except ClientError as exc:
            raise StorageError(f"Failed to presign {key}: {_error_code(exc)}") from exc

    def move_prefix(self, source: str, destination: str) -> MoveResult:
        source_prefix = normalize_key(source)
        destination_prefix = normalize_key(destination)
        result = MoveResult()
        for key in self.list_objects(source_prefix):
            target = destination_prefix + key[len(source_prefix) :]
            if self.object_exists(target):
                logger.info(
                    "Skipping move of %s; destination already exists",
                    key,
                    extra={"event": "storage.s3.move.skip", "key": target},
                )
                result.skipped += 1
                continue
            try:
                self.client.copy_object(
                    Bucket=self.bucket,
                    Key=self._full_key(target),
                    CopySource={"Bucket": self.bucket, "Key": self._full_key(key)},
                )
            except ClientError as exc:
                raise StorageError(f"Failed to copy {key} to {target}: {_error_code(exc)}") from exc
            self.delete_object(key)
            result.moved += 1
        return result


__all__ = ["S3BlobStore", "is_missing_error", "is_precondition_failed"]
