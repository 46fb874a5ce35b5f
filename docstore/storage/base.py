"""Capability interface implemented by every blob storage backend."""

from __future__ import annotations

import threading
from typing import List, Optional, Protocol, runtime_checkable

from ..fsutils.moves import MoveResult


@runtime_checkable
class BlobStore(Protocol):
    """Key/value object storage with write-once puts and prefix moves.

    Keys are POSIX style relative paths and listing prefixes name a
    directory: ``list_objects("a/b")`` returns every key below ``a/b/``.
    Reads of missing keys raise
    :class:`~docstore.storage.errors.MissingBlobError`; deletes of missing
    keys are not an error.
    """

    backend_name: str

    def put_object(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
        *,
        if_absent: bool = True,
    ) -> bool:
        ...

    def get_object(self, key: str, *, cancel: Optional[threading.Event] = None) -> bytes:
        ...

    def get_object_range(self, key: str, start: int, end: int) -> bytes:
        ...

    def delete_object(self, key: str) -> bool:
        ...

    def list_objects(self, prefix: str) -> List[str]:
        ...

    def object_exists(self, key: str) -> bool:
        ...

    def presign_get(self, key: str, *, expires_in: Optional[int] = None) -> Optional[str]:
        ...

    def move_prefix(self, source: str, destination: str) -> MoveResult:
        ...


def validate_range(start: int, end: int) -> None:
    if start < 0 or end < start:
        raise ValueError(f"Invalid byte range {start}-{end}")


__all__ = ["BlobStore", "MoveResult", "validate_range"]
