"""Blob store backed by a directory on the local filesystem."""

from __future__ import annotations

import threading
from pathlib import Path, PurePosixPath
from typing import List, Optional

from .. import logging_manager as log_mgr
from ..fsutils.moves import MoveResult, atomic_write_bytes, merge_directories
from .base import validate_range
from .errors import BlobConflictError, InvalidKeyError, MissingBlobError, OperationCancelled

logger = log_mgr.get_logger().getChild("storage.local")

_CHUNK_SIZE = 1 << 20


def normalize_key(key: str) -> str:
    """Return ``key`` as a clean relative POSIX path or raise :class:`InvalidKeyError`."""

    if not isinstance(key, str) or not key.strip():
        raise InvalidKeyError(f"Invalid key: {key!r}")
    candidate = key.replace("\\", "/")
    if candidate.startswith("/"):
        raise InvalidKeyError(f"Absolute keys are not allowed: {key!r}")
    parts = [part for part in PurePosixPath(candidate).parts if part not in {"", "."}]
    if not parts or any(part == ".." for part in parts):
        raise InvalidKeyError(f"Key escapes the storage root: {key!r}")
    return "/".join(parts)


def _is_temp_file(path: Path) -> bool:
    return path.name.startswith(".") and ".tmp-" in path.name


class LocalBlobStore:
    """Store objects as files below ``root``; keys are relative paths."""

    backend_name = "local"

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        return self.root / normalize_key(key)

    def put_object(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
        *,
        if_absent: bool = True,
    ) -> bool:
        path = self.path_for(key)
        if if_absent and path.exists():
            if path.is_file() and path.read_bytes() == bytes(data):
                return False
            raise BlobConflictError(normalize_key(key))
        atomic_write_bytes(path, bytes(data))
        return True

    def get_object(self, key: str, *, cancel: Optional[threading.Event] = None) -> bytes:
        path = self.path_for(key)
        chunks = []
        try:
            with path.open("rb") as handle:
                for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                    if cancel is not None and cancel.is_set():
                        raise OperationCancelled(f"Read of {key} cancelled")
                    chunks.append(chunk)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
            raise MissingBlobError(normalize_key(key)) from exc
        return b"".join(chunks)

    def get_object_range(self, key: str, start: int, end: int) -> bytes:
        validate_range(start, end)
        path = self.path_for(key)
        try:
            with path.open("rb") as handle:
                handle.seek(start)
                return handle.read(end - start + 1)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
            raise MissingBlobError(normalize_key(key)) from exc

    def delete_object(self, key: str) -> bool:
        path = self.path_for(key)
        try:
            path.unlink()
        except (FileNotFoundError, IsADirectoryError):
            return False
        return True

    def list_objects(self, prefix: str) -> List[str]:
        normalized = normalize_key(prefix) if prefix.strip("/ ") else ""
        base = self.root / normalized if normalized else self.root
        if not base.is_dir():
            return []
        keys = [
            path.relative_to(self.root).as_posix()
            for path in base.rglob("*")
            if path.is_file() and not _is_temp_file(path)
        ]
        return sorted(keys)

    def object_exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def presign_get(self, key: str, *, expires_in: Optional[int] = None) -> Optional[str]:
        return None

    def move_prefix(self, source: str, destination: str) -> MoveResult:
        src = self.path_for(source)
        dst = self.path_for(destination)
        if not src.exists():
            return MoveResult()
        result = merge_directories(src, dst)
        logger.info(
            "Moved %s -> %s (%s moved, %s skipped)",
            normalize_key(source),
            normalize_key(destination),
            result.moved,
            result.skipped,
            extra={"event": "storage.local.move_prefix", "key": normalize_key(destination)},
        )
        return result


__all__ = ["LocalBlobStore", "normalize_key"]
