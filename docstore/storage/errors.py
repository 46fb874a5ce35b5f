"""Exception hierarchy for blob storage backends."""

from __future__ import annotations


class StorageError(RuntimeError):
    """Base exception raised by storage backends."""


class MissingBlobError(StorageError):
    """Raised when a key does not resolve to a stored object."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Object not found: {key}")


class BlobConflictError(StorageError):
    """Raised when a write-once key already holds different content."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Object already exists with different content: {key}")


class InvalidKeyError(StorageError, ValueError):
    """Raised for keys that are absolute or escape the storage root."""


class OperationCancelled(StorageError):
    """Raised when a caller-supplied cancellation event fires mid-operation."""


__all__ = [
    "BlobConflictError",
    "InvalidKeyError",
    "MissingBlobError",
    "OperationCancelled",
    "StorageError",
]
