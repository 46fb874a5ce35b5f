"""Exceptions raised by the layout and object storage migrations."""

from __future__ import annotations


class MigrationError(RuntimeError):
    """Base exception for migration failures that abort a phase."""


class StorageNotReadyError(MigrationError):
    """Raised when a storage-touching call finds the layout migration incomplete."""


__all__ = ["MigrationError", "StorageNotReadyError"]
