"""Filesystem helpers shared by the storage backends and migrations."""

from .moves import (
    AtomicMoveError,
    ChecksumMismatchError,
    MoveResult,
    atomic_move,
    atomic_write_bytes,
    merge_directories,
    remove_empty_dirs,
)

__all__ = [
    "AtomicMoveError",
    "ChecksumMismatchError",
    "MoveResult",
    "atomic_move",
    "atomic_write_bytes",
    "merge_directories",
    "remove_empty_dirs",
]
