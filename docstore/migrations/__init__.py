"""Versioned, idempotent migrations of the on-disk layout and into object storage."""

from .audiobooks_v1 import AudiobooksV1Migrator, RekeyResult
from .documents_v1 import DocumentsV1Migrator
from .errors import MigrationError, StorageNotReadyError
from .object_storage import ObjectStorageMigrator
from .state import MigrationPhaseStatus, MigrationStateTracker

__all__ = [
    "AudiobooksV1Migrator",
    "DocumentsV1Migrator",
    "MigrationError",
    "MigrationPhaseStatus",
    "MigrationStateTracker",
    "ObjectStorageMigrator",
    "RekeyResult",
    "StorageNotReadyError",
]
