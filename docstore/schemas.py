"""Pydantic result and request models shared by services, the API and the CLI."""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase for JSON serialization."""
    components = string.split("_")
    return components[0] + "".join(word.capitalize() for word in components[1:])


class CamelModel(BaseModel):
    """Base model that serializes to camelCase for frontend compatibility."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )


class ObjectStorageMigrationReport(CamelModel):
    """Counts reported by a local to object storage migration run."""

    dry_run: bool = False
    delete_local: bool = False
    docs_dir: str = ""
    files_scanned: int = 0
    uploaded: int = 0
    already_present: int = 0
    skipped_invalid: int = 0
    deleted_local: int = 0
    db_rows_updated: int = 0
    db_rows_seeded: int = 0
    failed: int = 0
    audiobook_files_uploaded: int = 0


class RekeySummary(CamelModel):
    renamed: int = 0
    merged: int = 0
    skipped: int = 0


class LayoutMigrationReport(CamelModel):
    """Outcome of running both layout phases."""

    documents_ready: bool
    audiobooks_ready: bool
    documents_migrated: bool
    audiobooks_migrated: bool
    rekey: RekeySummary = Field(default_factory=RekeySummary)


class ClaimResult(CamelModel):
    documents: int = 0
    audiobooks: int = 0
    failed: int = 0


class UnclaimedCounts(CamelModel):
    documents: int = 0
    audiobooks: int = 0


class PruneResult(CamelModel):
    book_deleted: bool = False
    chapters_deleted: int = 0


class ChapterStatus(CamelModel):
    index: int
    title: str
    format: str
    file_name: str
    duration: Optional[float] = None


class AudiobookStatus(CamelModel):
    book_id: str
    exists: bool
    chapters: List[ChapterStatus] = Field(default_factory=list)
    settings: Optional[Dict[str, object]] = None
    has_complete: bool = False
    next_index: int = 0


__all__ = [
    "AudiobookStatus",
    "CamelModel",
    "ChapterStatus",
    "ClaimResult",
    "LayoutMigrationReport",
    "ObjectStorageMigrationReport",
    "PruneResult",
    "RekeySummary",
    "UnclaimedCounts",
    "to_camel",
]
