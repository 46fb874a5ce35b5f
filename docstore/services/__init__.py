"""Services built on the storage backends and the metadata repository."""

from .audiobooks import (
    AudiobookError,
    AudiobookNotFoundError,
    AudiobookService,
    ChapterDownload,
    ChapterNotFoundError,
    FormatMismatchError,
    MixedFormatsError,
    SettingsMismatchError,
    StoredChapterResult,
)
from .claim import ClaimError, OwnershipClaimEngine
from .indexing import DbIndexer
from .pruning import ConsistencyPruner

__all__ = [
    "AudiobookError",
    "AudiobookNotFoundError",
    "AudiobookService",
    "ChapterDownload",
    "ChapterNotFoundError",
    "ClaimError",
    "ConsistencyPruner",
    "DbIndexer",
    "FormatMismatchError",
    "MixedFormatsError",
    "OwnershipClaimEngine",
    "SettingsMismatchError",
    "StoredChapterResult",
]
