"""SQLAlchemy models — import all to register with Base.metadata."""

from .storage import AudiobookChapterModel, AudiobookModel, DocumentModel, chapter_row_id

__all__ = [
    "AudiobookChapterModel",
    "AudiobookModel",
    "DocumentModel",
    "chapter_row_id",
]
