"""Metadata repository for document, audiobook and chapter rows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_, delete, func, select

from .engine import Database
from .models import AudiobookChapterModel, AudiobookModel, DocumentModel, chapter_row_id


@dataclass(slots=True)
class DocumentRecord:
    id: str
    user_id: str
    name: str
    type: str
    size: int
    last_modified: int
    file_path: str


@dataclass(slots=True)
class AudiobookRecord:
    id: str
    user_id: str
    title: str
    author: Optional[str] = None
    description: Optional[str] = None
    cover_path: Optional[str] = None
    duration: Optional[float] = None


@dataclass(slots=True)
class ChapterRecord:
    book_id: str
    user_id: str
    chapter_index: int
    title: str
    file_path: str
    format: str
    duration: Optional[float] = None

    @property
    def id(self) -> str:
        return chapter_row_id(self.book_id, self.chapter_index)


@dataclass(slots=True)
class TransferResult:
    """Outcome of moving one owner's rows to another owner."""

    transferred: int = 0
    dropped_duplicates: int = 0


class MetadataRepository:
    """CRUD over the metadata rows; every call runs in its own transaction.

    Rows are a cache of what storage holds. Ownership changes always delete
    the source rows and insert fresh rows for the destination owner because
    the owner id is part of every primary key.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    def list_documents(self, user_id: Optional[str] = None) -> List[DocumentRecord]:
        query = select(DocumentModel).order_by(DocumentModel.user_id, DocumentModel.id)
        if user_id is not None:
            query = query.where(DocumentModel.user_id == user_id)
        with self._database.session() as session:
            return [self._document_to_record(m) for m in session.execute(query).scalars().all()]

    def get_document(self, document_id: str, user_id: str) -> Optional[DocumentRecord]:
        with self._database.session() as session:
            model = session.get(DocumentModel, (document_id, user_id))
            return self._document_to_record(model) if model else None

    def document_ids_for_user(self, user_id: str) -> Set[str]:
        with self._database.session() as session:
            rows = session.execute(
                select(DocumentModel.id).where(DocumentModel.user_id == user_id)
            ).scalars()
            return set(rows)

    def document_id_exists(self, document_id: str) -> bool:
        """Return whether any owner has a row for ``document_id``."""

        with self._database.session() as session:
            found = session.execute(
                select(DocumentModel.id).where(DocumentModel.id == document_id).limit(1)
            ).first()
            return found is not None

    def insert_documents(self, records: Iterable[DocumentRecord]) -> int:
        """Insert ``records`` skipping keys that already exist; return inserted count."""

        inserted = 0
        with self._database.session() as session:
            for record in records:
                if session.get(DocumentModel, (record.id, record.user_id)) is not None:
                    continue
                session.add(self._record_to_document(record))
                session.flush()
                inserted += 1
        return inserted

    def stale_document_paths(self) -> List[Tuple[str, str]]:
        """Return ``(id, user_id)`` for rows whose ``file_path`` is not the content id."""

        with self._database.session() as session:
            rows = session.execute(
                select(DocumentModel.id, DocumentModel.user_id).where(
                    DocumentModel.file_path != DocumentModel.id
                )
            ).all()
            return [(row[0], row[1]) for row in rows]

    def set_document_file_path(self, document_id: str, user_id: str, file_path: str) -> bool:
        with self._database.session() as session:
            model = session.get(DocumentModel, (document_id, user_id))
            if model is None:
                return False
            model.file_path = file_path
            return True

    def transfer_documents(self, from_user_id: str, to_user_id: str) -> TransferResult:
        """Move every document row of ``from_user_id`` to ``to_user_id``.

        A destination row with the same content hash wins and the source row
        is dropped as a duplicate.
        """

        result = TransferResult()
        with self._database.session() as session:
            sources = (
                session.execute(select(DocumentModel).where(DocumentModel.user_id == from_user_id))
                .scalars()
                .all()
            )
            for model in sources:
                existing = session.get(DocumentModel, (model.id, to_user_id))
                if existing is None:
                    replacement = DocumentModel(
                        id=model.id,
                        user_id=to_user_id,
                        name=model.name,
                        type=model.type,
                        size=model.size,
                        last_modified=model.last_modified,
                        file_path=model.file_path,
                    )
                    session.delete(model)
                    session.flush()
                    session.add(replacement)
                    result.transferred += 1
                else:
                    session.delete(model)
                    result.dropped_duplicates += 1
                session.flush()
        return result

    # ------------------------------------------------------------------
    # Audiobooks
    # ------------------------------------------------------------------
    def list_audiobooks(self, user_id: Optional[str] = None) -> List[AudiobookRecord]:
        query = select(AudiobookModel).order_by(AudiobookModel.user_id, AudiobookModel.id)
        if user_id is not None:
            query = query.where(AudiobookModel.user_id == user_id)
        with self._database.session() as session:
            return [self._audiobook_to_record(m) for m in session.execute(query).scalars().all()]

    def get_audiobook(self, book_id: str, user_id: str) -> Optional[AudiobookRecord]:
        with self._database.session() as session:
            model = session.get(AudiobookModel, (book_id, user_id))
            return self._audiobook_to_record(model) if model else None

    def audiobook_id_exists(self, book_id: str) -> bool:
        with self._database.session() as session:
            found = session.execute(
                select(AudiobookModel.id).where(AudiobookModel.id == book_id).limit(1)
            ).first()
            return found is not None

    def upsert_audiobook(self, record: AudiobookRecord) -> AudiobookRecord:
        with self._database.session() as session:
            model = session.get(AudiobookModel, (record.id, record.user_id))
            if model is None:
                model = AudiobookModel(id=record.id, user_id=record.user_id)
                session.add(model)
            model.title = record.title
            model.author = record.author
            model.description = record.description
            model.cover_path = record.cover_path
            model.duration = record.duration
            session.flush()
            return self._audiobook_to_record(model)

    def ensure_audiobook(self, book_id: str, user_id: str, title: str) -> bool:
        """Insert a book row when none exists; return whether one was created."""

        with self._database.session() as session:
            if session.get(AudiobookModel, (book_id, user_id)) is not None:
                return False
            session.add(AudiobookModel(id=book_id, user_id=user_id, title=title))
            return True

    def delete_audiobook(self, book_id: str, user_id: str) -> Tuple[int, int]:
        """Delete the book row and its chapter rows; return ``(books, chapters)`` removed."""

        with self._database.session() as session:
            chapters = session.execute(
                delete(AudiobookChapterModel).where(
                    and_(
                        AudiobookChapterModel.book_id == book_id,
                        AudiobookChapterModel.user_id == user_id,
                    )
                )
            ).rowcount
            books = session.execute(
                delete(AudiobookModel).where(
                    and_(AudiobookModel.id == book_id, AudiobookModel.user_id == user_id)
                )
            ).rowcount
        return int(books or 0), int(chapters or 0)

    def list_chapters(self, book_id: str, user_id: str) -> List[ChapterRecord]:
        with self._database.session() as session:
            models = (
                session.execute(
                    select(AudiobookChapterModel)
                    .where(
                        and_(
                            AudiobookChapterModel.book_id == book_id,
                            AudiobookChapterModel.user_id == user_id,
                        )
                    )
                    .order_by(AudiobookChapterModel.chapter_index.asc())
                )
                .scalars()
                .all()
            )
            return [self._chapter_to_record(m) for m in models]

    def upsert_chapter(self, record: ChapterRecord) -> ChapterRecord:
        with self._database.session() as session:
            model = session.get(AudiobookChapterModel, (record.id, record.user_id))
            if model is None:
                model = AudiobookChapterModel(id=record.id, user_id=record.user_id)
                session.add(model)
            model.book_id = record.book_id
            model.chapter_index = record.chapter_index
            model.title = record.title
            model.duration = record.duration
            model.file_path = record.file_path
            model.format = record.format
            session.flush()
            return self._chapter_to_record(model)

    def delete_chapter(self, book_id: str, user_id: str, index: int) -> bool:
        return self.delete_chapters(book_id, user_id, [index]) > 0

    def delete_chapters(self, book_id: str, user_id: str, indices: Iterable[int]) -> int:
        wanted = sorted(set(indices))
        if not wanted:
            return 0
        with self._database.session() as session:
            removed = session.execute(
                delete(AudiobookChapterModel).where(
                    and_(
                        AudiobookChapterModel.book_id == book_id,
                        AudiobookChapterModel.user_id == user_id,
                        AudiobookChapterModel.chapter_index.in_(wanted),
                    )
                )
            ).rowcount
        return int(removed or 0)

    def transfer_audiobook(self, book_id: str, from_user_id: str, to_user_id: str) -> TransferResult:
        """Re-own one book and its chapters in a single transaction.

        Destination rows that already exist are kept and the matching source
        rows are dropped.
        """

        result = TransferResult()
        with self._database.session() as session:
            book = session.get(AudiobookModel, (book_id, from_user_id))
            chapters = (
                session.execute(
                    select(AudiobookChapterModel).where(
                        and_(
                            AudiobookChapterModel.book_id == book_id,
                            AudiobookChapterModel.user_id == from_user_id,
                        )
                    )
                )
                .scalars()
                .all()
            )
            if book is not None:
                if session.get(AudiobookModel, (book_id, to_user_id)) is None:
                    session.add(
                        AudiobookModel(
                            id=book.id,
                            user_id=to_user_id,
                            title=book.title,
                            author=book.author,
                            description=book.description,
                            cover_path=book.cover_path,
                            duration=book.duration,
                            created_at=book.created_at,
                        )
                    )
                    result.transferred += 1
                else:
                    result.dropped_duplicates += 1
                session.delete(book)
            for chapter in chapters:
                if session.get(AudiobookChapterModel, (chapter.id, to_user_id)) is None:
                    session.add(
                        AudiobookChapterModel(
                            id=chapter.id,
                            user_id=to_user_id,
                            book_id=chapter.book_id,
                            chapter_index=chapter.chapter_index,
                            title=chapter.title,
                            duration=chapter.duration,
                            file_path=chapter.file_path,
                            format=chapter.format,
                        )
                    )
                session.delete(chapter)
            session.flush()
        return result

    # ------------------------------------------------------------------
    # Counts
    # ------------------------------------------------------------------
    def count_owned(self, user_id: str) -> Tuple[int, int]:
        """Return ``(documents, audiobooks)`` owned by ``user_id``."""

        with self._database.session() as session:
            documents = session.execute(
                select(func.count()).select_from(DocumentModel).where(DocumentModel.user_id == user_id)
            ).scalar_one()
            audiobooks = session.execute(
                select(func.count())
                .select_from(AudiobookModel)
                .where(AudiobookModel.user_id == user_id)
            ).scalar_one()
        return int(documents), int(audiobooks)

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------
    @staticmethod
    def _document_to_record(model: DocumentModel) -> DocumentRecord:
        return DocumentRecord(
            id=model.id,
            user_id=model.user_id,
            name=model.name,
            type=model.type,
            size=int(model.size or 0),
            last_modified=int(model.last_modified or 0),
            file_path=model.file_path,
        )

    @staticmethod
    def _record_to_document(record: DocumentRecord) -> DocumentModel:
        return DocumentModel(
            id=record.id,
            user_id=record.user_id,
            name=record.name,
            type=record.type,
            size=record.size,
            last_modified=record.last_modified,
            file_path=record.file_path,
        )

    @staticmethod
    def _audiobook_to_record(model: AudiobookModel) -> AudiobookRecord:
        return AudiobookRecord(
            id=model.id,
            user_id=model.user_id,
            title=model.title,
            author=model.author,
            description=model.description,
            cover_path=model.cover_path,
            duration=model.duration,
        )

    @staticmethod
    def _chapter_to_record(model: AudiobookChapterModel) -> ChapterRecord:
        return ChapterRecord(
            book_id=model.book_id,
            user_id=model.user_id,
            chapter_index=model.chapter_index,
            title=model.title,
            file_path=model.file_path,
            format=model.format,
            duration=model.duration,
        )


__all__ = [
    "AudiobookRecord",
    "ChapterRecord",
    "DocumentRecord",
    "MetadataRepository",
    "TransferResult",
]
