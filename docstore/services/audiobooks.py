"""Request-facing audiobook operations over the blob store and metadata rows."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .. import logging_manager as log_mgr
from ..chapters.codec import (
    CHAPTER_FORMATS,
    chapter_file_prefix,
    encode_chapter_file_name,
    is_encodable_index,
)
from ..chapters.listing import StoredChapter, find_stored_chapter_by_index, list_stored_chapters
from ..database.repository import ChapterRecord, MetadataRepository
from ..media.exceptions import MediaBackendError
from ..media.probe import ChapterProber
from ..migrations.audiobooks_v1 import AudiobooksV1Migrator
from ..migrations.errors import StorageNotReadyError
from ..schemas import AudiobookStatus, ChapterStatus
from ..storage.base import BlobStore
from ..storage.errors import MissingBlobError, OperationCancelled
from ..storage.layout import BlobRef, StorageLayout, require_safe_id, unclaimed_user_id
from .indexing import DbIndexer
from .pruning import ConsistencyPruner

logger = log_mgr.get_logger().getChild("services.audiobooks")

DEFAULT_FORMAT = "m4b"
DEFAULT_BOOK_TITLE = "Untitled Audiobook"
SETTINGS_KEYS = ("ttsProvider", "ttsModel", "voice", "nativeSpeed", "postSpeed", "format")
COMPLETE_FILES = tuple(
    name
    for fmt in CHAPTER_FORMATS
    for name in (f"complete.{fmt}", f"complete.{fmt}.manifest.json")
)
CHAPTER_CONTENT_TYPES = {"mp3": "audio/mpeg", "m4b": "audio/mp4"}


class AudiobookError(RuntimeError):
    """Base class for audiobook request failures."""


class SettingsMismatchError(AudiobookError):
    """Incoming generation settings disagree with the book's stored settings."""

    def __init__(self, settings: Mapping[str, Any]) -> None:
        super().__init__("Audiobook settings mismatch")
        self.settings = dict(settings)


class MixedFormatsError(AudiobookError):
    def __init__(self) -> None:
        super().__init__("Mixed chapter formats detected; reset the audiobook to continue")


class FormatMismatchError(AudiobookError):
    """An encoded chapter arrived in a format other than the book's."""

    def __init__(self, book_format: str, requested: str) -> None:
        super().__init__(f"Audiobook is stored as {book_format}; cannot add a {requested} chapter")
        self.book_format = book_format
        self.requested = requested


class AudiobookNotFoundError(AudiobookError):
    pass


class ChapterNotFoundError(AudiobookNotFoundError):
    pass


@dataclass(slots=True)
class StoredChapterResult:
    book_id: str
    index: int
    title: str
    format: str
    duration: Optional[float]


@dataclass(slots=True)
class ChapterDownload:
    """Either a presigned URL or the chapter bytes, never both."""

    file_name: str
    format: str
    title: str
    url: Optional[str] = None
    data: Optional[bytes] = None

    @property
    def content_type(self) -> str:
        return CHAPTER_CONTENT_TYPES.get(self.format, "application/octet-stream")


def settings_mismatch(existing: Mapping[str, Any], incoming: Mapping[str, Any]) -> bool:
    return any(existing.get(key) != incoming.get(key) for key in SETTINGS_KEYS)


def next_chapter_index(indices: Sequence[int]) -> int:
    """Return the smallest non-negative index not in ``indices``."""

    taken = set(indices)
    candidate = 0
    while candidate in taken:
        candidate += 1
    return candidate


class AudiobookService:
    """Store, list, serve and delete audiobook chapters.

    Stored objects are authoritative; rows are written after the object and
    pruned whenever a read finds the object gone.
    """

    def __init__(
        self,
        store: BlobStore,
        layout: StorageLayout,
        repository: MetadataRepository,
        *,
        migrator: AudiobooksV1Migrator,
        pruner: ConsistencyPruner,
        indexer: Optional[DbIndexer] = None,
        prober: Optional[ChapterProber] = None,
    ) -> None:
        self.store = store
        self.layout = layout
        self.repository = repository
        self.migrator = migrator
        self.pruner = pruner
        self.indexer = indexer
        self.prober = prober

    def ensure_ready(self, cancel: Optional[threading.Event] = None) -> None:
        self.migrator.ensure_ready(cancel)
        if not self.migrator.is_ready():
            raise StorageNotReadyError(
                "Audiobooks storage is not migrated; run the v1 layout migration first."
            )

    def storage_owner(self, user_id: Optional[str], namespace: Optional[str] = None) -> str:
        if self.layout.auth_enabled and user_id:
            return require_safe_id(user_id, "user id")
        return unclaimed_user_id(namespace)

    def readable_owners(self, user_id: Optional[str], namespace: Optional[str] = None) -> List[str]:
        owners = [self.storage_owner(user_id, namespace)]
        unclaimed = unclaimed_user_id(namespace)
        if unclaimed not in owners:
            owners.append(unclaimed)
        return owners

    def _ensure_indexed(self) -> None:
        if self.indexer is not None:
            self.indexer.ensure_indexed()

    def _find_owner(self, book_id: str, owners: Sequence[str]) -> Optional[str]:
        for owner in owners:
            if self.repository.get_audiobook(book_id, owner) is not None:
                return owner
        return None

    def _chapters(self, book_id: str, owner: str, namespace: Optional[str]) -> List[StoredChapter]:
        return list_stored_chapters(self.store.list_objects(self.layout.book_prefix(book_id, owner, namespace)))

    def _read_settings(self, book_id: str, owner: str, namespace: Optional[str]) -> Optional[Dict[str, Any]]:
        try:
            payload = json.loads(self.store.get_object(self.layout.meta_key(book_id, owner, namespace)))
        except MissingBlobError:
            return None
        except ValueError:
            logger.warning(
                "Ignoring unreadable audiobook settings",
                extra={"event": "services.audiobooks.bad_settings", "book_id": book_id},
            )
            return None
        return payload if isinstance(payload, dict) else None

    def _write_settings(
        self, book_id: str, owner: str, namespace: Optional[str], settings: Mapping[str, Any]
    ) -> None:
        self.store.put_object(
            self.layout.meta_key(book_id, owner, namespace),
            json.dumps(dict(settings), indent=2).encode("utf-8"),
            "application/json",
            if_absent=False,
        )

    def _invalidate_complete(self, book_id: str, owner: str, namespace: Optional[str]) -> None:
        for name in COMPLETE_FILES:
            self.store.delete_object(self.layout.key_for(BlobRef(book_id, name, owner, namespace)))

    def _delete_index_files(
        self, keys: Sequence[str], index: int, *, keep: Optional[str] = None
    ) -> int:
        prefix = chapter_file_prefix(index)
        deleted = 0
        for key in keys:
            file_name = key.rsplit("/", 1)[-1]
            if key == keep or not file_name.startswith(prefix):
                continue
            if not file_name.endswith(tuple(f".{fmt}" for fmt in CHAPTER_FORMATS)):
                continue
            if self.store.delete_object(key):
                deleted += 1
        return deleted

    def _probe_duration(self, audio: Union[bytes, Path], cancel: Optional[threading.Event]) -> Optional[float]:
        if self.prober is None or not isinstance(audio, Path):
            return None
        try:
            return self.prober.probe(audio, cancel=cancel).duration_sec
        except MediaBackendError as exc:
            logger.warning(
                "Could not probe chapter duration: %s",
                exc,
                extra={"event": "services.audiobooks.probe_failed"},
            )
            return None

    def store_chapter(
        self,
        book_id: str,
        audio: Union[bytes, Path],
        *,
        title: Optional[str] = None,
        user_id: Optional[str] = None,
        namespace: Optional[str] = None,
        chapter_index: Optional[int] = None,
        format: Optional[str] = None,
        settings: Optional[Mapping[str, Any]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> StoredChapterResult:
        """Persist one already encoded chapter and return where it landed.

        ``audio`` is the encoded payload or a path to it. The book's format is
        fixed by its existing chapters, then its stored settings, then the
        incoming settings, then ``format``. The payload is stored as is, so an
        explicit ``format`` (or settings format) that disagrees with the book
        raises :class:`FormatMismatchError`.
        """

        require_safe_id(book_id, "book id")
        if chapter_index is not None and not is_encodable_index(chapter_index):
            raise AudiobookError(f"Invalid chapter index: {chapter_index!r}")
        if format is not None and format not in CHAPTER_FORMATS:
            raise AudiobookError(f"Unsupported format: {format!r}")
        self.ensure_ready(cancel)

        owner = self.storage_owner(user_id, namespace)
        chapter_title = title or DEFAULT_BOOK_TITLE

        prefix = self.layout.book_prefix(book_id, owner, namespace)
        keys = self.store.list_objects(prefix)
        existing = list_stored_chapters(keys)
        existing_settings = self._read_settings(book_id, owner, namespace)
        if existing and existing_settings and settings and settings_mismatch(existing_settings, settings):
            raise SettingsMismatchError(existing_settings)

        formats = {chapter.format for chapter in existing}
        if len(formats) > 1:
            raise MixedFormatsError()
        fmt = (
            next(iter(formats), None)
            or (existing_settings or {}).get("format")
            or (settings or {}).get("format")
            or format
            or DEFAULT_FORMAT
        )
        if fmt not in CHAPTER_FORMATS:
            raise AudiobookError(f"Unsupported format: {fmt!r}")
        for requested in (format, (settings or {}).get("format")):
            if requested is not None and requested != fmt:
                raise FormatMismatchError(fmt, str(requested))

        index = chapter_index if chapter_index is not None else next_chapter_index([c.index for c in existing])
        if not is_encodable_index(index):
            raise AudiobookError("Audiobook has no free chapter index left")
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("Chapter store cancelled")

        data = audio.read_bytes() if isinstance(audio, Path) else bytes(audio)
        duration = self._probe_duration(audio, cancel)
        file_name = encode_chapter_file_name(index, chapter_title, fmt)
        key = self.layout.key_for(BlobRef(book_id, file_name, owner, namespace))
        self.store.put_object(key, data, CHAPTER_CONTENT_TYPES[fmt], if_absent=False)
        self.repository.ensure_audiobook(book_id, owner, chapter_title)

        self._delete_index_files(keys, index, keep=key)
        self._invalidate_complete(book_id, owner, namespace)
        if existing_settings is None and settings:
            self._write_settings(book_id, owner, namespace, settings)

        self.repository.upsert_chapter(
            ChapterRecord(
                book_id=book_id,
                user_id=owner,
                chapter_index=index,
                title=chapter_title,
                file_path=file_name,
                format=fmt,
                duration=duration,
            )
        )
        logger.info(
            "Stored chapter %s",
            index,
            extra={"event": "services.audiobooks.chapter_stored", "book_id": book_id, "key": key},
        )
        return StoredChapterResult(book_id=book_id, index=index, title=chapter_title, format=fmt, duration=duration)

    def get_status(
        self, book_id: str, *, user_id: Optional[str] = None, namespace: Optional[str] = None
    ) -> AudiobookStatus:
        require_safe_id(book_id, "book id")
        if not self.migrator.is_ready():
            raise StorageNotReadyError(
                "Audiobooks storage is not migrated; run the v1 layout migration first."
            )
        self._ensure_indexed()

        owners = self.readable_owners(user_id, namespace)
        owner = self._find_owner(book_id, owners)
        if owner is None:
            owner = next(
                (candidate for candidate in owners if self._chapters(book_id, candidate, namespace)),
                None,
            )
        if owner is None:
            return AudiobookStatus(book_id=book_id, exists=False)

        keys = self.store.list_objects(self.layout.book_prefix(book_id, owner, namespace))
        if not keys:
            self.pruner.prune_book_if_missing(book_id, owner, namespace)
            return AudiobookStatus(book_id=book_id, exists=False)

        stored = list_stored_chapters(keys)
        self.pruner.prune_chapters(book_id, owner, [chapter.index for chapter in stored])
        durations = {row.chapter_index: row.duration for row in self.repository.list_chapters(book_id, owner)}
        file_names = {key.rsplit("/", 1)[-1] for key in keys}
        return AudiobookStatus(
            book_id=book_id,
            exists=True,
            chapters=[
                ChapterStatus(
                    index=chapter.index,
                    title=chapter.title,
                    format=chapter.format,
                    file_name=chapter.file_name,
                    duration=durations.get(chapter.index),
                )
                for chapter in stored
            ],
            settings=self._read_settings(book_id, owner, namespace),
            has_complete=any(name in file_names for name in COMPLETE_FILES if not name.endswith(".json")),
            next_index=next_chapter_index([chapter.index for chapter in stored]),
        )

    def open_chapter(
        self,
        book_id: str,
        index: int,
        *,
        user_id: Optional[str] = None,
        namespace: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ChapterDownload:
        """Return a presigned URL when the backend has one, else the bytes.

        A missing object prunes the stale rows before raising.
        """

        require_safe_id(book_id, "book id")
        self.ensure_ready(cancel)
        self._ensure_indexed()

        owner = self._find_owner(book_id, self.readable_owners(user_id, namespace))
        if owner is None:
            raise AudiobookNotFoundError("Book not found")

        keys = self.store.list_objects(self.layout.book_prefix(book_id, owner, namespace))
        chapter = find_stored_chapter_by_index(keys, index) if keys else None
        if chapter is None:
            self.pruner.prune_chapter_if_missing(book_id, owner, index, namespace)
            raise ChapterNotFoundError("Chapter not found")

        url = self.store.presign_get(chapter.key)
        if url is not None:
            return ChapterDownload(chapter.file_name, chapter.format, chapter.title, url=url)
        try:
            data = self.store.get_object(chapter.key, cancel=cancel)
        except MissingBlobError:
            self.pruner.prune_chapter_if_missing(book_id, owner, index, namespace)
            raise ChapterNotFoundError("Chapter not found") from None
        return ChapterDownload(chapter.file_name, chapter.format, chapter.title, data=data)

    def delete_chapter(
        self,
        book_id: str,
        index: int,
        *,
        user_id: Optional[str] = None,
        namespace: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """Delete every stored file of chapter ``index`` and its row."""

        require_safe_id(book_id, "book id")
        self.ensure_ready(cancel)
        self._ensure_indexed()

        owner = self.storage_owner(user_id, namespace)
        if self.repository.get_audiobook(book_id, owner) is None:
            raise AudiobookNotFoundError("Book not found")

        self.repository.delete_chapter(book_id, owner, index)
        keys = self.store.list_objects(self.layout.book_prefix(book_id, owner, namespace))
        deleted = self._delete_index_files(keys, index)
        self._invalidate_complete(book_id, owner, namespace)
        logger.info(
            "Deleted chapter %s (%s files)",
            index,
            deleted,
            extra={"event": "services.audiobooks.chapter_deleted", "book_id": book_id},
        )
        return deleted

    def reset_book(
        self,
        book_id: str,
        *,
        user_id: Optional[str] = None,
        namespace: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """Delete all stored files of a book along with its rows."""

        require_safe_id(book_id, "book id")
        self.ensure_ready(cancel)
        owner = self.storage_owner(user_id, namespace)
        deleted = 0
        for key in self.store.list_objects(self.layout.book_prefix(book_id, owner, namespace)):
            if cancel is not None and cancel.is_set():
                raise OperationCancelled("Audiobook reset cancelled")
            if self.store.delete_object(key):
                deleted += 1
        self.repository.delete_audiobook(book_id, owner)
        logger.info(
            "Reset audiobook (%s files deleted)",
            deleted,
            extra={"event": "services.audiobooks.reset", "book_id": book_id},
        )
        return deleted


__all__ = [
    "AudiobookError",
    "AudiobookNotFoundError",
    "AudiobookService",
    "ChapterDownload",
    "ChapterNotFoundError",
    "FormatMismatchError",
    "MixedFormatsError",
    "SettingsMismatchError",
    "StoredChapterResult",
    "next_chapter_index",
    "settings_mismatch",
]
