"""Reconcile chapter and book rows against what storage actually holds."""

from __future__ import annotations

from typing import Iterable, Optional

from .. import logging_manager as log_mgr
from ..chapters.listing import find_stored_chapter_by_index, list_stored_chapters
from ..database.repository import MetadataRepository
from ..schemas import PruneResult
from ..storage.base import BlobStore
from ..storage.layout import StorageLayout

logger = log_mgr.get_logger().getChild("services.pruning")


class ConsistencyPruner:
    """Delete metadata rows whose artifacts are gone.

    Storage is the source of truth: the pruner only ever deletes rows and
    never touches stored objects, including when a row is missing.
    """

    def __init__(self, store: BlobStore, layout: StorageLayout, repository: MetadataRepository) -> None:
        self.store = store
        self.layout = layout
        self.repository = repository

    def prune_chapters(self, book_id: str, owner_id: str, observed_indices: Iterable[int]) -> PruneResult:
        observed = set(observed_indices)
        stale = [
            row.chapter_index
            for row in self.repository.list_chapters(book_id, owner_id)
            if row.chapter_index not in observed
        ]
        deleted = self.repository.delete_chapters(book_id, owner_id, stale)
        if deleted:
            logger.info(
                "Pruned %s chapter rows",
                deleted,
                extra={"event": "services.pruning.chapters", "book_id": book_id, "owner_id": owner_id},
            )
        return PruneResult(chapters_deleted=deleted)

    def prune_book_if_missing(
        self, book_id: str, owner_id: str, namespace: Optional[str] = None
    ) -> PruneResult:
        prefix = self.layout.book_prefix(book_id, owner_id, namespace)
        if self.store.list_objects(prefix):
            return PruneResult()
        return self._delete_book(book_id, owner_id)

    def prune_chapter_if_missing(
        self, book_id: str, owner_id: str, index: int, namespace: Optional[str] = None
    ) -> PruneResult:
        keys = self.store.list_objects(self.layout.book_prefix(book_id, owner_id, namespace))
        if not keys:
            return self._delete_book(book_id, owner_id)
        if find_stored_chapter_by_index(keys, index) is not None:
            return PruneResult()
        deleted = 1 if self.repository.delete_chapter(book_id, owner_id, index) else 0
        if deleted:
            logger.info(
                "Pruned chapter row %s",
                index,
                extra={"event": "services.pruning.chapter", "book_id": book_id, "owner_id": owner_id},
            )
        return PruneResult(chapters_deleted=deleted)

    def reconcile_book(self, book_id: str, owner_id: str, namespace: Optional[str] = None) -> PruneResult:
        """List the book once and apply both pruning rules."""

        keys = self.store.list_objects(self.layout.book_prefix(book_id, owner_id, namespace))
        if not keys:
            return self._delete_book(book_id, owner_id)
        observed = [chapter.index for chapter in list_stored_chapters(keys)]
        return self.prune_chapters(book_id, owner_id, observed)

    def _delete_book(self, book_id: str, owner_id: str) -> PruneResult:
        books, chapters = self.repository.delete_audiobook(book_id, owner_id)
        if books or chapters:
            logger.info(
                "Pruned audiobook rows for a book with no stored files",
                extra={"event": "services.pruning.book", "book_id": book_id, "owner_id": owner_id},
            )
        return PruneResult(book_deleted=books > 0, chapters_deleted=chapters)


__all__ = ["ConsistencyPruner"]
