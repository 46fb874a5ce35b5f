"""Transfer artifacts from one owner (usually the unclaimed sentinel) to another."""

from __future__ import annotations

import threading
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .. import logging_manager as log_mgr
from ..database.repository import MetadataRepository
from ..schemas import ClaimResult
from ..storage.base import BlobStore
from ..storage.errors import BlobConflictError, MissingBlobError, OperationCancelled, StorageError
from ..storage.layout import StorageLayout, require_safe_id

logger = log_mgr.get_logger().getChild("services.claim")


class ClaimError(RuntimeError):
    """Raised when a claim cannot start at all."""


class OwnershipClaimEngine:
    """Move audiobooks and documents between owners.

    Per book the stored files move first and the rows are swapped afterwards,
    so an interruption leaves files at the new owner with stale rows (which
    the pruner and the next claim repair) and never rows pointing at nothing.
    A source file that collides with a different destination file stays put
    together with the book's rows, and the book counts as failed.
    Documents are content addressed and shared, so only their rows change.
    Claims of the same book are not serialised here.
    """

    def __init__(self, store: BlobStore, layout: StorageLayout, repository: MetadataRepository) -> None:
        self.store = store
        self.layout = layout
        self.repository = repository

    def claim(
        self,
        from_owner_id: str,
        to_owner_id: str,
        namespace: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ClaimResult:
        try:
            require_safe_id(from_owner_id, "source owner id")
            require_safe_id(to_owner_id, "destination owner id")
        except ValueError as exc:
            raise ClaimError(str(exc)) from exc

        result = ClaimResult()
        if from_owner_id == to_owner_id:
            return result

        with log_mgr.log_context(owner_id=to_owner_id, namespace=namespace):
            for book in self.repository.list_audiobooks(from_owner_id):
                if cancel is not None and cancel.is_set():
                    raise OperationCancelled("Claim cancelled")
                try:
                    self._claim_book(book.id, from_owner_id, to_owner_id, namespace)
                    result.audiobooks += 1
                except (StorageError, SQLAlchemyError, OSError) as exc:
                    result.failed += 1
                    logger.error(
                        "Failed to claim audiobook: %s",
                        exc,
                        exc_info=True,
                        extra={"event": "services.claim.book_failed", "book_id": book.id},
                    )

            if cancel is not None and cancel.is_set():
                raise OperationCancelled("Claim cancelled")
            try:
                transfer = self.repository.transfer_documents(from_owner_id, to_owner_id)
                result.documents = transfer.transferred + transfer.dropped_duplicates
            except SQLAlchemyError as exc:
                result.failed += 1
                logger.error(
                    "Failed to claim documents: %s",
                    exc,
                    exc_info=True,
                    extra={"event": "services.claim.documents_failed"},
                )

            logger.info(
                "Claimed %s documents and %s audiobooks (%s failed)",
                result.documents,
                result.audiobooks,
                result.failed,
                extra={"event": "services.claim.done"},
            )
        return result

    def _claim_book(self, book_id: str, from_owner_id: str, to_owner_id: str, namespace: Optional[str]) -> None:
        if self.layout.auth_enabled:
            source = self.layout.book_prefix(book_id, from_owner_id, namespace)
            destination = self.layout.book_prefix(book_id, to_owner_id, namespace)
            moved = self.store.move_prefix(source, destination)
            if moved.skipped:
                conflicts = self._settle_skipped(source, destination)
                if conflicts:
                    logger.warning(
                        "%s files differ from the destination copies; rows stay with the source",
                        len(conflicts),
                        extra={"event": "services.claim.move_conflict", "book_id": book_id},
                    )
                    raise BlobConflictError(conflicts[0])
        self.repository.transfer_audiobook(book_id, from_owner_id, to_owner_id)

    def _settle_skipped(self, source: str, destination: str) -> List[str]:
        """Drop source files whose destination holds identical bytes.

        Returns the source keys that still collide with different content.
        """

        conflicts: List[str] = []
        for key in self.store.list_objects(source):
            target = destination + key[len(source) :]
            try:
                identical = self.store.get_object(target) == self.store.get_object(key)
            except MissingBlobError:
                identical = False
            if identical:
                self.store.delete_object(key)
            else:
                conflicts.append(key)
        return conflicts


__all__ = ["ClaimError", "OwnershipClaimEngine"]
