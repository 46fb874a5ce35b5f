"""Application context owning every storage service for one configuration."""

from __future__ import annotations

import threading
from typing import Any, Mapping, Optional

from . import logging_manager as log_mgr
from .config_manager import DocstoreSettings, get_settings
from .database import Database, MetadataRepository
from .media.probe import ChapterProber, FfprobeChapterProber
from .media.tagging import ChapterTagger, FfmpegChapterTagger
from .migrations import (
    AudiobooksV1Migrator,
    DocumentsV1Migrator,
    MigrationStateTracker,
    ObjectStorageMigrator,
    StorageNotReadyError,
)
from .schemas import LayoutMigrationReport, RekeySummary
from .services import AudiobookService, ConsistencyPruner, DbIndexer, OwnershipClaimEngine
from .storage import BlobStore, ObjectStorageNotConfiguredError, StorageLayout, build_blob_store
from .storage.factory import build_object_store

logger = log_mgr.get_logger().getChild("context")


class DocstoreContext:
    """Construct and hold the services for one docstore root.

    Nothing here is cached at module level; callers own the context and pass
    it to whatever needs it. ``tagger``, ``prober`` and ``s3_client`` may be
    injected to avoid external binaries and network access.
    """

    def __init__(
        self,
        settings: Optional[DocstoreSettings] = None,
        *,
        database: Optional[Database] = None,
        store: Optional[BlobStore] = None,
        s3_client: Optional[Any] = None,
        tagger: Optional[ChapterTagger] = None,
        prober: Optional[ChapterProber] = None,
        probe_durations: bool = True,
    ) -> None:
        self.settings = settings or get_settings()
        self.root = self.settings.root
        self.layout = StorageLayout(auth_enabled=self.settings.auth_enabled)

        self.database = database or Database(self.settings.resolved_database_url())
        self.database.create_all()
        self.repository = MetadataRepository(self.database)

        self.store = store or build_blob_store(self.settings, s3_client=s3_client)
        self.object_store: Optional[BlobStore] = None
        if self.store.backend_name == "s3":
            self.object_store = self.store
        elif self.settings.s3_configured:
            self.object_store = build_object_store(self.settings, client=s3_client)

        self.tagger = tagger or FfmpegChapterTagger()
        self.prober = prober or FfprobeChapterProber()
        duration_prober = self.prober if probe_durations else None

        self.state = MigrationStateTracker(self.root)
        self.documents_migrator = DocumentsV1Migrator(self.root, self.state)
        self.audiobooks_migrator = AudiobooksV1Migrator(
            self.root, self.state, tagger=self.tagger, prober=self.prober
        )
        self.object_storage_migrator = ObjectStorageMigrator(
            self.root,
            layout=self.layout,
            repository=self.repository,
            object_store=self.object_store,
        )
        self.pruner = ConsistencyPruner(self.store, self.layout, self.repository)
        self.claim_engine = OwnershipClaimEngine(self.store, self.layout, self.repository)
        self.indexer = DbIndexer(self.root, self.layout, self.repository, prober=duration_prober)
        self.audiobooks = AudiobookService(
            self.store,
            self.layout,
            self.repository,
            migrator=self.audiobooks_migrator,
            pruner=self.pruner,
            indexer=self.indexer,
            prober=duration_prober,
        )

    def is_layout_ready(self) -> bool:
        return self.documents_migrator.is_ready() and self.audiobooks_migrator.is_ready()

    def ensure_layout_ready(self, cancel: Optional[threading.Event] = None) -> None:
        """Run pending layout phases and raise if either is still incomplete."""

        self.documents_migrator.ensure_ready(cancel)
        self.audiobooks_migrator.ensure_ready(cancel)
        if not self.is_layout_ready():
            raise StorageNotReadyError("Storage layout migration did not complete")

    def prepare_layout(self, cancel: Optional[threading.Event] = None) -> bool:
        """Run pending layout phases without requiring them to finish.

        Returns whether the layout is complete. Artifacts the phases leave in
        place do not block work that only reads the versioned directories.
        """

        self.documents_migrator.ensure_ready(cancel)
        self.audiobooks_migrator.ensure_ready(cancel)
        ready = self.is_layout_ready()
        if not ready:
            logger.warning(
                "Layout migration incomplete; continuing with the migrated artifacts",
                extra={"event": "context.layout.incomplete"},
            )
        return ready

    def run_layout_migrations(
        self,
        mappings: Optional[Mapping[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> LayoutMigrationReport:
        """Run both v1 phases, then apply any audiobook id re-keying."""

        with log_mgr.log_context(phase="layout"):
            documents_migrated = self.documents_migrator.ensure_ready(cancel)
            audiobooks_migrated = self.audiobooks_migrator.ensure_ready(cancel)
            rekey = RekeySummary()
            if mappings:
                result = self.audiobooks_migrator.rekey(mappings)
                rekey = RekeySummary(renamed=result.renamed, merged=result.merged, skipped=result.skipped)
        return LayoutMigrationReport(
            documents_ready=self.documents_migrator.is_ready(),
            audiobooks_ready=self.audiobooks_migrator.is_ready(),
            documents_migrated=documents_migrated,
            audiobooks_migrated=audiobooks_migrated,
            rekey=rekey,
        )

    def require_object_store(self) -> BlobStore:
        if self.object_store is None:
            raise ObjectStorageNotConfiguredError()
        return self.object_store

    def close(self) -> None:
        self.database.dispose()


__all__ = ["DocstoreContext"]
