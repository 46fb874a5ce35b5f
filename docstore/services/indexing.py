"""Index on-disk documents and audiobooks as unclaimed metadata rows."""

from __future__ import annotations

import json
import re
import threading
import time
from pathlib import Path
from typing import Dict, Optional

from .. import logging_manager as log_mgr
from ..chapters.codec import decode_title
from ..chapters.listing import list_stored_chapters
from ..database.repository import AudiobookRecord, ChapterRecord, DocumentRecord, MetadataRepository
from ..fsutils.moves import atomic_move, atomic_write_bytes
from ..media.exceptions import MediaBackendError
from ..media.probe import ChapterProber
from ..migrations.state import MIGRATIONS_DIR
from ..schemas import UnclaimedCounts
from ..storage.layout import (
    AUDIOBOOK_DIR_SUFFIX,
    AUDIOBOOKS_DIR,
    DOCUMENTS_DIR,
    StorageLayout,
    book_id_from_dir_name,
    unclaimed_user_id,
)

logger = log_mgr.get_logger().getChild("services.indexing")

INDEX_STATE_FILE = "db-index.json"
_DOCUMENT_FILE_RE = re.compile(r"^([a-f0-9]{64})__(.+)$", re.IGNORECASE)
DEFAULT_BOOK_TITLE = "Unknown Title"


class DbIndexer:
    """Populate rows for files that exist on disk but not in the database.

    Runs at most once per process per auth mode; a state file under
    ``.migrations`` avoids rescanning on every start unless the database
    lost the rows for content still on disk.
    """

    def __init__(
        self,
        root: Path | str,
        layout: StorageLayout,
        repository: MetadataRepository,
        *,
        prober: Optional[ChapterProber] = None,
    ) -> None:
        self.root = Path(root)
        self.layout = layout
        self.repository = repository
        self.prober = prober
        self.state_path = self.root / MIGRATIONS_DIR / INDEX_STATE_FILE
        self._lock = threading.Lock()
        self._indexed_mode: Optional[str] = None

    @property
    def mode(self) -> str:
        return "auth" if self.layout.auth_enabled else "noauth"

    @property
    def documents_dir(self) -> Path:
        return self.root / DOCUMENTS_DIR

    @property
    def audiobook_scan_dir(self) -> Path:
        return self.root / self.layout.audiobooks_prefix(unclaimed_user_id())

    def _read_state(self) -> Optional[Dict[str, object]]:
        try:
            payload = json.loads(self.state_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return payload if isinstance(payload, dict) else None

    def _write_state(self) -> None:
        state = {"indexedAt": int(time.time() * 1000), "mode": self.mode}
        atomic_write_bytes(self.state_path, json.dumps(state, indent=2).encode("utf-8"))

    def _filesystem_has_content(self) -> Dict[str, bool]:
        documents = self.documents_dir.is_dir() and any(
            _DOCUMENT_FILE_RE.match(path.name) for path in self.documents_dir.iterdir() if path.is_file()
        )
        scan_dir = self.audiobook_scan_dir
        audiobooks = scan_dir.is_dir() and any(
            path.is_dir() and path.name.endswith(AUDIOBOOK_DIR_SUFFIX) for path in scan_dir.iterdir()
        )
        return {"documents": bool(documents), "audiobooks": bool(audiobooks)}

    def ensure_indexed(self) -> None:
        mode = self.mode
        if self._indexed_mode == mode:
            return
        with self._lock:
            if self._indexed_mode == mode:
                return
            state = self._read_state()
            if state is not None and state.get("mode") == mode:
                counts = self.unclaimed_counts()
                on_disk = self._filesystem_has_content()
                documents_ok = counts.documents > 0 or not on_disk["documents"]
                audiobooks_ok = counts.audiobooks > 0 or not on_disk["audiobooks"]
                if documents_ok and audiobooks_ok:
                    self._indexed_mode = mode
                    return
            self.root.mkdir(parents=True, exist_ok=True)
            self.scan_and_populate()
            self._write_state()
            self._indexed_mode = mode

    def unclaimed_counts(self) -> UnclaimedCounts:
        documents, audiobooks = self.repository.count_owned(unclaimed_user_id())
        return UnclaimedCounts(documents=documents, audiobooks=audiobooks)

    def scan_and_populate(self) -> UnclaimedCounts:
        """Insert unclaimed rows for un-indexed files and return the unclaimed counts."""

        with log_mgr.log_context(phase="db_index"):
            logger.info("Scanning storage for un-indexed content", extra={"event": "services.indexing.scan"})
            if self.layout.auth_enabled:
                self._move_flat_audiobooks_to_unclaimed()
            self._index_documents()
            self._index_audiobooks()
        return self.unclaimed_counts()

    def _move_flat_audiobooks_to_unclaimed(self) -> int:
        flat_dir = self.root / AUDIOBOOKS_DIR
        if not flat_dir.is_dir():
            return 0
        target_root = self.audiobook_scan_dir
        target_root.mkdir(parents=True, exist_ok=True)
        moved = 0
        for source in sorted(flat_dir.iterdir()):
            if not source.is_dir() or not source.name.endswith(AUDIOBOOK_DIR_SUFFIX):
                continue
            target = target_root / source.name
            if target.exists():
                continue
            try:
                atomic_move(source, target)
                moved += 1
            except OSError as exc:
                logger.error(
                    "Failed to move %s to the unclaimed owner: %s",
                    source.name,
                    exc,
                    exc_info=True,
                    extra={"event": "services.indexing.move_failed"},
                )
        return moved

    def _index_documents(self) -> int:
        if not self.documents_dir.is_dir():
            return 0
        owner = unclaimed_user_id()
        indexed = 0
        for path in sorted(self.documents_dir.iterdir()):
            match = _DOCUMENT_FILE_RE.match(path.name)
            if not match or not path.is_file():
                continue
            document_id = match.group(1).lower()
            if self.repository.document_id_exists(document_id):
                continue
            name = decode_title(match.group(2))
            if name is None:
                continue
            stats = path.stat()
            indexed += self.repository.insert_documents(
                [
                    DocumentRecord(
                        id=document_id,
                        user_id=owner,
                        name=name,
                        type=Path(name).suffix.lower().lstrip(".") or "html",
                        size=stats.st_size,
                        last_modified=int(stats.st_mtime * 1000),
                        file_path=path.name,
                    )
                ]
            )
            logger.info(
                "Indexed document %s",
                name,
                extra={"event": "services.indexing.document", "key": document_id},
            )
        return indexed

    def _index_audiobooks(self) -> int:
        scan_dir = self.audiobook_scan_dir
        if not scan_dir.is_dir():
            return 0
        owner = unclaimed_user_id()
        indexed = 0
        for book_dir in sorted(scan_dir.iterdir()):
            book_id = book_id_from_dir_name(book_dir.name) if book_dir.is_dir() else None
            if book_id is None or self.repository.get_audiobook(book_id, owner) is not None:
                continue
            chapters = list_stored_chapters(p.name for p in book_dir.iterdir() if p.is_file())
            durations = {chapter.index: self._probe_duration(book_dir / chapter.file_name) for chapter in chapters}
            title = chapters[0].title if chapters and chapters[0].title else DEFAULT_BOOK_TITLE
            self.repository.upsert_audiobook(
                AudiobookRecord(
                    id=book_id,
                    user_id=owner,
                    title=title,
                    duration=sum(d or 0.0 for d in durations.values()),
                )
            )
            for chapter in chapters:
                self.repository.upsert_chapter(
                    ChapterRecord(
                        book_id=book_id,
                        user_id=owner,
                        chapter_index=chapter.index,
                        title=chapter.title,
                        file_path=chapter.file_name,
                        format=chapter.format,
                        duration=durations.get(chapter.index) or 0.0,
                    )
                )
            indexed += 1
            logger.info(
                "Indexed audiobook",
                extra={"event": "services.indexing.audiobook", "book_id": book_id},
            )
        return indexed

    def _probe_duration(self, path: Path) -> Optional[float]:
        if self.prober is None:
            return None
        try:
            return self.prober.probe(path).duration_sec
        except MediaBackendError as exc:
            logger.warning(
                "Could not probe %s: %s",
                path.name,
                exc,
                extra={"event": "services.indexing.probe_failed"},
            )
            return None


__all__ = ["DbIndexer", "INDEX_STATE_FILE"]
