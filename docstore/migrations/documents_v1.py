"""Move legacy ``{root}/{id}.json`` + ``{root}/{id}.{type}`` documents into ``documents_v1``."""

from __future__ import annotations

import hashlib
import json
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

from .. import logging_manager as log_mgr
from ..fsutils.moves import atomic_write_bytes
from ..storage.errors import OperationCancelled
from ..storage.layout import DOCUMENTS_DIR, MAX_DOCUMENT_FILE_NAME, is_safe_id, migrated_document_file_name
from .state import DOCUMENTS_V1_FLAG, MigrationPhaseStatus, MigrationStateTracker

logger = log_mgr.get_logger().getChild("migrations.documents_v1")


@dataclass(frozen=True, slots=True)
class LegacyDocument:
    metadata_path: Path
    content_path: Path
    name: str
    type: str
    last_modified: float


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_legacy_metadata(payload: Any) -> Optional[Mapping[str, Any]]:
    """Return ``payload`` when it has the legacy document shape, else ``None``."""

    if not isinstance(payload, Mapping):
        return None
    if not isinstance(payload.get("id"), str) or not isinstance(payload.get("name"), str):
        return None
    if not isinstance(payload.get("type"), str):
        return None
    if not _is_number(payload.get("size")) or not _is_number(payload.get("lastModified")):
        return None
    return payload


def safe_document_name(raw_name: str, fallback: str) -> str:
    base_name = os.path.basename(raw_name or fallback)
    return base_name.replace("\x00", "")[:MAX_DOCUMENT_FILE_NAME] or fallback


class DocumentsV1Migrator:
    """Normalise legacy document pairs into content-addressed files."""

    def __init__(self, root: Path | str, state: MigrationStateTracker) -> None:
        self.root = Path(root)
        self.documents_dir = self.root / DOCUMENTS_DIR
        self.state = state

    def iter_legacy(self, *, log_malformed: bool = False) -> Iterator[LegacyDocument]:
        if not self.root.is_dir():
            return
        for metadata_path in sorted(self.root.glob("*.json")):
            if not metadata_path.is_file():
                continue
            try:
                payload = json.loads(metadata_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                if log_malformed:
                    logger.warning(
                        "Leaving unreadable document metadata in place: %s (%s)",
                        metadata_path.name,
                        exc,
                        extra={"event": "migrations.documents_v1.malformed", "phase": "documents_v1"},
                    )
                continue
            metadata = parse_legacy_metadata(payload)
            if metadata is None:
                continue
            content_name = f"{metadata['id']}.{metadata['type']}"
            if not is_safe_id(content_name):
                continue
            content_path = self.root / content_name
            if not content_path.is_file():
                continue
            yield LegacyDocument(
                metadata_path=metadata_path,
                content_path=content_path,
                name=metadata["name"],
                type=metadata["type"],
                last_modified=float(metadata["lastModified"]),
            )

    def has_legacy(self) -> bool:
        return next(self.iter_legacy(), None) is not None

    def is_ready(self) -> bool:
        if not self.root.is_dir() or not self.documents_dir.is_dir():
            return False
        return self.state.is_set(DOCUMENTS_V1_FLAG) and not self.has_legacy()

    def status(self) -> MigrationPhaseStatus:
        return self.state.status(DOCUMENTS_V1_FLAG, legacy_present=self.has_legacy())

    def ensure_ready(self, cancel: Optional[threading.Event] = None) -> bool:
        """Migrate any legacy pairs; return ``True`` when migration work ran."""

        self.documents_dir.mkdir(parents=True, exist_ok=True)
        legacy_present = self.has_legacy()
        if not legacy_present:
            if not self.state.is_set(DOCUMENTS_V1_FLAG) or self.state.has_unknown_keys():
                self.state.save(**{DOCUMENTS_V1_FLAG: True})
            return False

        with log_mgr.log_context(phase="documents_v1"):
            logger.info("Migrating legacy documents", extra={"event": "migrations.documents_v1.start"})
            migrated = 0
            for legacy in list(self.iter_legacy(log_malformed=True)):
                if cancel is not None and cancel.is_set():
                    raise OperationCancelled("Documents migration cancelled")
                try:
                    self._migrate_one(legacy)
                    migrated += 1
                except OSError as exc:
                    logger.error(
                        "Failed to migrate %s: %s",
                        legacy.content_path.name,
                        exc,
                        exc_info=True,
                        extra={"event": "migrations.documents_v1.failed"},
                    )
            remaining = self.has_legacy()
            self.state.save(**{DOCUMENTS_V1_FLAG: not remaining})
            logger.info(
                "Documents migration finished: %s migrated, legacy remaining=%s",
                migrated,
                remaining,
                extra={"event": "migrations.documents_v1.done"},
            )
        return True

    def _migrate_one(self, legacy: LegacyDocument) -> None:
        content = legacy.content_path.read_bytes()
        document_id = hashlib.sha256(content).hexdigest()
        name = safe_document_name(legacy.name, f"{document_id}.{legacy.type}")
        target = self.documents_dir / migrated_document_file_name(document_id, name)
        if not target.exists():
            atomic_write_bytes(target, content)
            if legacy.last_modified > 0:
                stamp = legacy.last_modified / 1000.0
                try:
                    os.utime(target, (stamp, stamp))
                except (OSError, OverflowError, ValueError) as exc:
                    logger.warning(
                        "Could not set mtime on %s: %s",
                        target.name,
                        exc,
                        extra={"event": "migrations.documents_v1.mtime_failed"},
                    )
        legacy.metadata_path.unlink(missing_ok=True)
        legacy.content_path.unlink(missing_ok=True)


__all__ = ["DocumentsV1Migrator", "LegacyDocument", "parse_legacy_metadata", "safe_document_name"]
