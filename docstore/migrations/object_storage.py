"""Copy the local document (and optionally audiobook) tree into object storage."""

from __future__ import annotations

import hashlib
import mimetypes
import re
import threading
import time
from pathlib import Path
from typing import List, Optional

from .. import logging_manager as log_mgr
from ..chapters.codec import decode_title
from ..database.repository import DocumentRecord, MetadataRepository
from ..schemas import ObjectStorageMigrationReport
from ..storage.base import BlobStore
from ..storage.errors import OperationCancelled, StorageError
from ..storage.factory import ObjectStorageNotConfiguredError
from ..storage.layout import AUDIOBOOKS_DIR, StorageLayout, is_document_id, unclaimed_user_id

logger = log_mgr.get_logger().getChild("migrations.object_storage")

_PREFIXED_ID_RE = re.compile(r"^([a-f0-9]{64})__", re.IGNORECASE)
_ZIP_PROBE_LIMIT = 1024 * 1024

DOCUMENT_CONTENT_TYPES = {
    "pdf": "application/pdf",
    "epub": "application/epub+zip",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
_EXTENSION_TYPES = {".pdf": "pdf", ".epub": "epub", ".docx": "docx"}
_AUDIO_CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".m4b": "audio/mp4",
    ".json": "application/json",
}


def extract_id_from_file_name(file_name: str) -> Optional[str]:
    match = _PREFIXED_ID_RE.match(file_name)
    if not match:
        return None
    candidate = match.group(1).lower()
    return candidate if is_document_id(candidate) else None


def decode_name_from_file_name(file_name: str, document_id: str) -> str:
    prefix = f"{document_id}__"
    if not file_name.lower().startswith(prefix):
        return f"{document_id}.bin"
    decoded = decode_title(file_name[len(prefix) :])
    return decoded if decoded is not None else f"{document_id}.bin"


def document_type_from_name(name: str) -> str:
    return _EXTENSION_TYPES.get(Path(name).suffix.lower(), "html")


def sniff_document_type(data: bytes) -> Optional[str]:
    """Recognise PDF, EPUB and DOCX payloads by their leading bytes."""

    if data[:5] == b"%PDF-":
        return "pdf"
    is_zip = (
        len(data) >= 4
        and data[0] == 0x50
        and data[1] == 0x4B
        and data[2] in (0x03, 0x05, 0x07)
        and data[3] in (0x04, 0x06, 0x08)
    )
    if not is_zip:
        return None
    probe = data[:_ZIP_PROBE_LIMIT].decode("latin-1")
    if "application/epub+zip" in probe or "META-INF/container.xml" in probe:
        return "epub"
    if "[Content_Types].xml" in probe and "word/" in probe:
        return "docx"
    return None


def normalize_name_for_type(name: str, document_id: str, doc_type: str) -> str:
    if doc_type == "html":
        return name
    expected = f".{doc_type}"
    if name.lower().endswith(expected):
        return name
    base = re.sub(r"\.bin$", "", name, flags=re.IGNORECASE)
    return f"{base or document_id}{expected}"


def content_type_for_document(doc_type: str, name: str) -> str:
    if doc_type in DOCUMENT_CONTENT_TYPES:
        return DOCUMENT_CONTENT_TYPES[doc_type]
    guessed, _ = mimetypes.guess_type(name)
    return guessed or "application/octet-stream"


def _is_temp_file(path: Path) -> bool:
    return path.name.startswith(".") and ".tmp-" in path.name


class ObjectStorageMigrator:
    """Upload local files with write-once semantics and repoint document rows.

    Nothing local is deleted unless ``delete_local`` is requested, and even
    then only after the store has acknowledged the object.
    """

    def __init__(
        self,
        root: Path | str,
        *,
        layout: StorageLayout,
        repository: MetadataRepository,
        object_store: Optional[BlobStore],
    ) -> None:
        self.root = Path(root)
        self.layout = layout
        self.repository = repository
        self.object_store = object_store

    def _require_store(self) -> BlobStore:
        if self.object_store is None or getattr(self.object_store, "backend_name", "") != "s3":
            raise ObjectStorageNotConfiguredError()
        return self.object_store

    def run(
        self,
        *,
        dry_run: bool = False,
        delete_local: bool = False,
        include_audiobooks: bool = False,
        namespace: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ObjectStorageMigrationReport:
        store = self._require_store()
        docs_dir = self.root / self.layout.documents_prefix(namespace)
        report = ObjectStorageMigrationReport(
            dry_run=dry_run, delete_local=delete_local, docs_dir=str(docs_dir)
        )
        owner = unclaimed_user_id(namespace)

        with log_mgr.log_context(phase="object_storage", namespace=namespace):
            candidates: List[DocumentRecord] = []
            if docs_dir.is_dir():
                files = sorted(p for p in docs_dir.iterdir() if p.is_file() and not _is_temp_file(p))
                report.files_scanned = len(files)
                for path in files:
                    if cancel is not None and cancel.is_set():
                        raise OperationCancelled("Object storage migration cancelled")
                    try:
                        record = self._migrate_document(
                            store, path, owner, namespace, report, dry_run=dry_run, delete_local=delete_local
                        )
                    except (OSError, StorageError) as exc:
                        report.failed += 1
                        logger.error(
                            "Failed to migrate %s: %s",
                            path.name,
                            exc,
                            exc_info=True,
                            extra={"event": "migrations.object_storage.failed", "key": path.name},
                        )
                        continue
                    if record is not None:
                        candidates.append(record)

            report.db_rows_updated = self._rewrite_document_paths(dry_run)
            report.db_rows_seeded = self._seed_missing_rows(owner, candidates, dry_run)

            if include_audiobooks:
                report.audiobook_files_uploaded = self._upload_audiobooks(
                    store, report, dry_run=dry_run, cancel=cancel
                )

            logger.info(
                "Object storage migration finished",
                extra={"event": "migrations.object_storage.done", **report.model_dump(by_alias=False)},
            )
        return report

    def _migrate_document(
        self,
        store: BlobStore,
        path: Path,
        owner: str,
        namespace: Optional[str],
        report: ObjectStorageMigrationReport,
        *,
        dry_run: bool,
        delete_local: bool,
    ) -> Optional[DocumentRecord]:
        data = path.read_bytes()
        stats = path.stat()
        document_id = extract_id_from_file_name(path.name) or hashlib.sha256(data).hexdigest()
        if not is_document_id(document_id):
            report.skipped_invalid += 1
            return None

        name = decode_name_from_file_name(path.name, document_id)
        doc_type = document_type_from_name(name)
        if doc_type == "html":
            doc_type = sniff_document_type(data) or doc_type
        name = normalize_name_for_type(name, document_id, doc_type)
        last_modified = int(stats.st_mtime * 1000) if stats.st_mtime > 0 else int(time.time() * 1000)
        record = DocumentRecord(
            id=document_id,
            user_id=owner,
            name=name,
            type=doc_type,
            size=len(data),
            last_modified=last_modified,
            file_path=document_id,
        )

        if dry_run:
            return record

        written = store.put_object(
            self.layout.object_document_key(document_id, namespace),
            data,
            content_type_for_document(doc_type, name),
        )
        if written:
            report.uploaded += 1
        else:
            report.already_present += 1

        if delete_local:
            path.unlink(missing_ok=True)
            report.deleted_local += 1
        return record

    def _rewrite_document_paths(self, dry_run: bool) -> int:
        stale = self.repository.stale_document_paths()
        if not dry_run:
            for document_id, user_id in stale:
                self.repository.set_document_file_path(document_id, user_id, document_id)
        return len(stale)

    def _seed_missing_rows(self, owner: str, candidates: List[DocumentRecord], dry_run: bool) -> int:
        if not candidates:
            return 0
        existing = self.repository.document_ids_for_user(owner)
        seen: set[str] = set()
        to_insert: List[DocumentRecord] = []
        for candidate in candidates:
            if candidate.id in seen or candidate.id in existing:
                continue
            seen.add(candidate.id)
            to_insert.append(candidate)
        if dry_run or not to_insert:
            return len(to_insert)
        self.repository.insert_documents(to_insert)
        return len(to_insert)

    def _upload_audiobooks(
        self,
        store: BlobStore,
        report: ObjectStorageMigrationReport,
        *,
        dry_run: bool,
        cancel: Optional[threading.Event],
    ) -> int:
        audiobooks_dir = self.root / AUDIOBOOKS_DIR
        if not audiobooks_dir.is_dir():
            return 0
        uploaded = 0
        for path in sorted(audiobooks_dir.rglob("*")):
            if not path.is_file() or _is_temp_file(path):
                continue
            if cancel is not None and cancel.is_set():
                raise OperationCancelled("Object storage migration cancelled")
            key = path.relative_to(self.root).as_posix()
            if dry_run:
                uploaded += 0 if store.object_exists(key) else 1
                continue
            try:
                if store.put_object(
                    key,
                    path.read_bytes(),
                    _AUDIO_CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream"),
                ):
                    uploaded += 1
            except (OSError, StorageError) as exc:
                report.failed += 1
                logger.error(
                    "Failed to upload %s: %s",
                    key,
                    exc,
                    exc_info=True,
                    extra={"event": "migrations.object_storage.audiobook_failed", "key": key},
                )
        return uploaded


__all__ = [
    "ObjectStorageMigrator",
    "content_type_for_document",
    "decode_name_from_file_name",
    "document_type_from_name",
    "extract_id_from_file_name",
    "normalize_name_for_type",
    "sniff_document_type",
]
