"""Normalise audiobook directories into the ``NNNN__title.fmt`` chapter layout.

Three legacy shapes are recognised:

* ``{root}/{book}-audiobook/`` directories that predate ``audiobooks_v1/``;
* per-chapter ``N.meta.json`` sidecars next to ``N-chapter.{fmt}`` audio;
* chapter audio renamed to ``{sha256}.{fmt}`` whose identity only survives in
  the container's title tag.

Every step is idempotent: files are only moved when their destination is
free, sidecars are deleted only after their audio has been moved, and the
phase flag is set only after a fresh scan finds nothing legacy-shaped.
"""

from __future__ import annotations

import json
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional

from .. import logging_manager as log_mgr
from ..chapters.codec import (
    decode_chapter_title_tag,
    encode_chapter_file_name,
    encode_chapter_title_tag,
    is_encodable_index,
)
from ..fsutils.moves import merge_directories
from ..media.exceptions import MediaBackendError
from ..media.probe import ChapterProber
from ..media.tagging import ChapterTagger, apply_title_tag
from ..storage.errors import OperationCancelled
from ..storage.layout import (
    AUDIOBOOK_DIR_SUFFIX,
    AUDIOBOOK_META_FILE,
    AUDIOBOOKS_DIR,
    audiobook_dir_name,
    require_safe_id,
)
from .state import AUDIOBOOKS_V1_FLAG, MigrationPhaseStatus, MigrationStateTracker

logger = log_mgr.get_logger().getChild("migrations.audiobooks_v1")

_LEGACY_CHAPTER_RE = re.compile(r"^([0-9]+)-chapter\.(mp3|m4b)$", re.IGNORECASE)
_SHA_CHAPTER_RE = re.compile(r"^[a-f0-9]{64}\.(mp3|m4b)$", re.IGNORECASE)
_INPUT_TEMP_RE = re.compile(r"^[0-9]+-input\.mp3$", re.IGNORECASE)
_STALE_FILES = (
    "complete.mp3",
    "complete.m4b",
    "complete.mp3.manifest.json",
    "complete.m4b.manifest.json",
    "metadata.txt",
    "list.txt",
)


@dataclass(slots=True)
class RekeyResult:
    renamed: int = 0
    merged: int = 0
    skipped: int = 0


def _is_legacy_meta(name: str) -> bool:
    return name.endswith(".meta.json") and name != AUDIOBOOK_META_FILE


def is_legacy_chapter_file(name: str) -> bool:
    return _is_legacy_meta(name) or bool(_LEGACY_CHAPTER_RE.match(name) or _SHA_CHAPTER_RE.match(name))


def _coerce_index(value: Any) -> Optional[int]:
    """Return a chapter index that fits a file name prefix, else ``None``."""

    index: Optional[int] = None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        index = value
    elif isinstance(value, float) and value.is_integer():
        index = int(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.isascii() and text.isdigit():
            index = int(text)
    return index if is_encodable_index(index) else None


def default_chapter_title(index: int) -> str:
    return f"Chapter {index + 1}"


class AudiobooksV1Migrator:
    """Bring every audiobook directory below ``root`` into the current layout."""

    def __init__(
        self,
        root: Path | str,
        state: MigrationStateTracker,
        *,
        tagger: ChapterTagger,
        prober: ChapterProber,
    ) -> None:
        self.root = Path(root)
        self.audiobooks_dir = self.root / AUDIOBOOKS_DIR
        self.state = state
        self.tagger = tagger
        self.prober = prober

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------
    def legacy_book_dirs(self) -> List[Path]:
        if not self.root.is_dir():
            return []
        return sorted(
            path
            for path in self.root.iterdir()
            if path.is_dir() and path.name.endswith(AUDIOBOOK_DIR_SUFFIX)
        )

    def iter_book_dirs(self) -> Iterator[Path]:
        if not self.audiobooks_dir.is_dir():
            return
        for path in sorted(self.audiobooks_dir.rglob(f"*{AUDIOBOOK_DIR_SUFFIX}")):
            if path.is_dir():
                yield path

    def book_dir_has_legacy(self, book_dir: Path) -> bool:
        return any(path.is_file() and is_legacy_chapter_file(path.name) for path in book_dir.iterdir())

    def has_legacy_chapters(self) -> bool:
        return any(self.book_dir_has_legacy(book_dir) for book_dir in self.iter_book_dirs())

    def has_legacy(self) -> bool:
        return bool(self.legacy_book_dirs()) or self.has_legacy_chapters()

    def is_ready(self) -> bool:
        if not self.root.is_dir() or not self.audiobooks_dir.is_dir():
            return False
        return self.state.is_set(AUDIOBOOKS_V1_FLAG) and not self.has_legacy()

    def status(self) -> MigrationPhaseStatus:
        return self.state.status(AUDIOBOOKS_V1_FLAG, legacy_present=self.has_legacy())

    # ------------------------------------------------------------------
    # Migration
    # ------------------------------------------------------------------
    def ensure_ready(self, cancel: Optional[threading.Event] = None) -> bool:
        """Migrate legacy audiobook layouts; return ``True`` when work ran."""

        self.audiobooks_dir.mkdir(parents=True, exist_ok=True)
        legacy_dirs = self.legacy_book_dirs()
        legacy_chapters = self.has_legacy_chapters()

        if not legacy_dirs and not legacy_chapters:
            if not self.state.is_set(AUDIOBOOKS_V1_FLAG) or self.state.has_unknown_keys():
                self.state.save(**{AUDIOBOOKS_V1_FLAG: True})
            return False

        with log_mgr.log_context(phase="audiobooks_v1"):
            logger.info(
                "Migrating audiobook layout (%s legacy directories)",
                len(legacy_dirs),
                extra={"event": "migrations.audiobooks_v1.start"},
            )
            for source in legacy_dirs:
                self._check_cancel(cancel)
                target = self.audiobooks_dir / source.name
                result = merge_directories(source, target)
                if source.exists():
                    logger.warning(
                        "Legacy audiobook directory not fully migrated (kept): %s (%s skipped)",
                        source.name,
                        result.skipped,
                        extra={"event": "migrations.audiobooks_v1.dir_kept"},
                    )

            for book_dir in list(self.iter_book_dirs()):
                self._check_cancel(cancel)
                if not self.book_dir_has_legacy(book_dir):
                    continue
                with log_mgr.log_context(book_id=book_dir.name[: -len(AUDIOBOOK_DIR_SUFFIX)]):
                    try:
                        self.normalize_book_dir(book_dir, cancel=cancel)
                    except OperationCancelled:
                        raise
                    except (OSError, ValueError, MediaBackendError) as exc:
                        logger.error(
                            "Failed to normalise %s: %s",
                            book_dir.name,
                            exc,
                            exc_info=True,
                            extra={"event": "migrations.audiobooks_v1.failed"},
                        )

            remaining = self.has_legacy()
            self.state.save(**{AUDIOBOOKS_V1_FLAG: not remaining})
            logger.info(
                "Audiobook migration finished; legacy remaining=%s",
                remaining,
                extra={"event": "migrations.audiobooks_v1.done"},
            )
        return True

    def normalize_book_dir(self, book_dir: Path, *, cancel: Optional[threading.Event] = None) -> None:
        """Rewrite one book directory into the canonical chapter naming.

        Each chapter is handled on its own: a file that cannot be migrated is
        logged and left in place, which keeps the phase flag unset.
        """

        for name in _STALE_FILES:
            (book_dir / name).unlink(missing_ok=True)

        migrated: set[int] = set()
        for meta_path in sorted(p for p in book_dir.iterdir() if p.is_file() and _is_legacy_meta(p.name)):
            self._check_cancel(cancel)
            try:
                meta = json.loads(meta_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning(
                    "Leaving unreadable chapter metadata in place: %s (%s)",
                    meta_path.name,
                    exc,
                    extra={"event": "migrations.audiobooks_v1.malformed"},
                )
                continue
            if not isinstance(meta, Mapping):
                continue
            index = _coerce_index(meta.get("index"))
            if index is None:
                logger.warning(
                    "Leaving chapter metadata with an unusable index in place: %s",
                    meta_path.name,
                    extra={"event": "migrations.audiobooks_v1.bad_index"},
                )
                continue
            fmt = "mp3" if meta.get("format") == "mp3" else "m4b"
            source = book_dir / f"{index}-chapter.{fmt}"
            if not source.is_file():
                meta_path.unlink(missing_ok=True)
                continue
            raw_title = meta.get("title")
            title = raw_title if isinstance(raw_title, str) else default_chapter_title(index)
            migrated.add(index)
            if self._migrate_chapter(book_dir, source, index, title, fmt, cancel=cancel):
                meta_path.unlink(missing_ok=True)

        for source in sorted(book_dir.iterdir()):
            match = _LEGACY_CHAPTER_RE.match(source.name)
            if not match or not source.is_file():
                continue
            index = _coerce_index(match.group(1))
            if index is None:
                logger.warning(
                    "Leaving %s in place; its index does not fit a chapter name",
                    source.name,
                    extra={"event": "migrations.audiobooks_v1.bad_index"},
                )
                continue
            if index in migrated:
                continue
            self._check_cancel(cancel)
            fmt = match.group(2).lower()
            self._migrate_chapter(book_dir, source, index, default_chapter_title(index), fmt, cancel=cancel)

        for source in sorted(book_dir.iterdir()):
            if not source.is_file() or not _SHA_CHAPTER_RE.match(source.name):
                continue
            self._check_cancel(cancel)
            self._rename_probed_chapter(source, cancel=cancel)

        for leftover in book_dir.iterdir():
            if leftover.is_file() and _INPUT_TEMP_RE.match(leftover.name):
                leftover.unlink(missing_ok=True)

    def _migrate_chapter(
        self,
        book_dir: Path,
        source: Path,
        index: int,
        title: str,
        fmt: str,
        *,
        cancel: Optional[threading.Event],
    ) -> bool:
        try:
            self._finalize_chapter(book_dir, source, index, title, fmt, cancel=cancel)
        except OperationCancelled:
            raise
        except (OSError, ValueError, MediaBackendError) as exc:
            logger.error(
                "Failed to migrate chapter %s: %s",
                source.name,
                exc,
                exc_info=True,
                extra={"event": "migrations.audiobooks_v1.chapter_failed"},
            )
            return False
        return True

    def _finalize_chapter(
        self,
        book_dir: Path,
        source: Path,
        index: int,
        title: str,
        fmt: str,
        *,
        cancel: Optional[threading.Event],
    ) -> Path:
        final_path = book_dir / encode_chapter_file_name(index, title, fmt)
        tagged = book_dir / f"{index}.tagged.tmp.{fmt}"
        tag = encode_chapter_title_tag(index, title)
        if apply_title_tag(self.tagger, source, tagged, fmt, tag, cancel=cancel):
            tagged.replace(final_path)
            source.unlink(missing_ok=True)
        else:
            logger.warning(
                "Moving chapter %s untagged; title tag could not be written",
                source.name,
                extra={"event": "migrations.audiobooks_v1.untagged", "key": final_path.name},
            )
            source.replace(final_path)
        return final_path

    def _rename_probed_chapter(self, source: Path, *, cancel: Optional[threading.Event]) -> None:
        fmt = "mp3" if source.name.lower().endswith(".mp3") else "m4b"
        try:
            probe = self.prober.probe(source, cancel=cancel)
        except MediaBackendError as exc:
            logger.warning(
                "Could not probe %s: %s",
                source.name,
                exc,
                extra={"event": "migrations.audiobooks_v1.probe_failed"},
            )
            return
        decoded = decode_chapter_title_tag(probe.title_tag)
        if decoded is None or not is_encodable_index(decoded.index):
            logger.info(
                "Leaving %s in place; no usable chapter title tag",
                source.name,
                extra={"event": "migrations.audiobooks_v1.untagged_hash"},
            )
            return
        source.replace(source.parent / encode_chapter_file_name(decoded.index, decoded.title, fmt))

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("Audiobook migration cancelled")

    # ------------------------------------------------------------------
    # Re-keying
    # ------------------------------------------------------------------
    def rekey(self, mappings: Mapping[str, str]) -> RekeyResult:
        """Rename ``{old}-audiobook`` directories to ``{new}-audiobook``.

        Used when document ids change; a destination that already exists is
        merged into without overwriting.
        """

        for old_id, new_id in mappings.items():
            require_safe_id(old_id, "book id")
            require_safe_id(new_id, "book id")

        result = RekeyResult()
        for old_id, new_id in mappings.items():
            if old_id == new_id:
                continue
            source = self.audiobooks_dir / audiobook_dir_name(old_id)
            if not source.is_dir():
                continue
            target = self.audiobooks_dir / audiobook_dir_name(new_id)
            if not target.exists():
                source.replace(target)
                result.renamed += 1
                continue
            moved = merge_directories(source, target)
            if moved.moved:
                result.merged += 1
            result.skipped += moved.skipped
        logger.info(
            "Re-keyed audiobooks: %s renamed, %s merged, %s skipped",
            result.renamed,
            result.merged,
            result.skipped,
            extra={"event": "migrations.audiobooks_v1.rekey"},
        )
        return result


__all__ = [
    "AudiobooksV1Migrator",
    "RekeyResult",
    "default_chapter_title",
    "is_legacy_chapter_file",
]
