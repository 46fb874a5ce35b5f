"""Cross-filesystem aware moves, non-overwriting merges and atomic writes."""

from __future__ import annotations

import hashlib
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Tuple
from uuid import uuid4

from .. import logging_manager as log_mgr

logger = log_mgr.get_logger().getChild("fsutils")


class AtomicMoveError(RuntimeError):
    """Raised when a move operation cannot be completed safely."""


class ChecksumMismatchError(AtomicMoveError):
    """Raised when source and destination checksums do not match."""


@dataclass(slots=True)
class MoveResult:
    """Number of files moved and left behind by a move or merge."""

    moved: int = 0
    skipped: int = 0

    def __add__(self, other: "MoveResult") -> "MoveResult":
        return MoveResult(moved=self.moved + other.moved, skipped=self.skipped + other.skipped)


def _iter_files(root: Path) -> Iterable[Tuple[Path, Path]]:
    if root.is_file():
        yield Path("."), root
        return
    for path in sorted(root.rglob("*")):
        if path.is_file():
            yield path.relative_to(root), path


def _compute_checksum(path: Path, algorithm: str) -> str:
    hasher = hashlib.new(algorithm)
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def _verify_copy(src: Path, dst: Path, algorithm: str) -> None:
    src_index = {rel.as_posix(): path for rel, path in _iter_files(src)}
    dst_index = {rel.as_posix(): path for rel, path in _iter_files(dst)}
    if set(src_index) != set(dst_index):
        missing = sorted(set(src_index) - set(dst_index))[:5]
        raise ChecksumMismatchError(f"Destination is missing files after copy: {missing}")
    for key in sorted(src_index):
        if _compute_checksum(src_index[key], algorithm) != _compute_checksum(dst_index[key], algorithm):
            raise ChecksumMismatchError(f"Checksum mismatch for {key}")


def _same_filesystem(src: Path, dst_parent: Path) -> bool:
    try:
        return os.stat(src).st_dev == os.stat(dst_parent).st_dev
    except FileNotFoundError as exc:  # pragma: no cover - raced with a delete
        raise AtomicMoveError(f"Cannot stat path during move: {exc}") from exc


def atomic_move(source: Path | str, destination: Path | str, *, checksum: str = "sha256") -> None:
    """Move ``source`` to ``destination`` safely, even across filesystems.

    The destination must not exist. On the same filesystem this is a rename;
    otherwise the tree is copied next to the destination, verified and then
    swapped in before the source is removed.
    """

    src_path = Path(source)
    dst_path = Path(destination)

    if not src_path.exists():
        raise FileNotFoundError(f"Source path {src_path} does not exist")

    dst_parent = dst_path.parent
    dst_parent.mkdir(parents=True, exist_ok=True)

    if dst_path.exists():
        raise AtomicMoveError(f"Destination path {dst_path} already exists")

    if _same_filesystem(src_path, dst_parent):
        src_path.replace(dst_path)
        return

    temp_path = dst_parent / f"{dst_path.name}.tmp-{uuid4().hex}"
    try:
        if src_path.is_dir():
            shutil.copytree(src_path, temp_path)
        else:
            shutil.copy2(src_path, temp_path)
        _verify_copy(src_path, temp_path, checksum)
        temp_path.replace(dst_path)
        if src_path.is_dir():
            shutil.rmtree(src_path)
        else:
            src_path.unlink()
    except Exception:
        if temp_path.is_dir():
            shutil.rmtree(temp_path, ignore_errors=True)
        elif temp_path.exists():
            temp_path.unlink(missing_ok=True)
        raise


def merge_directories(source: Path | str, destination: Path | str) -> MoveResult:
    """Move ``source`` into ``destination`` without overwriting anything.

    When ``destination`` does not exist the whole tree is moved at once.
    Otherwise each file is moved only if its destination path is free; files
    that collide stay in ``source`` and are counted as skipped. Source
    directories left empty are removed.
    """

    src_path = Path(source)
    dst_path = Path(destination)
    if not src_path.exists():
        return MoveResult()
    if not dst_path.exists():
        moved = sum(1 for _ in _iter_files(src_path))
        atomic_move(src_path, dst_path)
        return MoveResult(moved=moved)

    result = MoveResult()
    for rel_path, file_path in list(_iter_files(src_path)):
        target = dst_path / rel_path
        if target.exists():
            logger.info(
                "Skipping merge of %s; destination already exists",
                file_path,
                extra={"event": "fsutils.merge.skip", "key": target.as_posix()},
            )
            result.skipped += 1
            continue
        atomic_move(file_path, target)
        result.moved += 1
    remove_empty_dirs(src_path)
    return result


def remove_empty_dirs(root: Path | str) -> None:
    """Remove ``root`` and its sub-directories bottom-up when they are empty."""

    root_path = Path(root)
    if not root_path.is_dir():
        return
    for path in sorted(root_path.rglob("*"), key=lambda p: len(p.parts), reverse=True):
        if path.is_dir() and not any(path.iterdir()):
            path.rmdir()
    if not any(root_path.iterdir()):
        root_path.rmdir()


def atomic_write_bytes(path: Path | str, data: bytes) -> None:
    """Write ``data`` to ``path`` through a sibling temp file and an atomic replace."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = target.parent / f".{target.name}.tmp-{uuid4().hex}"
    try:
        with temp_path.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        temp_path.replace(target)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise


__all__ = [
    "AtomicMoveError",
    "ChecksumMismatchError",
    "MoveResult",
    "atomic_move",
    "atomic_write_bytes",
    "merge_directories",
    "remove_empty_dirs",
]
