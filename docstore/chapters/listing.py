"""Discover stored chapters from file names or object keys."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .codec import decode_chapter_file_name


@dataclass(frozen=True, slots=True)
class StoredChapter:
    index: int
    title: str
    format: str
    file_name: str
    key: str


def list_stored_chapters(keys: Iterable[str]) -> List[StoredChapter]:
    """Return one chapter per index, ordered by index.

    Names that do not decode are ignored. When several files share an index
    the lexicographically first key wins.
    """

    by_index: Dict[int, StoredChapter] = {}
    for key in sorted(keys):
        file_name = key.rsplit("/", 1)[-1]
        decoded = decode_chapter_file_name(file_name)
        if decoded is None or decoded.index in by_index:
            continue
        by_index[decoded.index] = StoredChapter(
            index=decoded.index,
            title=decoded.title,
            format=decoded.format,
            file_name=file_name,
            key=key,
        )
    return [by_index[index] for index in sorted(by_index)]


def find_stored_chapter_by_index(keys: Iterable[str], index: int) -> Optional[StoredChapter]:
    for chapter in list_stored_chapters(keys):
        if chapter.index == index:
            return chapter
    return None


__all__ = ["StoredChapter", "find_stored_chapter_by_index", "list_stored_chapters"]
