"""Content-identified chapter file names and title tags.

A chapter file is named ``NNNN__<title>.<fmt>`` where ``NNNN`` is the
one-based, zero-padded chapter index and ``<title>`` is the percent-encoded
chapter title. Sorting names lexicographically therefore sorts chapters by
index, and both the index and the title can be recovered from the name alone.
The same encoding is written into the audio container's title tag so a file
that lost its name can still be identified by probing it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, unquote

CHAPTER_FORMATS = ("mp3", "m4b")
MAX_ENCODED_TITLE_LENGTH = 200
MAX_CHAPTER_INDEX = 9998
_URI_SAFE = "!~*'()"

_FILE_NAME_RE = re.compile(r"^(\d{4})__(.*)\.(mp3|m4b)$", re.DOTALL)
_TITLE_TAG_RE = re.compile(r"^chapter:(\d+):(.*)$", re.DOTALL)
_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")


@dataclass(frozen=True, slots=True)
class DecodedChapterName:
    index: int
    title: str
    format: str


@dataclass(frozen=True, slots=True)
class DecodedTitleTag:
    index: int
    title: str


def encode_title(title: str, *, max_length: Optional[int] = None) -> str:
    """Percent-encode ``title`` like ``encodeURIComponent``.

    With ``max_length`` the result is cut on a character boundary so that no
    escape sequence is ever split.
    """

    if max_length is None:
        return quote(title, safe=_URI_SAFE)
    pieces = []
    length = 0
    for char in title:
        piece = quote(char, safe=_URI_SAFE)
        if length + len(piece) > max_length:
            break
        pieces.append(piece)
        length += len(piece)
    return "".join(pieces)


def decode_title(encoded: str) -> Optional[str]:
    """Return the decoded title or ``None`` for malformed escapes."""

    if _BAD_ESCAPE_RE.search(encoded):
        return None
    try:
        return unquote(encoded, errors="strict")
    except UnicodeDecodeError:
        return None


def _validate_index(index: int) -> None:
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        raise ValueError(f"Chapter index must be a non-negative integer, got {index!r}")
    if index > MAX_CHAPTER_INDEX:
        raise ValueError(f"Chapter index {index} exceeds the four digit name prefix")


def is_encodable_index(index: object) -> bool:
    """Return whether ``index`` fits the four digit ``NNNN__`` name prefix."""

    return isinstance(index, int) and not isinstance(index, bool) and 0 <= index <= MAX_CHAPTER_INDEX


def chapter_file_prefix(index: int) -> str:
    """Return the ``NNNN__`` prefix shared by every file of chapter ``index``."""

    _validate_index(index)
    return f"{index + 1:04d}__"


def encode_chapter_file_name(index: int, title: str, format: str) -> str:
    """Build the stored file name for one chapter.

    The encoded title is cut to ``MAX_ENCODED_TITLE_LENGTH`` characters, so
    only titles whose encoding fits decode back unchanged; longer titles
    decode to their prefix. Raises ``ValueError`` for indices above
    ``MAX_CHAPTER_INDEX`` and unknown formats.
    """

    if format not in CHAPTER_FORMATS:
        raise ValueError(f"Unsupported chapter format: {format!r}")
    encoded = encode_title(title, max_length=MAX_ENCODED_TITLE_LENGTH)
    return f"{chapter_file_prefix(index)}{encoded}.{format}"


def decode_chapter_file_name(name: str) -> Optional[DecodedChapterName]:
    """Parse a chapter file name, path or object key; ``None`` when it does not match."""

    if not isinstance(name, str):
        return None
    base = name.replace("\\", "/").rsplit("/", 1)[-1]
    match = _FILE_NAME_RE.match(base)
    if not match:
        return None
    one_based = int(match.group(1))
    if one_based < 1:
        return None
    title = decode_title(match.group(2))
    if title is None:
        return None
    return DecodedChapterName(index=one_based - 1, title=title, format=match.group(3))


def encode_chapter_title_tag(index: int, title: str) -> str:
    _validate_index(index)
    return f"chapter:{index}:{encode_title(title)}"


def decode_chapter_title_tag(tag: Optional[str]) -> Optional[DecodedTitleTag]:
    if not isinstance(tag, str):
        return None
    match = _TITLE_TAG_RE.match(tag.strip())
    if not match:
        return None
    title = decode_title(match.group(2))
    if title is None:
        return None
    return DecodedTitleTag(index=int(match.group(1)), title=title)


__all__ = [
    "CHAPTER_FORMATS",
    "MAX_CHAPTER_INDEX",
    "MAX_ENCODED_TITLE_LENGTH",
    "DecodedChapterName",
    "DecodedTitleTag",
    "chapter_file_prefix",
    "decode_chapter_file_name",
    "decode_chapter_title_tag",
    "encode_chapter_file_name",
    "encode_chapter_title_tag",
    "encode_title",
    "decode_title",
    "is_encodable_index",
]
