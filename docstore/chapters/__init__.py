"""Chapter naming and discovery."""

from .codec import (
    CHAPTER_FORMATS,
    MAX_CHAPTER_INDEX,
    DecodedChapterName,
    DecodedTitleTag,
    chapter_file_prefix,
    decode_chapter_file_name,
    decode_chapter_title_tag,
    encode_chapter_file_name,
    encode_chapter_title_tag,
    is_encodable_index,
)
from .listing import StoredChapter, find_stored_chapter_by_index, list_stored_chapters

__all__ = [
    "CHAPTER_FORMATS",
    "MAX_CHAPTER_INDEX",
    "DecodedChapterName",
    "DecodedTitleTag",
    "StoredChapter",
    "chapter_file_prefix",
    "decode_chapter_file_name",
    "decode_chapter_title_tag",
    "encode_chapter_file_name",
    "encode_chapter_title_tag",
    "find_stored_chapter_by_index",
    "is_encodable_index",
    "list_stored_chapters",
]
