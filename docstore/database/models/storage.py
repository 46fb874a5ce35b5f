"""Storage metadata models: documents, audiobooks and their chapters."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, CreatedAtMixin


class DocumentModel(CreatedAtMixin, Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_modified: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("idx_documents_user", "user_id"),)


class AudiobookModel(CreatedAtMixin, Base):
    __tablename__ = "audiobooks"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    author: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cover_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    __table_args__ = (Index("idx_audiobooks_user", "user_id"),)


class AudiobookChapterModel(Base):
    __tablename__ = "audiobook_chapters"

    id: Mapped[str] = mapped_column(String(160), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    book_id: Mapped[str] = mapped_column(String(128), nullable=False)
    chapter_index: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    format: Mapped[str] = mapped_column(String(8), nullable=False)

    __table_args__ = (Index("idx_audiobook_chapters_book", "book_id", "user_id"),)


def chapter_row_id(book_id: str, index: int) -> str:
    return f"{book_id}-{index}"
