"""SQLAlchemy engine ownership and session helpers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from .base import Base


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


class Database:
    """Own an engine and its session factory for one database URL."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        if _is_sqlite(url):
            self._engine = create_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False},
            )
            event.listen(self._engine, "connect", _enable_sqlite_foreign_keys)
        else:
            self._engine = create_engine(
                url,
                pool_size=10,
                max_overflow=5,
                pool_pre_ping=True,
                pool_recycle=3600,
                echo=echo,
            )
        self._session_factory: sessionmaker[Session] = sessionmaker(
            bind=self._engine,
            expire_on_commit=False,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_all(self) -> None:
        """Create every registered table that does not exist yet."""

        from . import models  # noqa: F401  registers the tables on Base.metadata

        Base.metadata.create_all(self._engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self._engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
