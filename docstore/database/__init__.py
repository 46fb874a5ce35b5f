"""SQLAlchemy database layer for docstore.

Provides the engine owner, session scope, declarative base and the
metadata repository used by the storage services.
"""

from .base import Base
from .engine import Database
from .repository import MetadataRepository

__all__ = ["Base", "Database", "MetadataRepository"]
