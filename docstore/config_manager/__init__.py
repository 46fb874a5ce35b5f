"""Configuration management for docstore."""
from __future__ import annotations

from .constants import DATABASE_FILENAME, DEFAULT_DOCSTORE_DIR, DEFAULT_PRESIGN_EXPIRES_SECONDS
from .loader import build_settings, clear_settings_cache, get_settings
from .settings import DocstoreSettings, EnvironmentOverrides

__all__ = [
    "DATABASE_FILENAME",
    "DEFAULT_DOCSTORE_DIR",
    "DEFAULT_PRESIGN_EXPIRES_SECONDS",
    "DocstoreSettings",
    "EnvironmentOverrides",
    "build_settings",
    "clear_settings_cache",
    "get_settings",
]
