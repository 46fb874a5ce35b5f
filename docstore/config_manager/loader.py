"""Load and cache the active :class:`DocstoreSettings`."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from .settings import DocstoreSettings, apply_settings_updates, load_environment_overrides

_ACTIVE_SETTINGS: Optional[DocstoreSettings] = None


def get_settings() -> DocstoreSettings:
    """Return the currently loaded :class:`DocstoreSettings` instance."""

    global _ACTIVE_SETTINGS
    if _ACTIVE_SETTINGS is None:
        _ACTIVE_SETTINGS = apply_settings_updates(DocstoreSettings(), load_environment_overrides())
    return _ACTIVE_SETTINGS


def build_settings(overrides: Optional[Mapping[str, Any]] = None) -> DocstoreSettings:
    """Return settings from the environment with explicit ``overrides`` applied last."""

    settings = apply_settings_updates(DocstoreSettings(), load_environment_overrides())
    return apply_settings_updates(settings, dict(overrides or {}))


def clear_settings_cache() -> None:
    """Forget the cached settings so the next call re-reads the environment."""

    global _ACTIVE_SETTINGS
    _ACTIVE_SETTINGS = None


__all__ = ["build_settings", "clear_settings_cache", "get_settings"]
