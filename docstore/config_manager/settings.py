"""Pydantic models and helper utilities for configuration values."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .. import logging_manager

from .constants import (
    DATABASE_FILENAME,
    DEFAULT_DOCSTORE_DIR,
    DEFAULT_ENV_FILES,
    DEFAULT_PRESIGN_EXPIRES_SECONDS,
)

logger = logging_manager.get_logger().getChild("config")


class DocstoreSettings(BaseModel):
    """Typed representation of the storage engine configuration."""

    model_config = ConfigDict(extra="ignore")

    docstore_dir: str = str(DEFAULT_DOCSTORE_DIR)
    database_url: Optional[SecretStr] = None
    auth_enabled: bool = False
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None
    s3_access_key_id: Optional[str] = None
    s3_secret_access_key: Optional[SecretStr] = None
    s3_endpoint: Optional[str] = None
    s3_force_path_style: bool = False
    s3_prefix: str = ""
    s3_presign_expires_seconds: int = DEFAULT_PRESIGN_EXPIRES_SECONDS
    log_level: Optional[str] = None

    @property
    def root(self) -> Path:
        return Path(self.docstore_dir).expanduser()

    @property
    def s3_configured(self) -> bool:
        secret = self.s3_secret_access_key.get_secret_value() if self.s3_secret_access_key else ""
        return bool(self.s3_bucket and self.s3_region and self.s3_access_key_id and secret)

    @property
    def storage_backend(self) -> str:
        return "s3" if self.s3_configured else "local"

    def resolved_database_url(self) -> str:
        """Return the configured database URL, defaulting to SQLite under the root."""

        if self.database_url is not None:
            value = self.database_url.get_secret_value().strip()
            if value:
                return value
        return f"sqlite:///{(self.root / DATABASE_FILENAME).as_posix()}"


class EnvironmentOverrides(BaseSettings):
    """Configuration overrides sourced from environment variables and dotenv files."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=DEFAULT_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    docstore_dir: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("DOCSTORE_DIR", "DOCSTORE_ROOT")
    )
    database_url: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("DATABASE_URL", "DOCSTORE_DATABASE_URL")
    )
    auth_enabled: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("DOCSTORE_AUTH_ENABLED", "AUTH_ENABLED")
    )
    s3_bucket: Optional[str] = Field(default=None, validation_alias=AliasChoices("S3_BUCKET"))
    s3_region: Optional[str] = Field(default=None, validation_alias=AliasChoices("S3_REGION"))
    s3_access_key_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("S3_ACCESS_KEY_ID")
    )
    s3_secret_access_key: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("S3_SECRET_ACCESS_KEY")
    )
    s3_endpoint: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("S3_ENDPOINT", "S3_ENDPOINT_URL")
    )
    s3_force_path_style: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("S3_FORCE_PATH_STYLE")
    )
    s3_prefix: Optional[str] = Field(default=None, validation_alias=AliasChoices("S3_PREFIX"))
    s3_presign_expires_seconds: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("S3_PRESIGN_EXPIRES_SECONDS")
    )
    log_level: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("DOCSTORE_LOG_LEVEL")
    )


def load_environment_overrides() -> Dict[str, Any]:
    """Return configuration overrides sourced from environment variables."""

    try:
        overrides = EnvironmentOverrides()
    except ValidationError as exc:
        logger.warning(
            "Invalid environment configuration detected; using defaults.",
            extra={"event": "config.env.validation_error", "error": str(exc)},
        )
        return {}
    return overrides.model_dump(exclude_none=True)


def apply_settings_updates(settings: DocstoreSettings, updates: Dict[str, Any]) -> DocstoreSettings:
    """Return a copy of ``settings`` updated with ``updates`` if any values exist."""

    if not updates:
        return settings
    return settings.model_copy(update=updates)


__all__ = [
    "DocstoreSettings",
    "EnvironmentOverrides",
    "apply_settings_updates",
    "load_environment_overrides",
]
