"""Constants shared by the docstore configuration layer."""

from __future__ import annotations

from pathlib import Path

DEFAULT_DOCSTORE_DIR = Path("docstore")
DATABASE_FILENAME = "docstore.db"
DEFAULT_PRESIGN_EXPIRES_SECONDS = 900
DEFAULT_ENV_FILES: tuple[str, ...] = (".env", ".env.local")
VALID_STORAGE_BACKENDS = ("local", "s3")
