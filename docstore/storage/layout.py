"""Key scheme shared by the local and object storage backends."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Optional

from ..chapters.codec import encode_title
from .errors import InvalidKeyError

DOCUMENTS_DIR = "documents_v1"
AUDIOBOOKS_DIR = "audiobooks_v1"
USERS_DIR = "users"
AUDIOBOOK_DIR_SUFFIX = "-audiobook"
AUDIOBOOK_META_FILE = "audiobook.meta.json"
UNCLAIMED_USER_ID = "unclaimed"
MAX_DOCUMENT_FILE_NAME = 240

_SAFE_ID_RE = re.compile(r"^[a-zA-Z0-9._-]{1,128}$")
_NAMESPACE_STRIP_RE = re.compile(r"[^a-zA-Z0-9._-]+")
_SHA256_RE = re.compile(r"^[a-f0-9]{64}$")


def is_safe_id(value: object) -> bool:
    return isinstance(value, str) and bool(_SAFE_ID_RE.match(value)) and value not in {".", ".."}


def require_safe_id(value: object, label: str = "id") -> str:
    if not is_safe_id(value):
        raise InvalidKeyError(f"Invalid {label}: {value!r}")
    return str(value)


def is_document_id(value: object) -> bool:
    return isinstance(value, str) and bool(_SHA256_RE.match(value))


def sanitize_namespace(namespace: Optional[str]) -> Optional[str]:
    """Reduce ``namespace`` to the safe id alphabet; ``None`` when nothing is left."""

    if not namespace:
        return None
    cleaned = _NAMESPACE_STRIP_RE.sub("-", namespace.strip()).strip("-")[:128]
    if not cleaned or cleaned in {".", ".."}:
        return None
    return cleaned


def unclaimed_user_id(namespace: Optional[str] = None) -> str:
    cleaned = sanitize_namespace(namespace)
    return f"{UNCLAIMED_USER_ID}-{cleaned}" if cleaned else UNCLAIMED_USER_ID


def migrated_document_file_name(document_id: str, name: str) -> str:
    """Return ``{sha}__{encoded name}``, hashing names that would be too long."""

    target = f"{document_id}__{encode_title(name)}"
    if len(target) > MAX_DOCUMENT_FILE_NAME:
        digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:32]
        target = f"{document_id}__truncated-{digest}"
    return target


def audiobook_dir_name(book_id: str) -> str:
    return f"{book_id}{AUDIOBOOK_DIR_SUFFIX}"


def book_id_from_dir_name(dir_name: str) -> Optional[str]:
    if not dir_name.endswith(AUDIOBOOK_DIR_SUFFIX):
        return None
    candidate = dir_name[: -len(AUDIOBOOK_DIR_SUFFIX)]
    return candidate if is_safe_id(candidate) else None


def _join(*parts: Optional[str]) -> str:
    return "/".join(part for part in parts if part)


@dataclass(frozen=True, slots=True)
class BlobRef:
    """Address of one file inside a book directory."""

    book_id: str
    file_name: str
    owner_id: Optional[str] = None
    namespace: Optional[str] = None


@dataclass(frozen=True)
class StorageLayout:
    """Resolve document and audiobook keys for the active auth mode.

    With auth disabled every book lives in one shared directory tree; with
    auth enabled books are partitioned per owner under ``users/{owner}``.
    """

    auth_enabled: bool = False

    def documents_prefix(self, namespace: Optional[str] = None) -> str:
        return _join(DOCUMENTS_DIR, sanitize_namespace(namespace))

    def local_document_key(self, document_id: str, name: str, namespace: Optional[str] = None) -> str:
        return _join(self.documents_prefix(namespace), migrated_document_file_name(document_id, name))

    def object_document_key(self, document_id: str, namespace: Optional[str] = None) -> str:
        if not is_document_id(document_id):
            raise InvalidKeyError(f"Invalid document id: {document_id!r}")
        return _join(self.documents_prefix(namespace), document_id)

    def audiobooks_prefix(self, owner_id: Optional[str] = None, namespace: Optional[str] = None) -> str:
        ns = sanitize_namespace(namespace)
        if not self.auth_enabled:
            return _join(AUDIOBOOKS_DIR, ns)
        owner = require_safe_id(owner_id or unclaimed_user_id(namespace), "owner id")
        return _join(AUDIOBOOKS_DIR, USERS_DIR, owner, ns)

    def book_prefix(
        self, book_id: str, owner_id: Optional[str] = None, namespace: Optional[str] = None
    ) -> str:
        require_safe_id(book_id, "book id")
        return _join(self.audiobooks_prefix(owner_id, namespace), audiobook_dir_name(book_id))

    def key_for(self, ref: BlobRef) -> str:
        if not ref.file_name or "/" in ref.file_name or ref.file_name in {".", ".."}:
            raise InvalidKeyError(f"Invalid file name: {ref.file_name!r}")
        return _join(self.book_prefix(ref.book_id, ref.owner_id, ref.namespace), ref.file_name)

    def meta_key(self, book_id: str, owner_id: Optional[str] = None, namespace: Optional[str] = None) -> str:
        return self.key_for(BlobRef(book_id, AUDIOBOOK_META_FILE, owner_id, namespace))


__all__ = [
    "AUDIOBOOKS_DIR",
    "AUDIOBOOK_META_FILE",
    "BlobRef",
    "DOCUMENTS_DIR",
    "StorageLayout",
    "UNCLAIMED_USER_ID",
    "audiobook_dir_name",
    "book_id_from_dir_name",
    "is_document_id",
    "is_safe_id",
    "migrated_document_file_name",
    "require_safe_id",
    "sanitize_namespace",
    "unclaimed_user_id",
]
