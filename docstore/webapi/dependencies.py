"""Dependency wiring for the FastAPI application."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from ..context import DocstoreContext
from ..storage.layout import is_safe_id, sanitize_namespace, unclaimed_user_id


@dataclass(frozen=True)
class RequestUserContext:
    """Identity and namespace extracted from the forwarded request headers."""

    user_id: str | None
    auth_enabled: bool
    namespace: str | None = None

    @property
    def storage_user_id(self) -> str:
        if self.auth_enabled and self.user_id:
            return self.user_id
        return unclaimed_user_id(self.namespace)

    @property
    def unclaimed_user_id(self) -> str:
        return unclaimed_user_id(self.namespace)


@lru_cache
def get_context() -> DocstoreContext:
    """Return the process-wide :class:`DocstoreContext`."""

    return DocstoreContext()


def get_request_user(
    header_user_id: str | None = Header(default=None, alias="X-User-Id"),
    header_namespace: str | None = Header(default=None, alias="X-Docstore-Namespace"),
    context: DocstoreContext = Depends(get_context),
) -> RequestUserContext:
    """Resolve the caller from forwarded headers.

    With auth enabled a missing user id is rejected; with auth disabled the
    header is ignored and every request acts as the unclaimed owner.
    """

    auth_enabled = context.settings.auth_enabled
    namespace = sanitize_namespace(header_namespace)
    user_id = (header_user_id or "").strip() or None
    if not auth_enabled:
        return RequestUserContext(user_id=None, auth_enabled=False, namespace=namespace)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user id")
    if not is_safe_id(user_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid user id")
    return RequestUserContext(user_id=user_id, auth_enabled=True, namespace=namespace)


__all__ = ["RequestUserContext", "get_context", "get_request_user"]
