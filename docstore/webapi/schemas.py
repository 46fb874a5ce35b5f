"""Request and response payloads for the docstore API."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import Field

from ..schemas import CamelModel, ClaimResult, UnclaimedCounts


class RekeyMapping(CamelModel):
    old_id: str
    id: str


class LayoutMigrationRequest(CamelModel):
    mappings: List[RekeyMapping] = Field(default_factory=list)


class ObjectStorageMigrationRequest(CamelModel):
    dry_run: bool = False
    delete_local: bool = False
    include_audiobooks: bool = False


class ClaimRequest(CamelModel):
    action: Literal["scan", "claim"] = "claim"


class ClaimResponse(CamelModel):
    success: bool = True
    claimed: Optional[ClaimResult] = None
    unclaimed: Optional[UnclaimedCounts] = None


class SuccessResponse(CamelModel):
    success: bool = True
    deleted: int = 0


__all__ = [
    "ClaimRequest",
    "ClaimResponse",
    "LayoutMigrationRequest",
    "ObjectStorageMigrationRequest",
    "RekeyMapping",
    "SuccessResponse",
]
