"""Routes exposing layout migrations, ownership claims and audiobook storage."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse, RedirectResponse, Response

from ..context import DocstoreContext
from ..migrations import StorageNotReadyError
from ..schemas import AudiobookStatus, LayoutMigrationReport, ObjectStorageMigrationReport
from ..services import (
    AudiobookError,
    AudiobookNotFoundError,
    ClaimError,
    FormatMismatchError,
    SettingsMismatchError,
)
from ..storage import InvalidKeyError, ObjectStorageNotConfiguredError
from ..storage.layout import is_safe_id
from .dependencies import RequestUserContext, get_context, get_request_user
from .schemas import (
    ClaimRequest,
    ClaimResponse,
    LayoutMigrationRequest,
    ObjectStorageMigrationRequest,
    SuccessResponse,
)

router = APIRouter(prefix="/api", tags=["docstore"])


def _require_user(request_user: RequestUserContext) -> str:
    if not request_user.user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return request_user.user_id


def _require_book_id(book_id: str) -> str:
    if not is_safe_id(book_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid bookId parameter")
    return book_id


def _not_ready(exc: StorageNotReadyError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.post("/migrations/v1", response_model=LayoutMigrationReport)
def run_layout_migrations(
    payload: LayoutMigrationRequest | None = None,
    context: DocstoreContext = Depends(get_context),
) -> LayoutMigrationReport:
    mappings = {entry.old_id: entry.id for entry in (payload.mappings if payload else [])}
    if any(not is_safe_id(old) or not is_safe_id(new) for old, new in mappings.items()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid document id mapping")
    return context.run_layout_migrations(mappings)


@router.post("/migrations/v2", response_model=ObjectStorageMigrationReport)
def run_object_storage_migration(
    payload: ObjectStorageMigrationRequest | None = None,
    request_user: RequestUserContext = Depends(get_request_user),
    context: DocstoreContext = Depends(get_context),
) -> ObjectStorageMigrationReport:
    options = payload or ObjectStorageMigrationRequest()
    try:
        context.require_object_store()
        context.prepare_layout()
        return context.object_storage_migrator.run(
            dry_run=options.dry_run,
            delete_local=options.delete_local,
            include_audiobooks=options.include_audiobooks,
            namespace=request_user.namespace,
        )
    except ObjectStorageNotConfiguredError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


@router.post("/user/claim", response_model=ClaimResponse, response_model_exclude_none=True)
def claim_user_data(
    payload: ClaimRequest | None = None,
    request_user: RequestUserContext = Depends(get_request_user),
    context: DocstoreContext = Depends(get_context),
) -> ClaimResponse:
    user_id = _require_user(request_user)
    action = payload.action if payload else "claim"
    if action == "scan":
        return ClaimResponse(unclaimed=context.indexer.scan_and_populate())

    context.indexer.ensure_indexed()
    try:
        result = context.claim_engine.claim(
            request_user.unclaimed_user_id, user_id, namespace=request_user.namespace
        )
    except ClaimError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return ClaimResponse(claimed=result)


@router.get("/audiobook/status", response_model=AudiobookStatus)
def get_audiobook_status(
    book_id: str = Query(..., alias="bookId"),
    request_user: RequestUserContext = Depends(get_request_user),
    context: DocstoreContext = Depends(get_context),
) -> AudiobookStatus:
    _require_book_id(book_id)
    try:
        return context.audiobooks.get_status(
            book_id, user_id=request_user.user_id, namespace=request_user.namespace
        )
    except StorageNotReadyError as exc:
        raise _not_ready(exc) from exc


@router.get("/audiobook/chapter")
def download_chapter(
    book_id: str = Query(..., alias="bookId"),
    chapter_index: int = Query(..., alias="chapterIndex", ge=0),
    request_user: RequestUserContext = Depends(get_request_user),
    context: DocstoreContext = Depends(get_context),
) -> Response:
    _require_book_id(book_id)
    try:
        download = context.audiobooks.open_chapter(
            book_id, chapter_index, user_id=request_user.user_id, namespace=request_user.namespace
        )
    except StorageNotReadyError as exc:
        raise _not_ready(exc) from exc
    except AudiobookNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    if download.url is not None:
        return RedirectResponse(download.url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    safe_title = "".join(ch if ch.isalnum() else "_" for ch in download.title).lower() or "chapter"
    return Response(
        content=download.data or b"",
        media_type=download.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{safe_title}.{download.format}"',
            "Cache-Control": "no-cache",
        },
    )


@router.delete("/audiobook/chapter", response_model=SuccessResponse)
def delete_chapter(
    book_id: str = Query(..., alias="bookId"),
    chapter_index: int = Query(..., alias="chapterIndex", ge=0),
    request_user: RequestUserContext = Depends(get_request_user),
    context: DocstoreContext = Depends(get_context),
) -> SuccessResponse:
    _require_book_id(book_id)
    try:
        deleted = context.audiobooks.delete_chapter(
            book_id, chapter_index, user_id=request_user.user_id, namespace=request_user.namespace
        )
    except StorageNotReadyError as exc:
        raise _not_ready(exc) from exc
    except AudiobookNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return SuccessResponse(deleted=deleted)


@router.delete("/audiobook", response_model=SuccessResponse)
def reset_audiobook(
    book_id: str = Query(..., alias="bookId"),
    request_user: RequestUserContext = Depends(get_request_user),
    context: DocstoreContext = Depends(get_context),
) -> SuccessResponse:
    _require_book_id(book_id)
    try:
        deleted = context.audiobooks.reset_book(
            book_id, user_id=request_user.user_id, namespace=request_user.namespace
        )
    except StorageNotReadyError as exc:
        raise _not_ready(exc) from exc
    return SuccessResponse(deleted=deleted)


def register_exception_handlers(app) -> None:
    """Map service errors that escape a route to HTTP responses."""

    @app.exception_handler(SettingsMismatchError)
    async def _settings_mismatch(_request, exc: SettingsMismatchError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"error": str(exc), "settings": exc.settings},
        )

    @app.exception_handler(FormatMismatchError)
    async def _format_mismatch(_request, exc: FormatMismatchError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"error": str(exc), "format": exc.book_format},
        )

    @app.exception_handler(InvalidKeyError)
    async def _invalid_key(_request, exc: InvalidKeyError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

    @app.exception_handler(AudiobookError)
    async def _audiobook_error(_request, exc: AudiobookError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})


__all__ = ["register_exception_handlers", "router"]
