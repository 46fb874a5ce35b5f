"""Application factory for the docstore API."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from .dependencies import get_context
from .routes import register_exception_handlers, router

LOGGER = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Instantiate and configure the FastAPI application."""

    app = FastAPI(title="docstore API", version="0.1.0")

    register_exception_handlers(app)

    @app.on_event("shutdown")
    async def _close_context() -> None:
        if get_context.cache_info().currsize:
            get_context().close()
            get_context.cache_clear()
            LOGGER.info("Closed docstore context")

    @app.get("/_health", tags=["health"])
    def healthcheck() -> dict[str, str]:
        """Simple healthcheck endpoint for smoke-testing the server."""

        return {"status": "ok"}

    app.include_router(router)
    return app


__all__ = ["create_app"]
