"""FastAPI surface over the docstore services."""

from .application import create_app

__all__ = ["create_app"]
