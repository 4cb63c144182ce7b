"""API routers."""

from .query import router as query_router

__all__ = ["query_router"]
