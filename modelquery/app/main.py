"""
modelquery - FastAPI application entry point.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from modelquery import __version__
from modelquery.app.api import query_router
from modelquery.app.dependencies import get_engine, shutdown_engine
from modelquery.config import get_settings
from modelquery.errors import ModelQueryError

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Waits for pending background cache writes on shutdown.
    """
    logger.info("Starting modelquery...")
    get_engine()

    yield

    logger.info("Shutting down modelquery...")
    try:
        await shutdown_engine()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}", exc_info=True)


async def handle_query_error(request: Request, exc: ModelQueryError) -> JSONResponse:
    """Map query errors to JSON responses with their status code."""
    if exc.status_code >= 500:
        logger.error(f"[api] {request.url.path}: {exc}")
    else:
        logger.info(f"[api] {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title="modelquery",
        description="Query execution and result materialization for model-backed stores",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.add_exception_handler(ModelQueryError, handle_query_error)
    app.include_router(query_router, prefix="/api/v1")

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        """Root endpoint with service info."""
        return {
            "service": settings.service_name,
            "version": __version__,
            "status": "running",
        }

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, Any]:
        """Health check with registered models and cache state."""
        engine = get_engine()
        return {
            "status": "healthy",
            "models": engine.registry.registered_models,
            "cache": engine.cache is not None,
            "background_tasks": engine.pending_background,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "modelquery.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
