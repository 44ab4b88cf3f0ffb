"""
RAG Index Server Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures global exception handling, and provides a test-friendly application
factory.

Design Goals
------------
- Deterministic startup
- Centralized router registration
- Engine errors mapped to stable JSON error codes
- Background job worker tied to the application lifespan
- Test-friendly via create_app()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from fastapi import FastAPI

from .config import settings
from .core.errors import RagError, rag_error_handler, unhandled_exception_handler
from .embeddings.queue import process_jobs_worker_task

from .api import (
    chunk_routes,
    document_routes,
    entry_routes,
    health_routes,
    namespace_routes,
    search_routes,
)
from .api.dependencies import get_embedder, get_engine, get_indexer


logger = logging.getLogger("rag.app")


# ---------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------

@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Start the background job worker and stop it on shutdown.
    """
    logger.info("Starting rag-index-server (storage=%s)", settings.storage_backend)

    if settings.storage_backend == "postgres":
        from .db import init_models

        await init_models()

    worker = None
    if settings.enable_background_worker:
        indexer = get_indexer(get_engine(), get_embedder())
        worker = asyncio.create_task(process_jobs_worker_task(indexer, indexer.engine.queue))

    yield

    logger.info("Shutting down rag-index-server")
    if worker is not None:
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory pattern allows:
    - Clean test instantiation
    - Isolated app instances for integration tests
    - Controlled dependency overrides in pytest

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(
        title="rag-index-server",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(RagError, rag_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(namespace_routes.router)
    app.include_router(entry_routes.router)
    app.include_router(chunk_routes.router)
    app.include_router(search_routes.router)
    app.include_router(document_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
