"""
Error Types and Global Error Handling

This module defines the engine's exception hierarchy and the application-wide
exception handlers for the HTTP layer.

Design Goals
------------
- Every engine failure is a RagError subclass with a stable machine code
- Structural violations carry a 4xx status, provider failures a 502
- Never leak internal exception details to clients for unexpected errors
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from typing import Dict, Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("rag.errors")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class RagError(Exception):
    """Base error for all engine failures."""

    code: str = "rag_error"
    status_code: int = 400


class NamespaceNotFoundError(RagError):
    """Raised when no ready namespace exists for a configuration or ID."""

    code = "namespace_not_found"
    status_code = 404


class EntryNotFoundError(RagError):
    """Raised when an entry ID does not resolve to a live entry."""

    code = "entry_not_found"
    status_code = 404


class OutOfOrderError(RagError):
    """Raised when a chunk write would break order contiguity."""

    code = "out_of_order"
    status_code = 409


class DuplicateKeyError(RagError):
    """Raised when a second pending entry is created for the same key."""

    code = "duplicate_key"
    status_code = 409


class InvalidStateError(RagError):
    """Raised when an operation is not allowed in the entity's current status."""

    code = "invalid_state"
    status_code = 409


class DimensionMismatchError(RagError):
    """Raised when a vector length differs from the namespace dimension."""

    code = "dimension_mismatch"
    status_code = 422


class InvalidCursorError(RagError):
    """Raised when a pagination cursor cannot be decoded."""

    code = "invalid_cursor"
    status_code = 400


class InvalidFilterError(RagError):
    """Raised when a filter name is not declared by the namespace."""

    code = "invalid_filter"
    status_code = 422


class InvalidWeightError(RagError, ValueError):
    """Raised when a hybrid semantic weight falls outside [0, 1]."""

    code = "invalid_weight"
    status_code = 422


class EmbeddingProviderError(RagError):
    """Raised when embedding generation fails."""

    code = "embedding_provider_error"
    status_code = 502


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def rag_error_handler(
    request: Request,
    exc: RagError,
) -> JSONResponse:
    """
    Translate an engine error into a deterministic JSON error response.

    The message of a RagError is written by this codebase and is safe to
    return; it names identifiers and counts, never internal state.
    """
    logger.info(
        "Request %s %s rejected: %s (%s)",
        request.method,
        request.url.path,
        exc.code,
        exc,
    )

    payload: Dict[str, Any] = {
        "error": exc.code,
        "detail": str(exc),
    }

    return JSONResponse(
        status_code=exc.status_code,
        content=payload,
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Behavior
    --------
    - Logs the full exception stack trace for internal diagnostics.
    - Returns a generic 500 error to the client with no internal details.
    """

    # Log full traceback internally (never returned to client)
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
