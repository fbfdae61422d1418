"""
Error Taxonomy and Global Error Handling

This module defines the exception hierarchy shared by every pipeline stage
and the FastAPI handlers that render those exceptions for HTTP callers.

Taxonomy
--------
- validation      malformed or empty query / slug (fatal, not retryable)
- not_found       regeneration target is missing (fatal, not retryable)
- retrieval       search backend unreachable (degrades to empty results)
- generation      upstream LLM failure or pipeline timeout (fatal, retryable)
- persistence     page store write failure (fatal, retryable)
- best-effort     entity extraction / link graph failures (logged, swallowed)

Only generation and persistence errors terminate a generation with a
user-visible error. Handlers never leak internal details for anything that
is not a ``WikiError``.
"""

from __future__ import annotations

import logging
from typing import Dict, Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("wiki.errors")


# ---------------------------------------------------------------------
# Exception Hierarchy
# ---------------------------------------------------------------------

class WikiError(RuntimeError):
    """Base class for all expected pipeline failures."""

    error_type: str = "internal_error"
    status_code: int = 500
    retryable: bool = False


class QueryValidationError(WikiError):
    """Raised when a query or slug is empty or malformed."""

    error_type = "validation_error"
    status_code = 400


class PageNotFoundError(WikiError):
    """Raised when a page (or its stored query) does not exist."""

    error_type = "not_found"
    status_code = 404


class RetrievalError(WikiError):
    """Raised by retrieval collaborators. Never surfaced by the pipeline."""

    error_type = "retrieval_error"
    status_code = 502
    retryable = True


class GenerationError(WikiError):
    """Raised when the upstream text-generation stream fails."""

    error_type = "generation_error"
    status_code = 502
    retryable = True


class PipelineTimeoutError(GenerationError):
    """Raised when a generation exceeds its wall-clock budget."""

    error_type = "timeout"
    status_code = 504


class PersistenceError(WikiError):
    """Raised when the page store cannot read or write a page."""

    error_type = "persistence_error"
    status_code = 500
    retryable = True


class EntityExtractionError(WikiError):
    """Raised by extraction strategies. Best-effort."""

    error_type = "entity_extraction_error"


class GraphUpdateError(WikiError):
    """Raised by stub / connection stores. Best-effort."""

    error_type = "graph_update_error"


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def wiki_error_handler(
    request: Request,
    exc: WikiError,
) -> JSONResponse:
    """
    Render an expected pipeline failure.

    Parameters
    ----------
    request : Request
        The incoming HTTP request that triggered the exception.

    exc : WikiError
        The raised pipeline exception.

    Returns
    -------
    JSONResponse
        ``{"error": <error_type>, "detail": <message>}`` with the error's
        own status code.
    """
    if exc.status_code >= 500:
        logger.error(
            "Request failed: %s %s (%s: %s)",
            request.method,
            request.url.path,
            exc.error_type,
            exc,
        )

    payload: Dict[str, Any] = {
        "error": exc.error_type,
        "detail": str(exc) or exc.error_type,
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

    Logs the full stack trace internally and returns a generic 500 error
    with no internal details.

    Parameters
    ----------
    request : Request
        The incoming HTTP request that triggered the exception.

    exc : Exception
        The uncaught exception instance.

    Returns
    -------
    JSONResponse
        A JSON 500 response with a minimal error payload.
    """
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
