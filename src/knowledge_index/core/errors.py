"""
Error Taxonomy & Global Error Handling

This module defines the typed failures raised by the knowledge index and the
FastAPI exception handlers that translate them into HTTP responses.

Taxonomy
--------
- ValidationError     caller input or a record failed structural/semantic checks
- ProviderError       the embedding provider failed after retries, or answered
                      with a structurally invalid response
- CorruptIndexError   the persisted index document has an invalid outer shape
- BlobStoreError      the blob store could not read or write a key

A single malformed record inside an otherwise valid index document is NOT an
error: it is dropped with a warning at load time.

Design Goals
------------
- Never leak internal exception details to clients
- Always return deterministic, machine-readable error responses
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from typing import Dict, Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("kindex.errors")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class KnowledgeIndexError(RuntimeError):
    """Base error for all knowledge index failures."""


class ValidationError(KnowledgeIndexError, ValueError):
    """Raised when caller input or a record fails validation."""


class ProviderError(KnowledgeIndexError):
    """
    Raised when the embedding provider call fails for good.

    Attributes
    ----------
    attempts : int
        Total number of attempts made (first try included).
    retryable : bool
        Whether the last failure was classified as transient.
    cause : str
        Message of the root failure.
    """

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 1,
        retryable: bool = False,
        cause: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.retryable = retryable
        self.cause = cause or message


class CorruptIndexError(KnowledgeIndexError):
    """Raised when the persisted index document is structurally unusable."""


class BlobStoreError(KnowledgeIndexError):
    """Raised when a blob store key is invalid or I/O fails."""


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

def _error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    payload: Dict[str, Any] = {
        "error": error,
        "detail": detail,
    }
    return JSONResponse(status_code=status_code, content=payload)


async def validation_error_handler(
    request: Request,
    exc: ValidationError,
) -> JSONResponse:
    """
    Caller input failed validation. The message is safe to return.
    """
    logger.info(
        "Validation failed for %s %s: %s",
        request.method,
        request.url.path,
        exc,
    )
    return _error_response(422, "validation_error", str(exc))


async def provider_error_handler(
    request: Request,
    exc: ProviderError,
) -> JSONResponse:
    """
    Embedding provider failed after retries.

    Only the attempt count and retryability are exposed; the root cause is
    logged but not returned.
    """
    logger.error(
        "Embedding provider failure during %s %s (attempts=%d, retryable=%s): %s",
        request.method,
        request.url.path,
        exc.attempts,
        exc.retryable,
        exc.cause,
    )
    return JSONResponse(
        status_code=502,
        content={
            "error": "provider_error",
            "detail": "Embedding provider request failed",
            "attempts": exc.attempts,
            "retryable": exc.retryable,
        },
    )


async def corrupt_index_handler(
    request: Request,
    exc: CorruptIndexError,
) -> JSONResponse:
    logger.error("Corrupt index document: %s", exc)
    return _error_response(500, "corrupt_index", "Persisted index document is invalid")


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    This handler should be registered with FastAPI as the final safety net
    for any exception not otherwise handled by route-level or framework-level
    handlers.

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

    return _error_response(500, "internal_server_error", "Internal server error")
