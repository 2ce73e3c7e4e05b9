"""
Error Taxonomy and Global Error Handling

Design Goals
------------
- Expected outcomes (no hits, low similarity, stale spans) are values, not
  exceptions; see ``linking.models.Discarded``.
- Transient external failures are wrapped in a small set of domain errors
  so callers can recover locally (search fallback, zero candidates).
- Persistence failures surface to the batch orchestrator per document.
- The HTTP layer never leaks internal exception details to clients.
"""

from __future__ import annotations

import logging
from typing import Dict, Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("exicon.errors")


# ---------------------------------------------------------------------
# Domain Exceptions
# ---------------------------------------------------------------------

class ExiconError(Exception):
    """Base class for all domain errors."""


class SearchBackendError(ExiconError):
    """The full-text index is missing, broken, or rejected the query."""


class TextUnderstandingError(ExiconError):
    """The language-model call failed or returned an unusable answer."""


class PersistenceError(ExiconError):
    """A proposal, document update or tracking write could not be stored."""


class ProposalStateError(ExiconError):
    """A review action is not allowed for the proposal's current status."""


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Logs the full stack trace and returns a generic 500 payload with no
    internal details.
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
