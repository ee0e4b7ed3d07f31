"""
Shared route dependencies and error mapping.
"""

import logging
from fastapi import HTTPException, Request

from autopilot.exceptions import (
    ConflictError,
    NotFoundError,
    RepositoryEmptyError,
    ValidationError,
)
from autopilot.services.automation import AutomationService

logger = logging.getLogger(__name__)


def get_service(request: Request) -> AutomationService:
    """AutomationService built by the application lifespan."""
    return request.app.state.automation_service


def to_http_error(e: Exception, action: str) -> HTTPException:
    """Map an engine error to an HTTP error, logging unexpected ones."""
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, RepositoryEmptyError):
        return HTTPException(
            status_code=409, detail=f"Repository has no commits yet: {e}"
        )
    logger.error(f"Error {action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Failed {action}: {e}")
