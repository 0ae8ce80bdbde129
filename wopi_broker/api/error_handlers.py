"""
Standardized error handling for the WOPI broker API.
"""

import logging
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..domain.exceptions import (
    CredentialProvisionError,
    DiscoveryFetchError,
    ExpiredTokenError,
    InvalidFileIdError,
    InvalidTokenError,
    NotFoundError,
    PermissionDeniedError,
    StateDecodeError,
    WopiServiceError,
)
from ..infrastructure.structured_logger import wopi_logger

logger = logging.getLogger(__name__)

# Checked in order; subclasses first
STATUS_BY_ERROR = [
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidFileIdError, status.HTTP_400_BAD_REQUEST),
    (ExpiredTokenError, status.HTTP_401_UNAUTHORIZED),
    (InvalidTokenError, status.HTTP_401_UNAUTHORIZED),
    (StateDecodeError, status.HTTP_400_BAD_REQUEST),
    (DiscoveryFetchError, status.HTTP_502_BAD_GATEWAY),
    (CredentialProvisionError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_for(exc: WopiServiceError) -> int:
    for error_class, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> JSONResponse:
    """Create standardized error response."""

    error_response = {
        "error": {
            "code": error_code,
            "message": message,
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "details": details or {}
        }
    }

    if request_id:
        error_response["error"]["request_id"] = request_id

    wopi_logger.log_error(
        error_type=error_code,
        error_message=message,
        context={
            "status_code": status_code,
            "details": details,
            "request_id": request_id
        }
    )

    return JSONResponse(
        status_code=status_code,
        content=error_response
    )


async def wopi_error_handler(request: Request, exc: WopiServiceError) -> JSONResponse:
    """Handle broker errors."""
    request_id = getattr(request.state, "request_id", None)

    return create_error_response(
        error_code=exc.code,
        message=exc.message,
        status_code=status_for(exc),
        details=exc.details,
        request_id=request_id
    )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle generic errors."""
    request_id = getattr(request.state, "request_id", None)

    logger.error(f"Unhandled error: {str(exc)}\n{traceback.format_exc()}")

    # In production, don't expose internal errors
    if request.app.debug:
        message = str(exc)
        details = {"traceback": traceback.format_exc()}
    else:
        message = "Internal server error"
        details = {}

    return create_error_response(
        error_code="INTERNAL_ERROR",
        message=message,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        details=details,
        request_id=request_id
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WopiServiceError, wopi_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)
