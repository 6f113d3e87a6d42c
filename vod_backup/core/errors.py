"""Centralized error handling for the API.

This module provides standardized error codes, exception-to-response mapping,
and a global exception handler for FastAPI.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type

import structlog
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from vod_backup.core.logging import get_task_context
from vod_backup.providers.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    DownloadError,
    ItemNotFoundError,
    ListingError,
    ProviderError,
    VodBackupError,
)
from vod_backup.services.scheduler import InvalidScheduleError
from vod_backup.services.task_store import JobNotFoundError, StorageError, TaskNotFoundError

logger = structlog.get_logger(__name__)


class ErrorCode:
    """Standardized error codes for API responses.

    These codes provide machine-readable identifiers for error conditions
    that clients can use to implement error handling logic.
    """

    # Client Errors (4xx)
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_SCHEDULE = "INVALID_SCHEDULE"
    ITEM_NOT_FOUND = "ITEM_NOT_FOUND"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    TASK_ACTIVE = "TASK_ACTIVE"

    # Server Errors (5xx)
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    STORAGE_ERROR = "STORAGE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Upstream Errors (502)
    LISTING_FAILED = "LISTING_FAILED"
    AUTH_FAILED = "AUTH_FAILED"

    # Service Unavailable (503)
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    COMPONENT_UNAVAILABLE = "COMPONENT_UNAVAILABLE"


# Error code to HTTP status code mapping
ERROR_CODE_TO_STATUS: Dict[str, int] = {
    # 400 Bad Request
    ErrorCode.INVALID_REQUEST: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_SCHEDULE: HTTP_400_BAD_REQUEST,
    # 404 Not Found
    ErrorCode.ITEM_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.TASK_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.JOB_NOT_FOUND: HTTP_404_NOT_FOUND,
    # 409 Conflict
    ErrorCode.TASK_ACTIVE: HTTP_409_CONFLICT,
    # 500 Internal Server Error
    ErrorCode.DOWNLOAD_FAILED: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.STORAGE_ERROR: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.INTERNAL_ERROR: HTTP_500_INTERNAL_SERVER_ERROR,
    # 502 Bad Gateway
    ErrorCode.LISTING_FAILED: HTTP_502_BAD_GATEWAY,
    ErrorCode.AUTH_FAILED: HTTP_502_BAD_GATEWAY,
    # 503 Service Unavailable
    ErrorCode.CONFIGURATION_ERROR: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.COMPONENT_UNAVAILABLE: HTTP_503_SERVICE_UNAVAILABLE,
}


# User-friendly suggestions for error resolution
ERROR_SUGGESTIONS: Dict[str, str] = {
    ErrorCode.INVALID_REQUEST: "Check the request parameters and try again",
    ErrorCode.INVALID_SCHEDULE: (
        "Use a 5-field cron expression (minute hour day month weekday), "
        "see GET /api/v1/schedules/patterns for examples"
    ),
    ErrorCode.ITEM_NOT_FOUND: "The VOD may have been deleted or is no longer available",
    ErrorCode.TASK_NOT_FOUND: "The download task does not exist or was removed from history",
    ErrorCode.JOB_NOT_FOUND: "The scheduled job does not exist or was deleted",
    ErrorCode.TASK_ACTIVE: "Cancel the download and wait for it to stop before removing it",
    ErrorCode.DOWNLOAD_FAILED: "The download failed. Check server logs for details",
    ErrorCode.STORAGE_ERROR: "The task store could not be read or written. Check disk permissions",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Check server logs for details",
    ErrorCode.LISTING_FAILED: "The Twitch API request failed. Try again later",
    ErrorCode.AUTH_FAILED: "Verify the Twitch client ID and secret in PUT /api/v1/config",
    ErrorCode.CONFIGURATION_ERROR: (
        "Set the Twitch credentials and a writable download path in PUT /api/v1/config"
    ),
    ErrorCode.COMPONENT_UNAVAILABLE: "A required system component is unavailable. Check /health",
}


# Exception type to error code mapping
# Order matters: subclasses must come before their base classes
EXCEPTION_TO_ERROR_CODE: Dict[Type[Exception], str] = {
    ItemNotFoundError: ErrorCode.ITEM_NOT_FOUND,
    ListingError: ErrorCode.LISTING_FAILED,
    AuthenticationError: ErrorCode.AUTH_FAILED,
    AuthorizationError: ErrorCode.AUTH_FAILED,
    ConfigurationError: ErrorCode.CONFIGURATION_ERROR,
    InvalidScheduleError: ErrorCode.INVALID_SCHEDULE,
    DownloadError: ErrorCode.DOWNLOAD_FAILED,
    TaskNotFoundError: ErrorCode.TASK_NOT_FOUND,
    JobNotFoundError: ErrorCode.JOB_NOT_FOUND,
    StorageError: ErrorCode.STORAGE_ERROR,
    # ProviderError must be last (after its subclasses)
    ProviderError: ErrorCode.LISTING_FAILED,
}

DOMAIN_EXCEPTIONS = (VodBackupError,)


class APIError(Exception):
    """Structured API error that can be converted to ErrorDetail response."""

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[str] = None,
        suggestion: Optional[str] = None,
    ):
        """Initialize an API error.

        Args:
            error_code: Machine-readable error code from ErrorCode class.
            message: Human-readable error message.
            details: Optional additional details about the error.
            suggestion: Optional suggestion for resolution. If not provided,
                        the default suggestion for the error code is used.
        """
        self.error_code = error_code
        self.message = message
        self.details = details
        self.suggestion = suggestion or ERROR_SUGGESTIONS.get(error_code)
        super().__init__(message)


def map_exception_to_api_error(exc: Exception) -> APIError:
    """Map provider and service exceptions to APIError.

    Args:
        exc: The exception to map.

    Returns:
        An APIError with the appropriate error code and message.
    """
    for exc_type, error_code in EXCEPTION_TO_ERROR_CODE.items():
        if isinstance(exc, exc_type):
            return APIError(error_code, str(exc))
    return APIError(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


def _build_error_response(
    error_code: str,
    message: str,
    details: Optional[str] = None,
    suggestion: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a standardized error response dictionary.

    Returns:
        Dictionary matching the ErrorDetail schema.
    """
    response: Dict[str, Any] = {
        "error_code": error_code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if details:
        response["details"] = details
    task_id = get_task_context()
    if task_id:
        response["task_id"] = task_id
    if suggestion:
        response["suggestion"] = suggestion

    return response


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for FastAPI.

    Converts all exceptions to standardized ErrorDetail responses with
    consistent structure and proper HTTP status codes.

    Args:
        request: The FastAPI request object.
        exc: The exception that was raised.

    Returns:
        JSONResponse with ErrorDetail body and appropriate status code.
    """
    if isinstance(exc, APIError):
        status_code = ERROR_CODE_TO_STATUS.get(exc.error_code, HTTP_500_INTERNAL_SERVER_ERROR)
        response = _build_error_response(
            error_code=exc.error_code,
            message=exc.message,
            details=exc.details,
            suggestion=exc.suggestion,
        )
        logger.warning(
            "api_error",
            error_code=exc.error_code,
            message=exc.message,
            path=request.url.path,
        )

    elif isinstance(exc, HTTPException):
        status_code = exc.status_code

        if isinstance(exc.detail, dict) and "error_code" in exc.detail:
            error_code = exc.detail["error_code"]
            message = exc.detail.get("message", str(exc.detail))
            details = exc.detail.get("details")
        else:
            error_code = _status_to_error_code(status_code)
            message = str(exc.detail) if exc.detail else "An error occurred"
            details = None

        response = _build_error_response(
            error_code=error_code,
            message=message,
            details=details,
            suggestion=ERROR_SUGGESTIONS.get(error_code),
        )
        logger.warning(
            "http_exception",
            status_code=status_code,
            error_code=error_code,
            path=request.url.path,
        )

    elif isinstance(exc, DOMAIN_EXCEPTIONS):
        api_error = map_exception_to_api_error(exc)
        status_code = ERROR_CODE_TO_STATUS.get(api_error.error_code, HTTP_500_INTERNAL_SERVER_ERROR)
        response = _build_error_response(
            error_code=api_error.error_code,
            message=api_error.message,
            details=api_error.details,
            suggestion=api_error.suggestion,
        )
        logger.warning(
            "service_error",
            error_code=api_error.error_code,
            error_type=type(exc).__name__,
            message=str(exc),
            path=request.url.path,
        )

    else:
        status_code = HTTP_500_INTERNAL_SERVER_ERROR
        response = _build_error_response(
            error_code=ErrorCode.INTERNAL_ERROR,
            message="An unexpected error occurred",
            suggestion=ERROR_SUGGESTIONS.get(ErrorCode.INTERNAL_ERROR),
        )
        logger.error(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error=str(exc),
            path=request.url.path,
            exc_info=True,
        )

    return JSONResponse(status_code=status_code, content=response)


def _status_to_error_code(status_code: int) -> str:
    """Infer error code from HTTP status code."""
    if status_code == HTTP_400_BAD_REQUEST:
        return ErrorCode.INVALID_REQUEST
    elif status_code == HTTP_404_NOT_FOUND:
        return ErrorCode.TASK_NOT_FOUND
    elif status_code == HTTP_409_CONFLICT:
        return ErrorCode.TASK_ACTIVE
    elif status_code == HTTP_503_SERVICE_UNAVAILABLE:
        return ErrorCode.COMPONENT_UNAVAILABLE
    else:
        return ErrorCode.INTERNAL_ERROR
