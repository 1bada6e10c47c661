"""
Standardized error responses for the rewards API.

Every endpoint returns errors in the same envelope:
{
    "error": {
        "message": "User-friendly error message",
        "code": "ERROR_CODE"
    }
}

Usage:
    from rewards.utils.errors import error_response, ErrorCode

    return error_response("Redemption not found", ErrorCode.NOT_FOUND, 404)
"""
import logging
from enum import Enum
from flask import jsonify
from typing import Optional

from .exceptions import (
    RewardsError,
    NotFoundError,
    InvalidAmountError,
    CustomerIneligibleError,
    ConfigurationError,
    InsufficientPointsError,
    DuplicateEntryError,
    RemoteServiceError,
    LockContentionError,
    AuthFailure,
    InvalidStatusTransitionError,
    RedemptionPendingError,
)

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Authentication (401, 403)
    AUTH_REQUIRED = "AUTH_REQUIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    CUSTOMER_INELIGIBLE = "CUSTOMER_INELIGIBLE"

    # Validation (400)
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"

    # Not Found (404)
    NOT_FOUND = "NOT_FOUND"

    # Conflict (409)
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    JOB_ALREADY_RUNNING = "JOB_ALREADY_RUNNING"
    INVALID_STATUS = "INVALID_STATUS"
    REDEMPTION_PENDING = "REDEMPTION_PENDING"

    # Business configuration (422)
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # External Service Errors (502)
    SHOPIFY_ERROR = "SHOPIFY_ERROR"

    # Server Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Exception class -> (code, HTTP status). Order matters: first match wins.
EXCEPTION_STATUS = (
    (InvalidAmountError, ErrorCode.INVALID_AMOUNT, 400),
    (InsufficientPointsError, ErrorCode.INSUFFICIENT_POINTS, 400),
    (CustomerIneligibleError, ErrorCode.CUSTOMER_INELIGIBLE, 403),
    (ConfigurationError, ErrorCode.CONFIGURATION_ERROR, 422),
    (NotFoundError, ErrorCode.NOT_FOUND, 404),
    (DuplicateEntryError, ErrorCode.DUPLICATE_ENTRY, 409),
    (InvalidStatusTransitionError, ErrorCode.INVALID_STATUS, 409),
    (RedemptionPendingError, ErrorCode.REDEMPTION_PENDING, 409),
    (LockContentionError, ErrorCode.JOB_ALREADY_RUNNING, 409),
    (AuthFailure, ErrorCode.AUTH_REQUIRED, 401),
    (RemoteServiceError, ErrorCode.SHOPIFY_ERROR, 502),
)


def error_response(
    message: str,
    code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    status_code: int = 500,
    log_error: bool = True,
    details: Optional[dict] = None
) -> tuple:
    """
    Create a standardized error response.

    Args:
        message: User-friendly error message
        code: Error code from ErrorCode enum
        status_code: HTTP status code
        log_error: Whether to log the error
        details: Optional additional details (only logged, not returned to user)

    Returns:
        Tuple of (response, status_code) for Flask
    """
    if log_error and status_code >= 500:
        logger.error(f"API Error [{code}]: {message}", extra={"details": details})
    elif log_error and status_code >= 400:
        logger.warning(f"API Error [{code}]: {message}", extra={"details": details})

    response = {
        "error": {
            "message": message,
            "code": code.value if isinstance(code, ErrorCode) else code
        }
    }

    return jsonify(response), status_code


def exception_response(error: RewardsError) -> tuple:
    """Map an engine exception onto the error envelope."""
    for exc_type, code, status in EXCEPTION_STATUS:
        if isinstance(error, exc_type):
            # Keep the more specific code carried by the exception when it has one
            return error_response(error.message, error.code or code, status)
    return error_response(error.message, error.code or ErrorCode.INTERNAL_ERROR, 500)


def bad_request(message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST) -> tuple:
    """400 Bad Request error."""
    return error_response(message, code, 400, log_error=False)


def unauthorized(message: str = "Authentication required", code: ErrorCode = ErrorCode.AUTH_REQUIRED) -> tuple:
    """401 Unauthorized error."""
    return error_response(message, code, 401, log_error=False)


def not_found(message: str, code: ErrorCode = ErrorCode.NOT_FOUND) -> tuple:
    """404 Not Found error."""
    return error_response(message, code, 404, log_error=False)


def conflict(message: str, code: ErrorCode = ErrorCode.JOB_ALREADY_RUNNING) -> tuple:
    """409 Conflict error."""
    return error_response(message, code, 409, log_error=False)


def internal_error(message: str = "An unexpected error occurred", details: Optional[dict] = None) -> tuple:
    """500 Internal Server Error."""
    return error_response(message, ErrorCode.INTERNAL_ERROR, 500, log_error=True, details=details)
