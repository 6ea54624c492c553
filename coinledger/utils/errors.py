"""
Standardized error response utilities for the coin ledger API.

Provides consistent error response format across all endpoints:
{
    "error": {
        "message": "User-friendly error message",
        "code": "ERROR_CODE"
    }
}

Usage:
    from coinledger.utils.errors import error_response, ErrorCode

    return error_response("Balance not found", ErrorCode.NOT_FOUND, 404)
"""
import logging
from enum import Enum
from flask import jsonify
from typing import Optional

from .exceptions import (
    CoinLedgerError,
    ValidationError,
    NotFoundError,
    InsufficientBalanceError,
    DuplicateError,
    PersistenceError,
    ConcurrentUpdateError,
)

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Validation Errors (400)
    INVALID_REQUEST = "INVALID_REQUEST"

    # Not Found (404)
    NOT_FOUND = "NOT_FOUND"

    # Conflict (409)
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    CONCURRENT_UPDATE = "CONCURRENT_UPDATE"

    # Business Logic Errors (422)
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"

    # Server Errors (500, 503)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"


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
        code: Error code from ErrorCode enum (or a raw code string)
        status_code: HTTP status code
        log_error: Whether to log the error
        details: Optional additional details (only logged, not returned to user)

    Returns:
        Tuple of (response, status_code) for Flask
    """
    code_value = code.value if isinstance(code, ErrorCode) else code

    if log_error and status_code >= 500:
        logger.error(f"API Error [{code_value}]: {message}", extra={"details": details})
    elif log_error and status_code >= 400:
        logger.warning(f"API Error [{code_value}]: {message}", extra={"details": details})

    response = {
        "error": {
            "message": message,
            "code": code_value
        }
    }

    return jsonify(response), status_code


def internal_error(message: str = "An unexpected error occurred", details: Optional[dict] = None) -> tuple:
    """500 Internal Server Error."""
    return error_response(message, ErrorCode.INTERNAL_ERROR, 500, log_error=True, details=details)


def ledger_error_response(error: CoinLedgerError) -> tuple:
    """
    Map a ledger exception to its HTTP error response.

    InsufficientBalanceError is an expected outcome and is not logged;
    persistence failures are logged as errors.
    """
    if isinstance(error, ValidationError):
        return error_response(error.message, error.code, 400, log_error=False)
    if isinstance(error, NotFoundError):
        return error_response(error.message, error.code, 404, log_error=False)
    if isinstance(error, InsufficientBalanceError):
        return error_response(error.message, ErrorCode.INSUFFICIENT_BALANCE, 422, log_error=False)
    if isinstance(error, DuplicateError):
        return error_response(error.message, ErrorCode.DUPLICATE_ENTRY, 409, log_error=False)
    if isinstance(error, ConcurrentUpdateError):
        return error_response(error.message, ErrorCode.CONCURRENT_UPDATE, 409)
    if isinstance(error, PersistenceError):
        return error_response(
            "The coin ledger is temporarily unavailable",
            ErrorCode.PERSISTENCE_ERROR,
            503,
            details={'error': error.message},
        )
    return internal_error(details={'error': error.message})
