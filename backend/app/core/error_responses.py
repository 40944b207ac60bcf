"""
Standardized error response messages and builders.

This module provides consistent error messages and HTTPException builders
for the entire API. Using these utilities ensures:

1. Consistent message format across all endpoints
2. User-friendly error messages without leaking implementation details
3. Clear separation of user-facing messages from log messages

Error Message Format Guidelines:
- Use sentence case (capitalize first letter only)
- End with a period for complete sentences
- Include relevant IDs in parentheses when helpful for debugging: "(ID: abc)"
- Use "Please try again later." for transient server errors

Usage:
    from app.core.error_responses import ErrorMessages, raise_not_found

    # Using predefined messages:
    raise_not_found(ErrorMessages.NO_ITEMS_AVAILABLE)

    # Mapping an engine error to its HTTP status:
    except CATError as e:
        raise_for_cat_error(e)
"""

from typing import Dict, NoReturn, Optional

from fastapi import HTTPException, status

from app.core.cat.errors import (
    CATError,
    ConcurrentModificationError,
    ExhaustedBankError,
    InvalidAnswerError,
    SessionAlreadyCompletedError,
    SessionNotCompletedError,
    SessionNotFoundError,
)

# Seconds a client should wait before retrying a conflicting write
RETRY_AFTER_SECONDS = 1


class ErrorMessages:
    """Centralized error message constants and templates.

    Naming Convention:
    - Constants: SCREAMING_SNAKE_CASE for static messages
    - Methods: snake_case for templates that accept parameters
    """

    # ==========================================================================
    # Not Found Errors (404)
    # ==========================================================================
    SESSION_NOT_FOUND = "Test session not found."
    NO_ITEMS_AVAILABLE = "No questions are available for an adaptive test."

    # ==========================================================================
    # Conflict Errors (409)
    # ==========================================================================
    SESSION_ALREADY_COMPLETED = (
        "Test session is already completed. Completed sessions cannot be modified."
    )
    SESSION_NOT_COMPLETED = (
        "Test session is still in progress. Results are available once it ends."
    )
    CONCURRENT_MODIFICATION = (
        "Another answer for this session is being processed. Please try again."
    )

    # ==========================================================================
    # Bad Request Errors (400)
    # ==========================================================================
    INVALID_ANSWER = "The submitted answer is not valid for this question."

    # ==========================================================================
    # Server Errors (500)
    # ==========================================================================
    INTERNAL_ERROR = "An unexpected error occurred. Please try again later."

    # ==========================================================================
    # Template Methods for Dynamic Messages
    # ==========================================================================
    @staticmethod
    def session_not_found(session_id: str) -> str:
        """Message when a specific session is not found."""
        return f"Test session not found (ID: {session_id})."

    @staticmethod
    def invalid_answer(reason: str) -> str:
        """Message for an answer rejected by validation."""
        return f"The submitted answer is not valid: {reason[:1].lower()}{reason[1:]}."

    @staticmethod
    def database_operation_failed(operation: str) -> str:
        """Generic message for database operation failures."""
        return f"Failed to {operation}. Please try again later."


# ==============================================================================
# HTTPException Builder Functions
# ==============================================================================


def raise_bad_request(detail: str) -> NoReturn:
    """Raise a 400 Bad Request exception.

    Use for client errors where the request is malformed or invalid.

    Args:
        detail: User-facing error message

    Raises:
        HTTPException: 400 Bad Request
    """
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=detail,
    )


def raise_not_found(detail: str) -> NoReturn:
    """Raise a 404 Not Found exception.

    Use when a requested resource doesn't exist.

    Args:
        detail: User-facing error message

    Raises:
        HTTPException: 404 Not Found
    """
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=detail,
    )


def raise_conflict(detail: str, retry_after: Optional[int] = None) -> NoReturn:
    """Raise a 409 Conflict exception.

    Use when the request conflicts with current state.

    Args:
        detail: User-facing error message
        retry_after: Seconds before a retry may succeed; sets Retry-After

    Raises:
        HTTPException: 409 Conflict
    """
    headers: Optional[Dict[str, str]] = None
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=detail,
        headers=headers,
    )


def raise_server_error(
    detail: str,
    error_id: Optional[str] = None,
) -> NoReturn:
    """Raise a 500 Internal Server Error exception.

    Use for unexpected server errors. Always use user-friendly messages;
    log technical details separately.

    Args:
        detail: User-facing error message (should be generic and friendly)
        error_id: Optional error tracking ID to include in response

    Raises:
        HTTPException: 500 Internal Server Error
    """
    if error_id:
        detail = f"{detail} (Error ID: {error_id})"

    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=detail,
    )


def raise_for_cat_error(error: CATError) -> NoReturn:
    """Translate an engine error into its HTTP response.

    Args:
        error: Error raised by the CAT service

    Raises:
        HTTPException: 404, 409 or 400 depending on the error type
    """
    if isinstance(error, SessionNotFoundError):
        session_id = error.context.get("session_id")
        raise_not_found(
            ErrorMessages.session_not_found(session_id)
            if session_id
            else ErrorMessages.SESSION_NOT_FOUND
        )
    if isinstance(error, ExhaustedBankError):
        raise_not_found(ErrorMessages.NO_ITEMS_AVAILABLE)
    if isinstance(error, SessionAlreadyCompletedError):
        raise_conflict(ErrorMessages.SESSION_ALREADY_COMPLETED)
    if isinstance(error, SessionNotCompletedError):
        raise_conflict(ErrorMessages.SESSION_NOT_COMPLETED)
    if isinstance(error, ConcurrentModificationError):
        raise_conflict(
            ErrorMessages.CONCURRENT_MODIFICATION, retry_after=RETRY_AFTER_SECONDS
        )
    if isinstance(error, InvalidAnswerError):
        raise_bad_request(ErrorMessages.invalid_answer(error.message))
    raise_server_error(ErrorMessages.INTERNAL_ERROR)
