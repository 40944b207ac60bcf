"""
Error taxonomy for the CAT engine.

Every failure the adaptive loop can surface is a subclass of ``CATError`` so
callers (the service layer and the HTTP boundary) can handle the full set
exhaustively. All errors are local to one session.

    SessionNotFoundError          unknown or expired session id
    SessionAlreadyCompletedError  mutation attempted on a completed session
    SessionNotCompletedError      result requested while the session is active
    InvalidAnswerError            malformed answer, no state mutated
    ExhaustedBankError            no eligible item remains
    EstimationError               non-finite ability estimate or SE
    ConcurrentModificationError   concurrent write on one session (retryable)
"""

from typing import Any, Dict, Optional


class CATError(Exception):
    """Base exception for adaptive testing errors."""

    retryable = False

    def __init__(  # noqa: D107
        self,
        message: str,
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.original_error = original_error
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            msg = f"{msg} (context: {ctx_str})"
        if self.original_error:
            msg = f"{msg} - caused by: {str(self.original_error)}"
        return msg


class SessionNotFoundError(CATError):
    """Raised when a session id does not resolve to a stored session."""


class SessionAlreadyCompletedError(CATError):
    """Raised when a completed (immutable) session is asked to change."""


class SessionNotCompletedError(CATError):
    """Raised when a final result is requested for a still-active session."""


class InvalidAnswerError(CATError):
    """Raised for answers that cannot be scored against the presented item."""


class ExhaustedBankError(CATError):
    """Raised when the item bank has no eligible item left for the session."""


class EstimationError(CATError):
    """Raised when ability estimation produces a non-finite value."""


class ConcurrentModificationError(CATError):
    """Raised when another submission is already in flight for the session."""

    retryable = True
