"""
Database transaction and error handling utilities.

This module provides the unit-of-work context manager used by the CAT
service. It centralizes the common pattern of:
1. Committing when the wrapped block succeeds
2. Rolling back the database session on any error
3. Wrapping low-level SQLAlchemy failures with operation context

Usage:
    from app.core.db_error_handling import transaction

    with transaction(db, "submit answer"):
        session = repository.get(session_id)
        ...
        repository.save(session)
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session


logger = logging.getLogger(__name__)


class DatabaseOperationError(Exception):
    """Exception raised when a database operation fails.

    This exception wraps database errors with additional context about
    the operation that failed. The HTTP layer converts it into a generic
    500 response; the original error is only logged.

    Attributes:
        operation_name: Human-readable name of the operation that failed
        original_error: The underlying exception that caused the failure
        message: The formatted error message
    """

    def __init__(
        self,
        operation_name: str,
        original_error: Exception,
        message: Optional[str] = None,
    ):
        """Initialize the database operation error.

        Args:
            operation_name: Human-readable name of the failed operation
            original_error: The underlying exception that caused the failure
            message: Optional custom error message. If not provided, a default
                message is generated from the operation name and error.
        """
        self.operation_name = operation_name
        self.original_error = original_error
        self.message = message or f"Failed to {operation_name}: {str(original_error)}"
        super().__init__(self.message)


@contextmanager
def transaction(
    db: Session,
    operation_name: str,
    *,
    commit: bool = True,
) -> Generator[None, None, None]:
    """Run a block as one unit of work.

    Args:
        db: The SQLAlchemy database session.
        operation_name: Human-readable name of the operation for error messages
            and logging (e.g., "submit answer", "complete session").
        commit: Commit when the block succeeds. Read-only callers pass False.

    Raises:
        DatabaseOperationError: If SQLAlchemy fails, with the session rolled back.
        Exception: Any other error is re-raised unchanged after the rollback.
    """
    try:
        yield
        if commit:
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"Database error during {operation_name}: {str(e)}",
            exc_info=True,
        )
        raise DatabaseOperationError(operation_name, e) from e
    except Exception:
        db.rollback()
        raise
