"""
Error taxonomy for the quiz engine and helpers for consistent error responses
"""

from typing import Any, Optional

from fastapi import status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from utils.structured_logging import LogCategory, get_logger

logger = get_logger("errors")


class QuizEngineError(Exception):
    """Base class for recoverable engine errors surfaced at the request boundary"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "Quiz engine error"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(QuizEngineError):
    """Malformed or incomplete request (missing coordinate fields, empty answers)"""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "Validation Error"


class ContentUnavailable(QuizEngineError):
    """No chapter text exists for the requested curriculum coordinate"""

    status_code = status.HTTP_404_NOT_FOUND
    error = "Content Unavailable"


class GenerationFailed(QuizEngineError):
    """The question generator errored, timed out or returned nothing usable"""

    status_code = status.HTTP_502_BAD_GATEWAY
    error = "Generation Failed"


class NotFoundError(QuizEngineError):
    """Referenced question set, attempt or statistics record does not exist"""

    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"


class ConcurrencyConflict(QuizEngineError):
    """A conditional write lost repeatedly to concurrent writers; reload and retry"""

    status_code = status.HTTP_409_CONFLICT
    error = "Concurrency Conflict"


class InvariantViolation(AssertionError):
    """Internal invariant broken. A programmer error, never reported to clients in detail."""


def require_found(resource: Any, resource_name: str, resource_id: Any) -> Any:
    """
    Return the resource or raise NotFoundError

    Args:
        resource: The resource object (None if not found)
        resource_name: Name of the resource for error message
        resource_id: ID of the resource that was searched for
    """
    if resource is None:
        logger.warning(f"{resource_name} not found: {resource_id}")
        raise NotFoundError(f"{resource_name} not found", details={"id": str(resource_id)})
    return resource


def safe_database_operation(db: Session, operation_name: str):
    """
    Context manager for store writes with automatic rollback

    Usage:
        with safe_database_operation(db, "insert question set"):
            db.add(record)
            db.commit()

    IntegrityError and StaleDataError are re-raised untouched so callers can
    treat them as write conflicts; other SQLAlchemy errors are logged and
    re-raised.
    """

    class DatabaseOperationContext:
        def __init__(self, db: Session, operation_name: str):
            self.db = db
            self.operation_name = operation_name

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            if exc_type:
                self.db.rollback()
                if issubclass(exc_type, (IntegrityError, StaleDataError)):
                    logger.warning(
                        f"Database integrity error during {self.operation_name}: {exc_val}",
                        category=LogCategory.DATABASE,
                    )
                elif issubclass(exc_type, SQLAlchemyError):
                    logger.error(
                        f"Database error during {self.operation_name}",
                        category=LogCategory.DATABASE,
                        exception=exc_val,
                    )
            return False

    return DatabaseOperationContext(db, operation_name)


def format_validation_errors(errors: list) -> list:
    """Flatten pydantic error dicts into field/message/code entries"""
    formatted_errors = []
    for error in errors:
        formatted_errors.append({
            "field": ".".join(str(loc) for loc in error.get("loc", [])),
            "message": error.get("msg", "Validation error"),
            "code": error.get("type", "validation_error"),
        })
    return formatted_errors
