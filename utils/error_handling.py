"""
Centralized error handling utilities for consistent error responses
"""

from typing import Optional, Any, Dict

from fastapi import status
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.orm import Session

from utils.structured_logging import get_logger, LogCategory

logger = get_logger("errors")


class PortalError(Exception):
    """Base class for errors that are shown to the user as a notification"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    title = "Operation failed"

    def __init__(self, message: str, title: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if title:
            self.title = title

    def to_notice(self) -> Dict[str, str]:
        return {"title": self.title, "description": self.message, "variant": "destructive"}


class NotFoundError(PortalError):
    """Referenced entity is absent"""

    status_code = status.HTTP_404_NOT_FOUND
    title = "Not found"


class ConflictError(PortalError):
    """Duplicate unique key or blocked by dependent records"""

    status_code = status.HTTP_409_CONFLICT
    title = "Conflict"


class InvalidInputError(PortalError):
    """Malformed form data, wrong file type or missing required field"""

    status_code = status.HTTP_400_BAD_REQUEST
    title = "Invalid input"


class UnauthorizedError(PortalError):
    status_code = status.HTTP_401_UNAUTHORIZED
    title = "Authentication required"


class ForbiddenError(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    title = "Access denied"


class DependencyFailure(PortalError):
    """An external collaborator (database, auth provider, storage) failed"""

    status_code = status.HTTP_502_BAD_GATEWAY
    title = "Service unavailable"


class RouteDenied(PortalError):
    """Route guard refused the navigation and names where to go instead"""

    def __init__(self, message: str, status_code: int, redirect_to: str):
        super().__init__(message, title="Access denied")
        self.status_code = status_code
        self.redirect_to = redirect_to


def handle_database_error(e: Exception, operation: str = "database operation") -> None:
    """
    Translate database errors into portal errors

    Args:
        e: The exception that occurred
        operation: Description of the operation that failed
    """
    if isinstance(e, PortalError):
        raise e
    if isinstance(e, IntegrityError):
        logger.warning(f"Database integrity error during {operation}: {str(e)}", category=LogCategory.DATABASE)
        raise ConflictError("This operation conflicts with existing data.") from e
    if isinstance(e, SQLAlchemyError):
        logger.error(f"Database error during {operation}", category=LogCategory.DATABASE, exception=e)
        raise DependencyFailure("Database operation failed. Please try again later.") from e
    logger.error(f"Unexpected error during {operation}", exception=e)
    raise DependencyFailure("An unexpected error occurred. Please try again later.") from e


def safe_database_operation(db: Session, operation_name: str):
    """
    Context manager for safe database operations with automatic rollback

    Usage:
        with safe_database_operation(db, "create subject"):
            db.add(subject)
            db.commit()
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
                handle_database_error(exc_val, self.operation_name)
            return False

    return DatabaseOperationContext(db, operation_name)


def validate_resource_exists(resource: Any, resource_name: str, resource_id: Any) -> None:
    """
    Validate that a resource exists, raise NotFoundError if not

    Args:
        resource: The resource object (None if not found)
        resource_name: Name of the resource for error message
        resource_id: ID of the resource that was searched for
    """
    if not resource:
        logger.warning(f"{resource_name} not found: {resource_id}")
        raise NotFoundError(f"{resource_name} not found")


def log_operation_success(operation: str, details: Optional[str] = None) -> None:
    """Log successful operations for audit purposes"""
    if details:
        logger.info(f"Operation successful: {operation} - {details}", category=LogCategory.BUSINESS)
    else:
        logger.info(f"Operation successful: {operation}", category=LogCategory.BUSINESS)


def error_payload(
    status_code: int,
    error_message: str,
    details: Any = None,
    request_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Standard error body shared by all exception handlers"""
    content = {
        "success": False,
        "error": error_message,
        "detail": details if details is not None else error_message,
        "status_code": status_code,
        "request_id": request_id,
        "correlation_id": correlation_id,
    }
    return content
