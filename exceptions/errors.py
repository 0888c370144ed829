"""
Custom exception classes for the application.

Error codes follow the RESOURCE_PROBLEM convention and every error
serializes to the same JSON envelope via to_dict().
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "SOURCE_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# SOURCE ERRORS
# ===================

class SourceNotFoundError(NotFoundError):
    """Sheet source not found in the workspace."""

    def __init__(self, source_id: str):
        super().__init__(
            resource="Source",
            identifier=source_id,
            code="SOURCE_NOT_FOUND"
        )


class InvalidSourceReferenceError(ValidationError):
    """Source location does not resolve to a spreadsheet."""

    def __init__(self, reference: Optional[str]):
        super().__init__(
            code="INVALID_SOURCE_REFERENCE",
            message="Source does not reference a valid spreadsheet",
            details={"provided": reference}
        )


class SourceInactiveError(ValidationError):
    """Source is disabled."""

    def __init__(self, source_id: str):
        super().__init__(
            code="SOURCE_INACTIVE",
            message="Source is disabled, activate it before syncing",
            details={"source_id": source_id}
        )


# ===================
# SYNC ERRORS
# ===================

class SyncAlreadyRunningError(ConflictError):
    """A run already holds the lock for this (workspace, source)."""

    def __init__(self, workspace_id: str, source_id: str, retry_after: int):
        self.retry_after = retry_after
        super().__init__(
            code="SYNC_ALREADY_RUNNING",
            message=f"Sync already running for this source, retry after {retry_after}s",
            details={
                "workspace_id": workspace_id,
                "source_id": source_id,
                "retry_after": retry_after,
            }
        )


class SheetFetchError(ExternalServiceError):
    """Remote sheet unreachable or returned a malformed response."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            service="google_sheets",
            message=message,
            details=details
        )


class SyncCancelledError(AppError):
    """Run aborted at a cancellation checkpoint."""

    def __init__(self, run_id: str, checkpoint: str):
        self.checkpoint = checkpoint
        super().__init__(
            code="SYNC_CANCELLED",
            message="Sync cancelled",
            status_code=499,
            details={"run_id": run_id, "checkpoint": checkpoint}
        )


# ===================
# ORDER ERRORS
# ===================

class OrderNotFoundError(NotFoundError):
    """Order not found."""

    def __init__(self, order_id: str):
        super().__init__(
            resource="Order",
            identifier=order_id,
            code="ORDER_NOT_FOUND"
        )
