"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ExternalServiceError,
    DatabaseError,

    # Sources
    SourceNotFoundError,
    InvalidSourceReferenceError,
    SourceInactiveError,

    # Sync runs
    SyncAlreadyRunningError,
    SheetFetchError,
    SyncCancelledError,

    # Orders
    OrderNotFoundError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",
    "DatabaseError",

    # Sources
    "SourceNotFoundError",
    "InvalidSourceReferenceError",
    "SourceInactiveError",

    # Sync runs
    "SyncAlreadyRunningError",
    "SheetFetchError",
    "SyncCancelledError",

    # Orders
    "OrderNotFoundError",
]
