"""
Custom exception classes for the application.

Every error that crosses a route boundary derives from AppError and carries
an error code, an HTTP status and a details dict.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "CATALOG_PARSE_ERROR")
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
# CATALOG FILE ERRORS
# ===================

class CatalogParseError(ValidationError):
    """Catalog file is not readable as the expected tabular format."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="CATALOG_PARSE_ERROR",
            message=message,
            details=details
        )


class CatalogFileTypeError(ValidationError):
    """Uploaded file is neither CSV nor Excel."""

    def __init__(self, filename: Optional[str], allowed: list[str]):
        super().__init__(
            code="CATALOG_FILE_TYPE",
            message="Only CSV and Excel (.xlsx) catalog files are allowed",
            details={"filename": filename, "allowed": allowed}
        )


class CatalogFileTooLargeError(AppError):
    """Uploaded file exceeds the configured size limit (413)."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            code="CATALOG_FILE_TOO_LARGE",
            message=f"Catalog file exceeds {limit // (1024 * 1024)} MB",
            status_code=413,
            details={"size": size, "limit": limit}
        )


# ===================
# IMPORT ERRORS
# ===================

class ImportInProgressError(ConflictError):
    """A catalog import is already running for this wholesaler."""

    def __init__(self, wholesaler_id: str):
        super().__init__(
            code="IMPORT_IN_PROGRESS",
            message="Another catalog import is already running for this wholesaler",
            details={"wholesaler_id": wholesaler_id}
        )


class InvalidJobStateError(ConflictError):
    """Import job was asked to do something its current state forbids."""

    def __init__(self, current_state: str, requested_state: str):
        super().__init__(
            code="INVALID_IMPORT_STATE",
            message=f"Cannot move import job from {current_state} to {requested_state}",
            details={
                "current_state": current_state,
                "requested_state": requested_state
            }
        )


class ImportBatchError(DatabaseError):
    """A batch of catalog rows failed to commit."""

    def __init__(
        self,
        message: str,
        row_numbers: Optional[list[int]] = None
    ):
        super().__init__(
            operation="batch write",
            message=message,
            details={"row_numbers": row_numbers or []}
        )
