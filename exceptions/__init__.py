"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    ValidationError,
    ConflictError,
    DatabaseError,

    # Catalog files
    CatalogParseError,
    CatalogFileTypeError,
    CatalogFileTooLargeError,

    # Imports
    ImportInProgressError,
    InvalidJobStateError,
    ImportBatchError,
)

__all__ = [
    # Base
    "AppError",
    "ValidationError",
    "ConflictError",
    "DatabaseError",

    # Catalog files
    "CatalogParseError",
    "CatalogFileTypeError",
    "CatalogFileTooLargeError",

    # Imports
    "ImportInProgressError",
    "InvalidJobStateError",
    "ImportBatchError",
]
