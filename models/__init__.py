"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema
from models.catalog import (
    Category,
    UnitType,
    StockStatus,
    ImportMode,
    RowStatus,
    PlanAction,
    ImportStatus,
    ProductRecord,
    FieldError,
    RowWarning,
    RowOutcome,
    ReconciliationNote,
    PriceRange,
    CatalogStats,
    RowErrorSummary,
    RowPreview,
    ValidationReport,
    PlanItem,
    ImportPlan,
    ImportProgress,
    RowFailure,
    ImportReport,
)

__all__ = [
    # Base
    "BaseSchema",

    # Enums
    "Category",
    "UnitType",
    "StockStatus",
    "ImportMode",
    "RowStatus",
    "PlanAction",
    "ImportStatus",

    # Records and outcomes
    "ProductRecord",
    "FieldError",
    "RowWarning",
    "RowOutcome",
    "ReconciliationNote",

    # Reports
    "PriceRange",
    "CatalogStats",
    "RowErrorSummary",
    "RowPreview",
    "ValidationReport",
    "PlanItem",
    "ImportPlan",
    "ImportProgress",
    "RowFailure",
    "ImportReport",
]
