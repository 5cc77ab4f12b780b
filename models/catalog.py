"""
Wholesale catalog schemas.

Covers the product record itself, per-row validation outcomes, the
validation report returned before an import, the import plan and the final
import report.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import Field

from models.base import BaseSchema


class Category(str, Enum):
    """Product categories."""
    FRAME = "frame"
    MAT = "mat"
    GLAZING = "glazing"
    HARDWARE = "hardware"
    MOUNTING = "mounting"
    OTHER = "other"


class UnitType(str, Enum):
    """How a product is priced and sold."""
    LINEAR_FOOT = "linear_foot"
    SQUARE_FOOT = "square_foot"
    EACH = "each"
    BOX = "box"
    SHEET = "sheet"
    ROLL = "roll"


class StockStatus(str, Enum):
    """Wholesaler stock availability."""
    AVAILABLE = "available"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    DISCONTINUED = "discontinued"


class ImportMode(str, Enum):
    """
    Import policy.

    REPLACE: drop the existing catalog, insert every valid row
    APPEND:  insert new codes only, skip codes already in the catalog
    UPDATE:  insert new codes, overwrite existing codes whose content changed
    """
    REPLACE = "replace"
    APPEND = "append"
    UPDATE = "update"


class RowStatus(str, Enum):
    """
    Disposition of one input row.

    VALID and INVALID come from the row validator. Reconciliation turns
    every VALID row into NEW, DUPLICATE or UPDATE (or INVALID when the code
    repeats within the same file).
    """
    VALID = "valid"
    INVALID = "invalid"
    NEW = "new"
    DUPLICATE = "duplicate"
    UPDATE = "update"


class PlanAction(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"


class ImportStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Fields compared when deciding duplicate vs update (last_updated excluded)
CONTENT_FIELDS = (
    "product_code",
    "product_name",
    "category",
    "subcategory",
    "description",
    "unit_type",
    "wholesale_price",
    "suggested_retail",
    "min_quantity",
    "pack_size",
    "lead_time",
    "stock_status",
    "catalog_page",
)


# ===================
# PRODUCT RECORD
# ===================

class ProductRecord(BaseSchema):
    """
    One wholesaler catalog line item.

    product_code is unique within a wholesaler's catalog.
    """

    product_code: str = Field(..., min_length=1, max_length=100)
    product_name: str = Field(..., min_length=1, max_length=200)
    category: Category
    subcategory: Optional[str] = None
    description: Optional[str] = None
    unit_type: UnitType = UnitType.LINEAR_FOOT
    wholesale_price: Decimal = Field(..., ge=0)
    suggested_retail: Optional[Decimal] = Field(None, ge=0)
    min_quantity: int = Field(default=1, ge=1)
    pack_size: int = Field(default=1, ge=1)
    lead_time: Optional[str] = None
    stock_status: StockStatus = StockStatus.AVAILABLE
    catalog_page: Optional[str] = None
    last_updated: Optional[datetime] = Field(
        None,
        description="Set by the store when the record is written"
    )

    def changed_fields(self, other: "ProductRecord") -> list[str]:
        """Content fields whose values differ from `other`."""
        return [
            name for name in CONTENT_FIELDS
            if getattr(self, name) != getattr(other, name)
        ]

    def stamped(self, timestamp: datetime) -> "ProductRecord":
        """Copy of this record carrying a new last_updated value."""
        return self.model_copy(update={"last_updated": timestamp})


# ===================
# ROW OUTCOMES
# ===================

class FieldError(BaseSchema):
    """A single field-level problem on one row."""
    field: str = Field(..., description="Record field name, or 'row' for structural errors")
    column: Optional[str] = Field(None, description="Column header shown to the user")
    message: str


class RowWarning(BaseSchema):
    """Non-fatal advisory attached to a report."""
    row_number: int
    field: Optional[str] = None
    message: str


class RowOutcome(BaseSchema):
    """Tagged result of validating and reconciling one input row."""
    row_number: int
    status: RowStatus
    product_code: Optional[str] = None
    record: Optional[ProductRecord] = None
    field_errors: list[FieldError] = Field(default_factory=list)
    changed_fields: list[str] = Field(default_factory=list)

    @property
    def is_invalid(self) -> bool:
        return self.status == RowStatus.INVALID


class ReconciliationNote(BaseSchema):
    """Why a row was skipped or overwritten."""
    row_number: int
    product_code: str
    status: RowStatus
    action: PlanAction
    message: str


# ===================
# STATS
# ===================

class PriceRange(BaseSchema):
    min: Decimal
    max: Decimal


class CatalogStats(BaseSchema):
    """Summary of a catalog, committed or projected from a validated file."""
    total_products: int = 0
    categories: dict[str, int] = Field(default_factory=dict)
    price_range: Optional[PriceRange] = None
    last_updated: Optional[datetime] = None


# ===================
# VALIDATION REPORT
# ===================

class RowErrorSummary(BaseSchema):
    """All field errors of one invalid row."""
    row_number: int
    product_code: Optional[str] = None
    errors: list[FieldError]


class RowPreview(BaseSchema):
    """Compact row shown in the upload preview table."""
    row_number: int
    status: RowStatus
    product_code: Optional[str] = None
    product_name: Optional[str] = None
    category: Optional[str] = None
    wholesale_price: Optional[Decimal] = None
    suggested_retail: Optional[Decimal] = None
    changed_fields: list[str] = Field(default_factory=list)


class ValidationReport(BaseSchema):
    """
    Result of one parse + validate + reconcile pass.

    valid + invalid == total_rows; new, duplicates and updates partition
    the valid rows.
    """
    wholesaler_id: str
    total_rows: int = 0
    valid: int = 0
    invalid: int = 0
    new: int = 0
    duplicates: int = 0
    updates: int = 0
    warnings: list[RowWarning] = Field(default_factory=list)
    errors: list[RowErrorSummary] = Field(default_factory=list)
    preview: list[RowPreview] = Field(default_factory=list)
    ignored_columns: list[str] = Field(default_factory=list)
    stats: CatalogStats = Field(default_factory=CatalogStats)


# ===================
# IMPORT PLAN / REPORT
# ===================

class PlanItem(BaseSchema):
    row_number: int
    action: PlanAction
    status: RowStatus
    record: ProductRecord
    note: Optional[str] = None


class ImportPlan(BaseSchema):
    """Reconciled rows plus the chosen mode, ready for the executor."""
    wholesaler_id: str
    mode: ImportMode
    total_rows: int = 0
    invalid: int = 0
    items: list[PlanItem] = Field(default_factory=list)

    @property
    def writes(self) -> list[PlanItem]:
        return [item for item in self.items if item.action != PlanAction.SKIP]

    @property
    def skips(self) -> list[PlanItem]:
        return [item for item in self.items if item.action == PlanAction.SKIP]


class ImportProgress(BaseSchema):
    """Progress notification emitted after each committed batch."""
    wholesaler_id: str
    fraction: float = Field(..., ge=0.0, le=1.0)
    batches_completed: int
    batches_total: int
    rows_processed: int
    rows_total: int


class RowFailure(BaseSchema):
    row_number: int
    product_code: str
    error: str


class ImportReport(BaseSchema):
    """
    Final accounting of one import.

    For append/update a failed or cancelled job may still have committed
    earlier batches: inserted/updated count exactly what was written.
    """
    wholesaler_id: str
    mode: ImportMode
    status: ImportStatus
    total_rows: int = 0
    invalid: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    deleted: int = 0
    batches_committed: int = 0
    failures: list[RowFailure] = Field(default_factory=list)
    unprocessed_rows: list[int] = Field(default_factory=list)
    notes: list[ReconciliationNote] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    message: Optional[str] = None
