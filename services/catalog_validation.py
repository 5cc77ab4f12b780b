"""
Row-level validation for wholesaler catalog rows.

validate_row() is pure: it never looks at the existing catalog. Every
problem becomes a FieldError on the returned RowOutcome, so one bad row
never stops the file.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Type

from models.catalog import (
    Category,
    FieldError,
    ProductRecord,
    RowOutcome,
    RowStatus,
    RowWarning,
    StockStatus,
    UnitType,
)
from parsers.catalog_parser import COLUMN_HEADERS, ParsedRow
from utils.text_utils import clean_text, normalize_token

MAX_CODE_LENGTH = 100
MAX_NAME_LENGTH = 200
LONG_DESCRIPTION_LENGTH = 1000

# Column limits: NUMERIC(12, 2) prices, INTEGER quantities
MAX_PRICE = Decimal("9999999999.99")
CENT = Decimal("0.01")
MAX_INTEGER = 2147483647

_WHOLE_NUMBER = re.compile(r"^(-?\d+)(?:\.0+)?$")

REQUIRED_FIELDS = ("product_code", "product_name", "category", "wholesale_price")


@dataclass
class RowValidation:
    """Outcome of one row plus any advisories it raised."""
    outcome: RowOutcome
    warnings: list[RowWarning] = field(default_factory=list)


class _RowChecker:
    """Collects errors and warnings while coercing one row."""

    def __init__(self, row: ParsedRow):
        self.row = row
        self.errors: list[FieldError] = []
        self.warnings: list[RowWarning] = []

    def raw(self, name: str) -> str:
        return self.row.fields.get(name, "") or ""

    def error(self, name: str, message: str) -> None:
        self.errors.append(FieldError(
            field=name,
            column=COLUMN_HEADERS.get(name),
            message=message
        ))

    def warn(self, name: str, message: str) -> None:
        self.warnings.append(RowWarning(
            row_number=self.row.row_number,
            field=name,
            message=message
        ))

    # ===================
    # COERCIONS
    # ===================

    def text(self, name: str, max_length: Optional[int] = None) -> Optional[str]:
        value = clean_text(self.raw(name))
        if value is None:
            if name in REQUIRED_FIELDS:
                self.error(name, f"{COLUMN_HEADERS[name]} is required")
            return None
        if max_length is not None and len(value) > max_length:
            self.error(
                name,
                f"{COLUMN_HEADERS[name]} is too long (max {max_length} characters)"
            )
            return None
        return value

    def decimal(self, name: str) -> Optional[Decimal]:
        raw = self.raw(name).strip()
        if not raw:
            if name in REQUIRED_FIELDS:
                self.error(name, f"{COLUMN_HEADERS[name]} is required")
            return None
        try:
            value = Decimal(raw)
        except InvalidOperation:
            self.error(name, f"{COLUMN_HEADERS[name]} must be a number, got '{raw}'")
            return None
        if not value.is_finite():
            self.error(name, f"{COLUMN_HEADERS[name]} must be a number, got '{raw}'")
            return None
        if value < 0:
            self.error(name, f"{COLUMN_HEADERS[name]} must not be negative")
            return None
        if value > MAX_PRICE:
            self.error(name, f"{COLUMN_HEADERS[name]} must be at most {MAX_PRICE}")
            return None
        # Stored as NUMERIC(12, 2)
        if value != value.quantize(CENT):
            self.error(name, f"{COLUMN_HEADERS[name]} must have at most 2 decimal places, got '{raw}'")
            return None
        return value

    def positive_int(self, name: str, default: int = 1) -> Optional[int]:
        raw = self.raw(name).strip()
        if not raw:
            return default
        match = _WHOLE_NUMBER.match(raw)
        if match is None:
            self.error(name, f"{COLUMN_HEADERS[name]} must be a whole number, got '{raw}'")
            return None
        text = match.group(1)
        digits = text.lstrip("-").lstrip("0")
        if text.startswith("-") or not digits:
            self.error(name, f"{COLUMN_HEADERS[name]} must be at least 1")
            return None
        # Length check first keeps int() bounded
        if len(digits) > len(str(MAX_INTEGER)) or int(digits) > MAX_INTEGER:
            self.error(name, f"{COLUMN_HEADERS[name]} must be at most {MAX_INTEGER}")
            return None
        return int(digits)

    def choice(self, name: str, enum: Type[Enum], default: Optional[Enum] = None):
        raw = self.raw(name).strip()
        if not raw:
            if default is None:
                self.error(name, f"{COLUMN_HEADERS[name]} is required")
            return default
        token = normalize_token(raw)
        try:
            return enum(token)
        except ValueError:
            allowed = ", ".join(member.value for member in enum)
            self.error(
                name,
                f"Invalid {COLUMN_HEADERS[name].lower()} '{raw}'. Must be one of: {allowed}"
            )
            return None


def validate_row(row: ParsedRow) -> RowValidation:
    """
    Validate and coerce one parsed catalog row.

    Args:
        row: Header-mapped row from the parser

    Returns:
        RowValidation whose outcome is VALID (with a typed ProductRecord,
        defaults applied) or INVALID (with every field error found)
    """
    check = _RowChecker(row)

    for message in row.structural_errors:
        check.error("row", message)

    values = {
        "product_code": check.text("product_code", MAX_CODE_LENGTH),
        "product_name": check.text("product_name", MAX_NAME_LENGTH),
        "category": check.choice("category", Category),
        "subcategory": check.text("subcategory"),
        "description": check.text("description"),
        "unit_type": check.choice("unit_type", UnitType, default=UnitType.LINEAR_FOOT),
        "wholesale_price": check.decimal("wholesale_price"),
        "suggested_retail": check.decimal("suggested_retail"),
        "min_quantity": check.positive_int("min_quantity"),
        "pack_size": check.positive_int("pack_size"),
        "lead_time": check.text("lead_time"),
        "stock_status": check.choice("stock_status", StockStatus, default=StockStatus.AVAILABLE),
        "catalog_page": check.text("catalog_page"),
    }

    wholesale = values["wholesale_price"]
    retail = values["suggested_retail"]
    if wholesale is not None and retail is not None and retail < wholesale:
        check.warn(
            "suggested_retail",
            f"Row {row.row_number}: Suggested Retail ({retail}) is less than "
            f"Wholesale Price ({wholesale})"
        )

    description = values["description"]
    if description and len(description) > LONG_DESCRIPTION_LENGTH:
        check.warn(
            "description",
            f"Row {row.row_number}: Description is very long "
            f"(over {LONG_DESCRIPTION_LENGTH} characters)"
        )

    if check.errors:
        outcome = RowOutcome(
            row_number=row.row_number,
            status=RowStatus.INVALID,
            product_code=values["product_code"] or clean_text(row.fields.get("product_code")),
            field_errors=check.errors,
        )
    else:
        record = ProductRecord(**values)
        outcome = RowOutcome(
            row_number=row.row_number,
            status=RowStatus.VALID,
            product_code=record.product_code,
            record=record,
        )

    return RowValidation(outcome=outcome, warnings=check.warnings)
