"""
Catalog file generation: blank template, sample catalog and catalog export.

All three use the import schema (parsers.catalog_parser.CATALOG_COLUMNS), so
every file produced here can be uploaded again as-is.
"""

from decimal import Decimal
from io import BytesIO
from typing import Iterable, Optional

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
import structlog

from exceptions import ValidationError
from models.catalog import ProductRecord
from parsers.catalog_parser import CATALOG_COLUMNS, CATALOG_HEADERS

logger = structlog.get_logger(__name__)

MEDIA_TYPES = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

_PRICE_FIELDS = {"wholesale_price", "suggested_retail"}
_INT_FIELDS = {"min_quantity", "pack_size"}

# One representative line per product family
EXAMPLE_ROWS: list[dict[str, str]] = [
    # Frames
    {
        "product_code": "LJ-W001",
        "product_name": 'Classic Oak Frame 1.5"',
        "category": "frame",
        "subcategory": "wood",
        "description": "Premium oak wood frame with natural finish, suitable for traditional artwork",
        "unit_type": "linear_foot",
        "wholesale_price": "12.50",
        "suggested_retail": "25.00",
        "min_quantity": "10",
        "pack_size": "10",
        "lead_time": "2-3 days",
        "stock_status": "available",
        "catalog_page": "15",
    },
    {
        "product_code": "LJ-W002",
        "product_name": 'Rustic Pine Frame 2"',
        "category": "frame",
        "subcategory": "wood",
        "description": "Distressed pine frame with vintage appeal",
        "unit_type": "linear_foot",
        "wholesale_price": "9.75",
        "suggested_retail": "19.50",
        "min_quantity": "8",
        "pack_size": "8",
        "lead_time": "2-3 days",
        "stock_status": "available",
        "catalog_page": "16",
    },
    {
        "product_code": "AL-M101",
        "product_name": 'Modern Aluminum Frame 1"',
        "category": "frame",
        "subcategory": "metal",
        "description": "Sleek brushed aluminum frame for contemporary art",
        "unit_type": "linear_foot",
        "wholesale_price": "15.00",
        "suggested_retail": "30.00",
        "min_quantity": "12",
        "pack_size": "12",
        "lead_time": "1 week",
        "stock_status": "available",
        "catalog_page": "25",
    },
    # Mats
    {
        "product_code": "CR-M002",
        "product_name": "Conservation Mat Board 32x40",
        "category": "mat",
        "subcategory": "conservation",
        "description": "Acid-free, museum quality mat board",
        "unit_type": "sheet",
        "wholesale_price": "8.75",
        "suggested_retail": "16.50",
        "min_quantity": "25",
        "pack_size": "25",
        "lead_time": "1 week",
        "stock_status": "available",
        "catalog_page": "42",
    },
    {
        "product_code": "ST-M003",
        "product_name": "Standard White Mat 32x40",
        "category": "mat",
        "subcategory": "standard",
        "description": "Clean white mat board for general framing",
        "unit_type": "sheet",
        "wholesale_price": "4.50",
        "suggested_retail": "9.00",
        "min_quantity": "50",
        "pack_size": "50",
        "lead_time": "2-3 days",
        "stock_status": "available",
        "catalog_page": "44",
    },
    {
        "product_code": "BL-M004",
        "product_name": "Black Core Mat 32x40",
        "category": "mat",
        "subcategory": "specialty",
        "description": "Black core mat for dramatic effect",
        "unit_type": "sheet",
        "wholesale_price": "6.25",
        "suggested_retail": "12.50",
        "min_quantity": "25",
        "pack_size": "25",
        "lead_time": "3-5 days",
        "stock_status": "available",
        "catalog_page": "45",
    },
    # Glazing
    {
        "product_code": "TG-UV003",
        "product_name": "UV Protection Glass 24x36",
        "category": "glazing",
        "subcategory": "specialty",
        "description": "99% UV protection museum glass",
        "unit_type": "each",
        "wholesale_price": "45.00",
        "suggested_retail": "85.00",
        "min_quantity": "1",
        "pack_size": "1",
        "lead_time": "3-5 days",
        "stock_status": "low_stock",
        "catalog_page": "78",
    },
    {
        "product_code": "PL-AC001",
        "product_name": "Clear Acrylic 24x36",
        "category": "glazing",
        "subcategory": "acrylic",
        "description": "Lightweight, shatter-resistant acrylic",
        "unit_type": "each",
        "wholesale_price": "28.00",
        "suggested_retail": "55.00",
        "min_quantity": "5",
        "pack_size": "5",
        "lead_time": "2-3 days",
        "stock_status": "available",
        "catalog_page": "80",
    },
    {
        "product_code": "GL-ST001",
        "product_name": "Standard Glass 24x36",
        "category": "glazing",
        "subcategory": "standard",
        "description": "Regular picture frame glass",
        "unit_type": "each",
        "wholesale_price": "12.00",
        "suggested_retail": "24.00",
        "min_quantity": "10",
        "pack_size": "10",
        "lead_time": "1-2 days",
        "stock_status": "available",
        "catalog_page": "82",
    },
    # Hardware
    {
        "product_code": "HW-WH001",
        "product_name": "D-Ring Hangers (100 pack)",
        "category": "hardware",
        "subcategory": "hanging",
        "description": "Heavy-duty D-ring hangers with screws",
        "unit_type": "box",
        "wholesale_price": "15.00",
        "suggested_retail": "30.00",
        "min_quantity": "1",
        "pack_size": "1",
        "lead_time": "In stock",
        "stock_status": "available",
        "catalog_page": "95",
    },
    {
        "product_code": "HW-WR002",
        "product_name": "Picture Wire 100ft",
        "category": "hardware",
        "subcategory": "hanging",
        "description": "Braided picture hanging wire, 30lb capacity",
        "unit_type": "roll",
        "wholesale_price": "8.50",
        "suggested_retail": "17.00",
        "min_quantity": "1",
        "pack_size": "1",
        "lead_time": "In stock",
        "stock_status": "available",
        "catalog_page": "96",
    },
    # Mounting
    {
        "product_code": "MT-FB001",
        "product_name": "Foam Board 32x40 White",
        "category": "mounting",
        "subcategory": "backing",
        "description": '3/16" white foam core backing board',
        "unit_type": "sheet",
        "wholesale_price": "3.75",
        "suggested_retail": "7.50",
        "min_quantity": "25",
        "pack_size": "25",
        "lead_time": "2-3 days",
        "stock_status": "available",
        "catalog_page": "110",
    },
    {
        "product_code": "MT-AT001",
        "product_name": "Acid-Free Mounting Tape",
        "category": "mounting",
        "subcategory": "adhesive",
        "description": 'Archival quality mounting tape, 1" x 150ft',
        "unit_type": "roll",
        "wholesale_price": "22.00",
        "suggested_retail": "44.00",
        "min_quantity": "1",
        "pack_size": "1",
        "lead_time": "3-5 days",
        "stock_status": "available",
        "catalog_page": "112",
    },
]


def check_format(fmt: str) -> str:
    """Normalize a format name, rejecting anything but csv/xlsx."""
    normalized = (fmt or "csv").lower().lstrip(".")
    if normalized not in MEDIA_TYPES:
        raise ValidationError(
            message=f"Unsupported catalog format '{fmt}'",
            code="CATALOG_FORMAT",
            details={"allowed": sorted(MEDIA_TYPES)}
        )
    return normalized


def _record_row(record: ProductRecord) -> dict[str, Optional[str]]:
    row: dict[str, Optional[str]] = {}
    for column in CATALOG_COLUMNS:
        value = getattr(record, column.field)
        if value is None:
            row[column.field] = None
        elif hasattr(value, "value"):
            row[column.field] = value.value
        else:
            row[column.field] = str(value)
    return row


# ===================
# WRITERS
# ===================

def _write_csv(rows: Iterable[dict]) -> bytes:
    df = pd.DataFrame(
        [[row.get(c.field) or "" for c in CATALOG_COLUMNS] for row in rows],
        columns=CATALOG_HEADERS,
        dtype=str,
    )
    return df.to_csv(index=False, lineterminator="\n").encode("utf-8")


def _xlsx_cell(field: str, value: Optional[str]):
    if value is None or value == "":
        return None
    if field in _PRICE_FIELDS:
        return float(Decimal(value))
    if field in _INT_FIELDS:
        return int(value)
    return value


def _write_xlsx(rows: Iterable[dict]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Catalog"

    header_font = Font(bold=True)
    header_fill = PatternFill(start_color="E0E8FF", end_color="E0E8FF", fill_type="solid")

    ws.append(CATALOG_HEADERS)
    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill

    for row in rows:
        ws.append([_xlsx_cell(c.field, row.get(c.field)) for c in CATALOG_COLUMNS])

    for index, column in enumerate(CATALOG_COLUMNS):
        letter = ws.cell(row=1, column=index + 1).column_letter
        ws.column_dimensions[letter].width = max(14, len(column.header) + 4)
        if column.field in _PRICE_FIELDS:
            for cell in ws[letter][1:]:
                cell.number_format = "0.00"
    ws.freeze_panes = "A2"

    output = BytesIO()
    wb.save(output)
    return output.getvalue()


def _render(rows: Iterable[dict], fmt: str) -> bytes:
    fmt = check_format(fmt)
    if fmt == "xlsx":
        return _write_xlsx(rows)
    return _write_csv(rows)


# ===================
# PUBLIC API
# ===================

def template(fmt: str = "csv") -> bytes:
    """Header-only catalog file."""
    return _render([], fmt)


def example(fmt: str = "csv") -> bytes:
    """Catalog file with sample products from every category."""
    return _render(EXAMPLE_ROWS, fmt)


def export(records: Iterable[ProductRecord], fmt: str = "csv") -> bytes:
    """
    Serialize catalog records in the import schema.

    Rows are ordered by product code. Importing the result in update mode
    against the same catalog changes nothing.
    """
    ordered = sorted(records, key=lambda r: r.product_code)
    content = _render((_record_row(r) for r in ordered), fmt)
    logger.info("catalog_exported", rows=len(ordered), format=fmt, size=len(content))
    return content
