"""
Wholesaler catalog file parser.

Turns an uploaded catalog (CSV or Excel) into header-mapped rows. Only
structural problems are detected here; business validation happens in
services.catalog_validation.

Fatal problems (unreadable encoding, no header, missing required columns,
no data rows) raise CatalogParseError. A row whose field count disagrees
with the header only carries a structural error on that row.
"""

import re
from dataclasses import dataclass, field
from io import BytesIO
from itertools import islice
from pathlib import PurePath
from typing import Iterator, Optional

import pandas as pd
import structlog

from exceptions import CatalogParseError
from utils.text_utils import normalize_header

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CatalogColumn:
    """One column of the fixed catalog schema."""
    field: str
    header: str
    required: bool = False


# Canonical column order, also used for templates and exports
CATALOG_COLUMNS: tuple[CatalogColumn, ...] = (
    CatalogColumn("product_code", "Product Code", required=True),
    CatalogColumn("product_name", "Product Name", required=True),
    CatalogColumn("category", "Category", required=True),
    CatalogColumn("subcategory", "Subcategory"),
    CatalogColumn("description", "Description"),
    CatalogColumn("unit_type", "Unit Type", required=True),
    CatalogColumn("wholesale_price", "Wholesale Price", required=True),
    CatalogColumn("suggested_retail", "Suggested Retail"),
    CatalogColumn("min_quantity", "Min Quantity"),
    CatalogColumn("pack_size", "Pack Size"),
    CatalogColumn("lead_time", "Lead Time"),
    CatalogColumn("stock_status", "Stock Status"),
    CatalogColumn("catalog_page", "Catalog Page"),
)

CATALOG_HEADERS: list[str] = [c.header for c in CATALOG_COLUMNS]
COLUMN_HEADERS: dict[str, str] = {c.field: c.header for c in CATALOG_COLUMNS}

_HEADER_LOOKUP: dict[str, CatalogColumn] = {
    normalize_header(c.header): c for c in CATALOG_COLUMNS
}

_XLSX_SUFFIXES = {".xlsx", ".xlsm"}
_ZIP_MAGIC = b"PK\x03\x04"
_SEPARATORS = (",", ";", "\t")

# Rows pulled from pandas per CSV chunk
CSV_CHUNK_ROWS = 1000

# pandas: "Expected 9 fields in line 2, saw 13"
_FIELDS_SEEN = re.compile(r"saw (\d+)")


@dataclass
class ParsedRow:
    """One data row mapped onto the catalog schema."""
    row_number: int  # header is row 0
    fields: dict[str, str]
    structural_errors: list[str] = field(default_factory=list)


@dataclass
class HeaderMapping:
    """Which source column feeds which catalog field."""
    positions: dict[int, CatalogColumn]
    width: int
    ignored_columns: list[str]

    @property
    def present_fields(self) -> set[str]:
        return {c.field for c in self.positions.values()}


def map_header(header: list[str]) -> HeaderMapping:
    """
    Match raw header cells to catalog columns.

    Matching is case-insensitive and ignores spaces, underscores and
    punctuation. The first occurrence of a column wins; unknown or repeated
    headers are ignored.

    Raises:
        CatalogParseError: If a required column is missing
    """
    positions: dict[int, CatalogColumn] = {}
    seen: set[str] = set()
    ignored: list[str] = []

    for index, raw in enumerate(header):
        label = (raw or "").strip()
        column = _HEADER_LOOKUP.get(normalize_header(label))
        if column is None or column.field in seen:
            if label:
                ignored.append(label)
            continue
        positions[index] = column
        seen.add(column.field)

    missing = [c.header for c in CATALOG_COLUMNS if c.required and c.field not in seen]
    if missing:
        raise CatalogParseError(
            message=f"Missing required columns: {', '.join(missing)}",
            details={"missing": missing, "found": [h for h in header if h]}
        )

    return HeaderMapping(positions=positions, width=len(header), ignored_columns=ignored)


def _blank(record: list[str]) -> bool:
    return all(not (cell or "").strip() for cell in record)


def _trim_missing(values: tuple) -> list[str]:
    """Cells up to the last field the line actually had (pandas pads with NaN)."""
    cells = list(values)
    while cells and pd.isna(cells[-1]):
        cells.pop()
    return ["" if pd.isna(cell) else cell for cell in cells]


class ParsedCatalog:
    """
    Lazy, restartable sequence of parsed catalog rows.

    Each iteration re-reads the source from the start. CSV content is
    decoded and split incrementally; Excel workbooks are loaded once.
    """

    def __init__(self, content: bytes, file_format: str):
        self._content = content
        self.format = file_format
        self._xlsx_rows: Optional[list[list[str]]] = None
        self._separator: Optional[str] = None
        self._widths: dict[str, int] = {}

        header = self._read_header()
        self.mapping = map_header(header)

        # Peek for at least one data row so empty catalogs fail up front
        if next(iter(self), None) is None:
            raise CatalogParseError(
                message="Catalog file has a header but no data rows",
                details={"format": self.format}
            )

    @property
    def ignored_columns(self) -> list[str]:
        return list(self.mapping.ignored_columns)

    def __iter__(self) -> Iterator[ParsedRow]:
        records = self._records()
        # Skip everything up to and including the header row
        for record in records:
            if not _blank(record):
                break

        # Blank lines are skipped but still counted so numbers match the file
        row_number = 0
        for record in records:
            row_number += 1
            if _blank(record):
                continue
            yield self._map_row(row_number, record)

    # ===================
    # RECORD SOURCES
    # ===================

    def _records(self) -> Iterator[list[str]]:
        if self.format == "xlsx":
            return iter(self._load_xlsx_rows())
        if self._separator is None:
            self._separator = self._detect_separator()
        return self._csv_records(self._separator)

    def _csv_records(self, sep: str) -> Iterator[list[str]]:
        """
        Stream CSV records in chunks; trailing missing fields are dropped.

        `names` starts at the widest physical line. A quoted value spanning
        lines can still hold more fields; pandas then reports how many it
        saw, and reading resumes after the records already yielded with
        the wider layout.
        """
        width = self._line_width(sep)
        yielded = 0
        while True:
            try:
                for record in islice(self._read_csv(sep, width), yielded, None):
                    yielded += 1
                    yield record
                return
            except pd.errors.EmptyDataError:
                return
            except UnicodeDecodeError as e:
                logger.error("catalog_decode_failed", error=str(e))
                raise CatalogParseError(
                    message="Catalog file is not valid UTF-8 text",
                    details={"original_error": str(e)}
                ) from e
            except pd.errors.ParserError as e:
                seen = _FIELDS_SEEN.search(str(e))
                if seen is None or int(seen.group(1)) <= width:
                    logger.error("catalog_csv_malformed", separator=sep, error=str(e))
                    raise CatalogParseError(
                        message="Catalog file is not readable as CSV",
                        details={"separator": sep, "original_error": str(e)}
                    ) from e
                width = self._widths[sep] = int(seen.group(1))
                logger.debug("csv_width_widened", separator=sep, width=width, resume_at=yielded)

    def _read_csv(self, sep: str, width: int) -> Iterator[list[str]]:
        with pd.read_csv(
            BytesIO(self._content),
            sep=sep,
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            encoding="utf-8-sig",
            chunksize=CSV_CHUNK_ROWS,
        ) as reader:
            for chunk in reader:
                for values in chunk.itertuples(index=False, name=None):
                    yield _trim_missing(values)

    def _line_width(self, sep: str) -> int:
        """Most fields any single line can hold."""
        if sep not in self._widths:
            lines = self._content.splitlines() or [b""]
            self._widths[sep] = max(line.count(sep.encode()) for line in lines) + 1
        return self._widths[sep]

    def _detect_separator(self) -> str:
        """Try ',' ';' and tab; keep the one whose header names the most catalog columns."""
        best, best_hits = _SEPARATORS[0], -1
        for sep in _SEPARATORS:
            header = next((r for r in self._csv_records(sep) if not _blank(r)), [])
            hits = sum(1 for cell in header if normalize_header(cell.strip()) in _HEADER_LOOKUP)
            if hits > best_hits:
                best, best_hits = sep, hits
        logger.debug("csv_separator_detected", separator=best, columns_matched=best_hits)
        return best

    def _load_xlsx_rows(self) -> list[list[str]]:
        if self._xlsx_rows is None:
            try:
                df = pd.read_excel(
                    BytesIO(self._content),
                    sheet_name=0,
                    header=None,
                    dtype=str,
                    keep_default_na=False,
                    engine="openpyxl",
                )
            except Exception as e:
                logger.error("catalog_workbook_read_failed", error=str(e))
                raise CatalogParseError(
                    message="Failed to read Excel catalog",
                    details={"original_error": str(e)}
                ) from e

            df = df.fillna("")
            self._xlsx_rows = [
                [str(cell).strip() for cell in row]
                for row in df.itertuples(index=False, name=None)
            ]
        return self._xlsx_rows

    def _read_header(self) -> list[str]:
        for record in self._records():
            if not _blank(record):
                return [cell.strip() for cell in record]
        raise CatalogParseError(
            message="Catalog file is empty",
            details={"format": self.format}
        )

    # ===================
    # ROW MAPPING
    # ===================

    def _map_row(self, row_number: int, record: list[str]) -> ParsedRow:
        fields = {c.field: "" for c in CATALOG_COLUMNS}
        for index, column in self.mapping.positions.items():
            if index < len(record):
                fields[column.field] = (record[index] or "").strip()

        errors: list[str] = []
        width = self.mapping.width
        if len(record) < width:
            errors.append(f"Expected {width} fields but found {len(record)}")
        elif len(record) > width and not _blank(record[width:]):
            errors.append(f"Expected {width} fields but found {len(record)}")

        return ParsedRow(row_number=row_number, fields=fields, structural_errors=errors)


def detect_format(content: bytes, filename: Optional[str] = None) -> str:
    """
    Decide between "csv" and "xlsx".

    Uses the file extension when there is one, otherwise sniffs the
    zip signature every .xlsx file starts with.
    """
    if filename:
        suffix = PurePath(filename).suffix.lower()
        if suffix in _XLSX_SUFFIXES:
            return "xlsx"
        if suffix == ".xls":
            raise CatalogParseError(
                message="Legacy .xls workbooks are not supported; save as .xlsx or CSV",
                details={"filename": filename}
            )
        if suffix in {".csv", ".txt"}:
            return "csv"
    return "xlsx" if content.startswith(_ZIP_MAGIC) else "csv"


def parse_catalog(content: bytes, filename: Optional[str] = None) -> ParsedCatalog:
    """
    Parse an uploaded catalog file.

    Args:
        content: Raw file bytes
        filename: Original filename, used to pick CSV vs Excel

    Returns:
        ParsedCatalog that can be iterated (more than once) for ParsedRow values

    Raises:
        CatalogParseError: If the file cannot be read as a catalog
    """
    if not content:
        raise CatalogParseError(message="Catalog file is empty")

    file_format = detect_format(content, filename)
    logger.info("parsing_catalog", format=file_format, size=len(content), filename=filename)

    catalog = ParsedCatalog(content, file_format)

    if catalog.ignored_columns:
        logger.info("catalog_columns_ignored", columns=catalog.ignored_columns)

    return catalog
