"""
Catalog file parsers.

Turn uploaded CSV / Excel catalogs into header-mapped rows.
"""

from parsers.catalog_parser import (
    CATALOG_COLUMNS,
    CATALOG_HEADERS,
    CatalogColumn,
    ParsedCatalog,
    ParsedRow,
    detect_format,
    parse_catalog,
)

__all__ = [
    "CATALOG_COLUMNS",
    "CATALOG_HEADERS",
    "CatalogColumn",
    "ParsedCatalog",
    "ParsedRow",
    "detect_format",
    "parse_catalog",
]
