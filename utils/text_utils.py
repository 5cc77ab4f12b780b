"""
Text utilities for cleaning supplier catalog cells.

Suppliers hand-edit their catalog files, so headers and enum values arrive
in every casing and spacing imaginable.
"""

import re
import unicodedata
from typing import Optional

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_TOKEN_SEPARATORS = re.compile(r"[\s\-]+")


def normalize_header(name: Optional[str]) -> str:
    """
    Normalize a column header for matching.

    - "Product Code" → "productcode"
    - " product_code " → "productcode"
    - "PRODUCT-CODE" → "productcode"

    Args:
        name: Raw header cell (may be None for blank header cells)

    Returns:
        Lowercase alphanumeric key, empty string for blank headers
    """
    if not name:
        return ""

    # Drop accents so "Catálogo" style headers still normalize cleanly
    normalized = unicodedata.normalize("NFD", name)
    ascii_name = "".join(
        c for c in normalized
        if unicodedata.category(c) != "Mn"
    )

    return _NON_ALNUM.sub("", ascii_name.lower())


def normalize_token(value: Optional[str]) -> str:
    """
    Normalize an enum-like cell value.

    - "Linear Foot" → "linear_foot"
    - "low-stock" → "low_stock"
    - " FRAME " → "frame"
    """
    if not value:
        return ""
    return _TOKEN_SEPARATORS.sub("_", value.strip().lower())


def clean_text(value: Optional[str]) -> Optional[str]:
    """
    Clean a free-form cell for storage.

    - Strips whitespace
    - Returns None for empty/whitespace-only strings
    """
    if value is None:
        return None

    value = value.strip()

    if not value:
        return None

    return value
