from __future__ import annotations

from .loader import load_catalog, parse_rows, read_catalog_rows, require_columns, validate_items

__all__ = [
    "load_catalog",
    "parse_rows",
    "read_catalog_rows",
    "require_columns",
    "validate_items",
]
