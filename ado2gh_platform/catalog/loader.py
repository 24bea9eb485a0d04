from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..infra.errors import MalformedInputError
from ..infra.models import CATALOG_COLUMNS, WorkItem
from ..utils.csvio import RowWidthError, read_csv_with_header


def _identity(item: WorkItem) -> str:
    # GitHub org and repository names are case-insensitive.
    return item.key.lower()


def require_columns(header: Sequence[str], required: Sequence[str], source: str) -> None:
    missing = [c for c in required if c not in header]
    if missing:
        raise MalformedInputError(
            f"CSV missing required columns: {missing} (required: {list(required)}): {source}"
        )


def parse_rows(
    rows: Iterable[Tuple[int, Dict[str, str]]],
    source: str,
    *,
    required: Sequence[str] = CATALOG_COLUMNS,
    extra_columns: Sequence[str] = (),
    key_fields: Sequence[str] = (),
) -> List[WorkItem]:
    """Turn raw catalog rows into work items, in source order.

    Every required cell must be non-empty and no two rows may share an
    identity (the destination repository, plus ``key_fields`` when given).
    """
    items: List[WorkItem] = []
    seen: Dict[str, int] = {}
    for line_no, row in rows:
        empty = [c for c in required if not str(row.get(c, "") or "").strip()]
        if empty:
            raise MalformedInputError(f"line {line_no}: required columns are empty: {empty}: {source}")

        item = WorkItem.from_row(row, extra_columns, key_fields)
        ident = _identity(item)
        if ident in seen:
            raise MalformedInputError(
                f"line {line_no}: duplicate destination {item.key} (first defined on line {seen[ident]}): {source}"
            )
        seen[ident] = line_no
        items.append(item)
    return items


def validate_items(items: Sequence[WorkItem], source: str = "<items>") -> List[WorkItem]:
    """Apply the catalog rules to items that did not come from a catalog file."""
    items = list(items)
    extra = items[0].extra_columns if items else ()
    key_fields = items[0].key_fields if items else ()
    parse_rows(
        ((i + 1, it.fields()) for i, it in enumerate(items)),
        source,
        required=list(CATALOG_COLUMNS) + list(extra),
        extra_columns=extra,
        key_fields=key_fields,
    )
    return items


def read_catalog_rows(path: Path, required: Sequence[str]) -> List[Tuple[int, Dict[str, str]]]:
    """Read a catalog CSV and check its header, keeping physical line numbers."""
    source = str(path)
    if not path.exists():
        raise MalformedInputError(f"CSV file not found: {source}")
    try:
        header, rows = read_csv_with_header(path)
    except RowWidthError as e:
        raise MalformedInputError(f"{e}: {source}")
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise MalformedInputError(f"CSV file unreadable: {e}: {source}")
    if not header:
        raise MalformedInputError(f"CSV has no header: {source}")

    require_columns(header, required, source)
    return rows


def load_catalog(path: Path, *, required: Optional[Sequence[str]] = None) -> List[WorkItem]:
    """Load the ordered work catalog from a CSV file.

    Header names are matched by name, so column order does not matter and
    unknown columns are ignored. Fails fast with MalformedInputError on an
    unreadable file, missing columns, rows wider than the header, empty
    required cells or duplicate destinations; nothing is dispatched from a
    partially valid catalog.
    """
    required = list(required or CATALOG_COLUMNS)
    return parse_rows(read_catalog_rows(path, required), str(path), required=required)
