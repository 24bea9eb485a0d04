from __future__ import annotations

import csv
import json
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Sequence

from ..catalog.loader import parse_rows, read_catalog_rows, validate_items
from ..infra.config import SecondaryCatalogSpec
from ..infra.errors import (
    MalformedInputError,
    NothingToDoError,
    PredecessorMissingError,
    PredecessorUnreadableError,
)
from ..infra.models import (
    CATALOG_COLUMNS,
    LedgerRow,
    StageVerdict,
    WorkItem,
    is_valid_item_state,
    ledger_columns,
)
from ..utils import console
from ..utils.csvio import RowWidthError, read_csv_with_header, write_csv
from ..utils.fs import atomic_write_text
from .status_reducer import success_rows


def status_csv_path(state_dir: Path, stage: str) -> Path:
    return state_dir / f"{stage}-status.csv"


def result_json_path(state_dir: Path, stage: str) -> Path:
    return state_dir / f"{stage}-result.json"


def write_status_csv(path: Path, rows: Sequence[LedgerRow]) -> None:
    """Publish a stage's terminal ledger for the next stage (atomic replace)."""
    extra = rows[0].item.extra_columns if rows else ()
    write_csv(path, [r.to_row() for r in rows], ledger_columns(extra))


def write_result_json(path: Path, stage: str, verdict: StageVerdict) -> None:
    payload = {"stage": stage, **verdict.to_dict()}
    atomic_write_text(path, json.dumps(payload, indent=2, sort_keys=True) + "\n")


def read_status_csv(
    path: Path,
    extra_columns: Sequence[str] = (),
    key_fields: Sequence[str] = (),
) -> List[LedgerRow]:
    """Strictly parse a terminal status CSV.

    A missing file and an unparseable file are distinct protocol failures;
    neither is ever answered by falling back to the raw catalog.
    """
    if not path.exists():
        raise PredecessorMissingError(f"predecessor status CSV not found: {path}")
    try:
        header, raw_rows = read_csv_with_header(path)
    except RowWidthError as e:
        raise PredecessorUnreadableError(f"predecessor status CSV malformed: {e}: {path}")
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise PredecessorUnreadableError(f"predecessor status CSV unreadable: {e}: {path}")

    missing = [c for c in CATALOG_COLUMNS + list(extra_columns) + ["status"] if c not in header]
    if missing:
        raise PredecessorUnreadableError(f"predecessor status CSV missing columns {missing}: {path}")

    rows: List[LedgerRow] = []
    for line_no, raw in raw_rows:
        row = LedgerRow.from_row(raw, extra_columns, key_fields)
        if not is_valid_item_state(row.state):
            raise PredecessorUnreadableError(f"line {line_no}: unknown status {row.state!r}: {path}")
        if not row.is_terminal:
            raise PredecessorUnreadableError(
                f"line {line_no}: {row.key} is {row.state}; predecessor stage did not finish: {path}"
            )
        rows.append(row)
    return rows


def success_subset(rows: Sequence[LedgerRow]) -> List[WorkItem]:
    return [r.item for r in success_rows(rows)]


def load_predecessor_items(
    path: Path,
    extra_columns: Sequence[str] = (),
    key_fields: Sequence[str] = (),
) -> List[WorkItem]:
    """Return the items a dependent stage may work on.

    Exactly the SUCCESS rows of the predecessor's terminal ledger, re-checked
    with the catalog rules. Raises NothingToDoError when there are none.
    """
    rows = read_status_csv(path, extra_columns, key_fields)
    items = success_subset(rows)
    if not items:
        raise NothingToDoError(
            f"no successful items in predecessor status CSV ({len(rows)} rows, 0 SUCCESS): {path}"
        )
    try:
        return validate_items(items, source=str(path))
    except MalformedInputError as e:
        raise PredecessorUnreadableError(str(e))


def join_stage_catalog(
    catalog_path: Path,
    spec: SecondaryCatalogSpec,
    predecessor_items: Sequence[WorkItem],
) -> List[WorkItem]:
    """Expand the predecessor's successes with a per-item catalog (e.g. pipelines).

    Catalog rows are matched on github_org/github_repo, case-insensitively.
    Rows for repositories that did not succeed upstream are skipped, never run.
    Columns the catalog carries win over the predecessor's values; the rest
    (repo, visibility) come from the predecessor row.
    """
    source = str(catalog_path)
    parsed = parse_rows(
        read_catalog_rows(catalog_path, spec.columns),
        source,
        required=spec.columns,
        extra_columns=spec.extra_columns,
        key_fields=spec.key,
    )

    upstream: Dict[str, WorkItem] = {it.destination.lower(): it for it in predecessor_items}
    joined: List[WorkItem] = []
    skipped = 0
    for row_item in parsed:
        base = upstream.get(row_item.destination.lower())
        if base is None:
            skipped += 1
            continue
        overrides = {
            c: row_item.get(c) for c in spec.columns if c in CATALOG_COLUMNS and c not in ("github_org", "github_repo")
        }
        joined.append(replace(base, extra=row_item.extra, key_fields=row_item.key_fields, **overrides))

    if skipped:
        console.info("handoff", f"skipped {skipped} catalog row(s) whose repository did not succeed upstream: {source}")
    if not joined:
        raise NothingToDoError(f"no catalog rows match a successful predecessor item ({len(parsed)} rows): {source}")
    return joined


def write_filtered_catalog(status_path: Path, output: Path) -> List[WorkItem]:
    """Write the SUCCESS subset of a status CSV as a plain catalog CSV."""
    items = load_predecessor_items(status_path)
    write_csv(output, [it.fields() for it in items], CATALOG_COLUMNS)
    return items
