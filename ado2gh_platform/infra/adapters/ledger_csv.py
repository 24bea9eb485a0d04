from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Sequence

from ..contracts import StatusLedger
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import (
    ITEM_STATE_VALUES,
    PENDING,
    LedgerRow,
    WorkItem,
    can_transition,
    ledger_columns,
)
from ...utils.csvio import read_csv, write_csv
from ...utils.time import utcnow_iso


def check_transition(row: LedgerRow, state: str) -> None:
    if state not in ITEM_STATE_VALUES:
        raise ValidationError(f"unknown state {state!r} for {row.key}")
    if not can_transition(row.state, state):
        raise ConflictError(f"illegal state transition for {row.key}: {row.state} -> {state}")


def require_terminal(rows: List[LedgerRow], path: Path) -> List[LedgerRow]:
    open_rows = [r.key for r in rows if not r.is_terminal]
    if open_rows:
        raise ValidationError(f"ledger has non-terminal rows: {open_rows} ({path})")
    return rows


class CsvStatusLedger(StatusLedger):
    """StatusLedger backed by a single CSV snapshot.

    Every update rewrites the whole file through a temp file and an atomic
    rename, so readers always see either the previous or the next complete
    table. Row order follows the catalog.
    """

    def __init__(self, path: Path, extra_columns: Sequence[str] = (), key_fields: Sequence[str] = ()):
        self.path = path
        self.extra_columns = tuple(extra_columns)
        self.key_fields = tuple(key_fields)
        self.columns = ledger_columns(self.extra_columns)

    def initialize(self, items: Sequence[WorkItem]) -> List[LedgerRow]:
        now = utcnow_iso()
        rows = [LedgerRow(item=it, state=PENDING, log_file="", updated_at=now) for it in items]
        self._write(rows)
        return rows

    def update_row(self, key: str, state: str, log_file: str = "") -> LedgerRow:
        rows = self.read_rows()
        new_rows: List[LedgerRow] = []
        updated = None
        for r in rows:
            if r.key != key:
                new_rows.append(r)
                continue
            check_transition(r, state)
            updated = LedgerRow(item=r.item, state=state, log_file=log_file or r.log_file, updated_at=utcnow_iso())
            new_rows.append(updated)
        if updated is None:
            raise NotFoundError(f"no ledger row for {key!r} ({self.path})")
        self._write(new_rows)
        return updated

    def read_rows(self) -> List[LedgerRow]:
        if not self.path.exists():
            raise NotFoundError(f"ledger not initialized: {self.path}")
        return [LedgerRow.from_row(r, self.extra_columns, self.key_fields) for r in read_csv(self.path)]

    def read_terminal(self) -> List[LedgerRow]:
        return require_terminal(self.read_rows(), self.path)

    def _write(self, rows: List[LedgerRow]) -> None:
        write_csv(self.path, [r.to_row() for r in rows], self.columns)

    def describe(self) -> Dict[str, Any]:
        return {
            "class": self.__class__.__name__,
            "path": str(self.path),
            "storage": "csv snapshot, atomic whole-file rewrite",
        }
