from __future__ import annotations

import csv
from io import StringIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..contracts import StatusLedger
from ..errors import NotFoundError
from ..models import PENDING, LedgerRow, WorkItem, ledger_columns
from ...utils.csvio import append_csv_row, write_csv
from ...utils.time import utcnow_iso
from .ledger_csv import check_transition, require_terminal


def event_columns(extra_columns: Sequence[str] = ()) -> List[str]:
    return ["seq"] + ledger_columns(extra_columns)


EVENT_COLUMNS: List[str] = event_columns()


class CsvEventLedger(StatusLedger):
    """StatusLedger backed by an append-only event log.

    Each state change is one appended CSV line carrying the full row; the
    current table is the last event per key. Appends cost O(1) instead of a
    whole-file rewrite, which matters for large catalogs. A trailing line
    without a newline is an append still in flight and is ignored by readers.

    The writer keeps the latest row per key in memory once the log has been
    written or read, so an update never re-reads the file.
    """

    def __init__(self, path: Path, extra_columns: Sequence[str] = (), key_fields: Sequence[str] = ()):
        self.path = path
        self.extra_columns = tuple(extra_columns)
        self.key_fields = tuple(key_fields)
        self.columns = event_columns(self.extra_columns)
        self._seq = 0
        self._latest: Optional[Dict[str, LedgerRow]] = None

    def initialize(self, items: Sequence[WorkItem]) -> List[LedgerRow]:
        now = utcnow_iso()
        rows = [LedgerRow(item=it, state=PENDING, log_file="", updated_at=now) for it in items]
        events = []
        for i, r in enumerate(rows, start=1):
            ev = r.to_row()
            ev["seq"] = str(i)
            events.append(ev)
        write_csv(self.path, events, self.columns)
        self._seq = len(rows)
        self._latest = {r.key: r for r in rows}
        return rows

    def update_row(self, key: str, state: str, log_file: str = "") -> LedgerRow:
        latest = self._current()
        row = latest.get(key)
        if row is None:
            raise NotFoundError(f"no ledger row for {key!r} ({self.path})")
        check_transition(row, state)
        updated = LedgerRow(item=row.item, state=state, log_file=log_file or row.log_file, updated_at=utcnow_iso())
        ev = updated.to_row()
        ev["seq"] = str(self._seq + 1)
        append_csv_row(self.path, ev, self.columns)
        self._seq += 1
        latest[key] = updated
        return updated

    def read_events(self) -> List[Dict[str, str]]:
        if not self.path.exists():
            raise NotFoundError(f"ledger not initialized: {self.path}")
        text = self.path.read_text(encoding="utf-8")
        if text and not text.endswith("\n"):
            text = text[: text.rfind("\n") + 1]
        return [dict(r) for r in csv.DictReader(StringIO(text))]

    def read_rows(self) -> List[LedgerRow]:
        latest: Dict[str, LedgerRow] = {}
        order: List[str] = []
        for ev in self.read_events():
            row = LedgerRow.from_row(ev, self.extra_columns, self.key_fields)
            if row.key not in latest:
                order.append(row.key)
            latest[row.key] = row
            seq = str(ev.get("seq") or "").strip()
            if seq.isdigit():
                self._seq = max(self._seq, int(seq))
        self._latest = latest
        return [latest[k] for k in order]

    def read_terminal(self) -> List[LedgerRow]:
        return require_terminal(self.read_rows(), self.path)

    def _current(self) -> Dict[str, LedgerRow]:
        if self._latest is None:
            self.read_rows()
        return self._latest if self._latest is not None else {}

    def describe(self) -> Dict[str, Any]:
        return {
            "class": self.__class__.__name__,
            "path": str(self.path),
            "storage": "append-only csv event log, last event per key wins",
        }
