from __future__ import annotations

import csv
from io import StringIO
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple

from .fs import atomic_write_text, ensure_dir


class RowWidthError(ValueError):
    """A data row has more cells than the header names."""


def read_csv(path: Path) -> List[Dict[str, str]]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        return [dict(row) for row in reader]


def read_csv_with_header(path: Path) -> Tuple[List[str], List[Tuple[int, Dict[str, str]]]]:
    """Read a CSV keeping the header and the physical line number of every row.

    Header names and cells are whitespace-stripped; a UTF-8 BOM and CRLF line
    endings are tolerated. Blank lines are skipped. Missing trailing cells
    read as empty; a row with more cells than the header raises
    RowWidthError.
    """
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        reader = csv.reader(f)
        header_raw = next(reader, None)
        if header_raw is None:
            return [], []
        header = [str(h or "").strip() for h in header_raw]
        rows: List[Tuple[int, Dict[str, str]]] = []
        for cells in reader:
            if not any(str(c or "").strip() for c in cells):
                continue
            if len(cells) > len(header):
                raise RowWidthError(f"line {reader.line_num}: {len(cells)} cells for {len(header)} header columns")
            row = {}
            for i, name in enumerate(header):
                row[name] = str(cells[i]).strip() if i < len(cells) else ""
            rows.append((reader.line_num, row))
    return header, rows


def render_csv(rows: Iterable[Dict[str, Any]], fieldnames: List[str]) -> str:
    buf = StringIO()
    writer = csv.DictWriter(buf, fieldnames=fieldnames, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for r in rows:
        writer.writerow({k: ("" if r.get(k) is None else r.get(k)) for k in fieldnames})
    return buf.getvalue()


def write_csv(path: Path, rows: Iterable[Dict[str, Any]], fieldnames: List[str]) -> None:
    ensure_dir(path.parent)
    # Render in memory first so the file swap is atomic.
    atomic_write_text(path, render_csv(rows, fieldnames))


def append_csv_row(path: Path, row: Dict[str, Any], fieldnames: List[str]) -> None:
    if not path.exists():
        ensure_dir(path.parent)
        with path.open("w", encoding="utf-8", newline="") as f:
            w = csv.DictWriter(f, fieldnames=fieldnames, lineterminator="\n")
            w.writeheader()
    with path.open("a", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore", lineterminator="\n")
        w.writerow({h: ("" if row.get(h) is None else row.get(h)) for h in fieldnames})
        f.flush()
