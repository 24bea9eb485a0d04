from __future__ import annotations

from .ledger_csv import CsvStatusLedger
from .ledger_events import CsvEventLedger
from .exec_subprocess import SubprocessInvocationBackend

__all__ = [
    "CsvStatusLedger",
    "CsvEventLedger",
    "SubprocessInvocationBackend",
]
