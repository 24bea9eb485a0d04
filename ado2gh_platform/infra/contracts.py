from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from .models import Classification, LedgerRow, WorkItem


class StatusLedger(Protocol):
    """Durable per-stage table of work item lifecycle states.

    Only the scheduler's completion handling writes to a ledger, and it does so
    one update at a time; implementations therefore need atomic visibility for
    readers, not row-level locking.
    """

    path: Path

    def initialize(self, items: Sequence[WorkItem]) -> List[LedgerRow]:
        raise NotImplementedError

    def update_row(self, key: str, state: str, log_file: str = "") -> LedgerRow:
        raise NotImplementedError

    def read_rows(self) -> List[LedgerRow]:
        raise NotImplementedError

    def read_terminal(self) -> List[LedgerRow]:
        raise NotImplementedError


class OutcomeClassifier(Protocol):
    def classify(self, log_text: str) -> Classification:
        raise NotImplementedError


class InvocationHandle(Protocol):
    """A running external operation for one work item."""

    def poll(self) -> Optional[int]:
        """Return the exit status once the invocation terminated, else None."""
        raise NotImplementedError

    def kill(self) -> None:
        raise NotImplementedError


class InvocationBackend(Protocol):
    def start(self, item: WorkItem, log_path: Path) -> InvocationHandle:
        """Launch the external operation, appending all of its output to ``log_path``."""
        raise NotImplementedError

    def describe_command(self, item: WorkItem) -> str:
        raise NotImplementedError
