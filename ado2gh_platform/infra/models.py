from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Sequence, Tuple

# Canonical lifecycle states for one work item within one stage.
ItemState = Literal["PENDING", "IN_PROGRESS", "SUCCESS", "FAILURE"]
PENDING = "PENDING"
IN_PROGRESS = "IN_PROGRESS"
SUCCESS = "SUCCESS"
FAILURE = "FAILURE"

ITEM_STATE_VALUES: Tuple[str, ...] = (PENDING, IN_PROGRESS, SUCCESS, FAILURE)
TERMINAL_STATES: Tuple[str, ...] = (SUCCESS, FAILURE)

# state -> states it may move to
ALLOWED_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    PENDING: (IN_PROGRESS,),
    IN_PROGRESS: (SUCCESS, FAILURE),
    SUCCESS: (),
    FAILURE: (),
}

# Catalog columns, matched by header name.
CATALOG_COLUMNS: List[str] = [
    "org",
    "teamproject",
    "repo",
    "github_org",
    "github_repo",
    "gh_repo_visibility",
]

STATUS_COLUMNS: List[str] = ["status", "log_file", "updated_at"]
LEDGER_COLUMNS: List[str] = CATALOG_COLUMNS + STATUS_COLUMNS

VerdictKind = Literal["SUCCEEDED", "SUCCEEDED_WITH_ISSUES", "FAILED", "EMPTY"]
SUCCEEDED = "SUCCEEDED"
SUCCEEDED_WITH_ISSUES = "SUCCEEDED_WITH_ISSUES"
FAILED = "FAILED"
EMPTY = "EMPTY"


def is_valid_item_state(value: str) -> bool:
    return str(value or "").strip() in ITEM_STATE_VALUES


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, ())


def ledger_columns(extra_columns: Sequence[str] = ()) -> List[str]:
    return CATALOG_COLUMNS + [c for c in extra_columns if c not in CATALOG_COLUMNS] + STATUS_COLUMNS


def _cell(row: Dict[str, str], name: str) -> str:
    return str(row.get(name, "") or "").strip()


@dataclass(frozen=True)
class WorkItem:
    """One unit of work: ADO source triple plus GitHub destination.

    Stages driven by a secondary catalog (e.g. pipelines) carry its extra
    columns in ``extra``; ``key_fields`` names the extra columns that extend
    the identity, since several such items may share one destination.
    """

    org: str
    teamproject: str
    repo: str
    github_org: str
    github_repo: str
    gh_repo_visibility: str
    extra: Tuple[Tuple[str, str], ...] = ()
    key_fields: Tuple[str, ...] = ()

    @property
    def destination(self) -> str:
        return f"{self.github_org}/{self.github_repo}"

    @property
    def key(self) -> str:
        """Item identity; unique within a catalog."""
        if not self.key_fields:
            return self.destination
        return self.destination + "#" + "/".join(self.get(n) for n in self.key_fields)

    @property
    def source(self) -> str:
        return f"{self.org}/{self.teamproject}/{self.repo}"

    @property
    def extra_columns(self) -> Tuple[str, ...]:
        return tuple(n for n, _ in self.extra)

    def get(self, name: str) -> str:
        if name in CATALOG_COLUMNS:
            return getattr(self, name)
        return dict(self.extra).get(name, "")

    def fields(self) -> Dict[str, str]:
        out = {c: getattr(self, c) for c in CATALOG_COLUMNS}
        out.update(self.extra)
        return out

    @classmethod
    def from_row(
        cls,
        row: Dict[str, str],
        extra_columns: Sequence[str] = (),
        key_fields: Sequence[str] = (),
    ) -> "WorkItem":
        return cls(
            **{c: _cell(row, c) for c in CATALOG_COLUMNS},
            extra=tuple((c, _cell(row, c)) for c in extra_columns if c not in CATALOG_COLUMNS),
            key_fields=tuple(key_fields),
        )


@dataclass(frozen=True)
class LedgerRow:
    """Current lifecycle state of one work item in one stage ledger."""

    item: WorkItem
    state: str = PENDING
    log_file: str = ""
    updated_at: str = ""

    @property
    def key(self) -> str:
        return self.item.key

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_row(self) -> Dict[str, str]:
        out = self.item.fields()
        out["status"] = self.state
        out["log_file"] = self.log_file
        out["updated_at"] = self.updated_at
        return out

    @classmethod
    def from_row(
        cls,
        row: Dict[str, str],
        extra_columns: Sequence[str] = (),
        key_fields: Sequence[str] = (),
    ) -> "LedgerRow":
        return cls(
            item=WorkItem.from_row(row, extra_columns, key_fields),
            state=str(row.get("status", "") or "").strip(),
            log_file=str(row.get("log_file", "") or "").strip(),
            updated_at=str(row.get("updated_at", "") or "").strip(),
        )


@dataclass(frozen=True)
class StageVerdict:
    """Aggregate outcome of one stage, derived from its ledger."""

    verdict: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    pending: int = 0

    @property
    def is_fatal(self) -> bool:
        return self.verdict in (FAILED, EMPTY)

    @property
    def may_proceed(self) -> bool:
        return self.verdict in (SUCCEEDED, SUCCEEDED_WITH_ISSUES)

    def summary(self) -> str:
        return f"Total: {self.total} | Succeeded: {self.succeeded} | Failed: {self.failed}"

    def to_dict(self) -> Dict[str, object]:
        return {
            "verdict": self.verdict,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "pending": self.pending,
        }


@dataclass(frozen=True)
class Classification:
    """Verdict of the outcome classifier for one invocation log."""

    state: str
    reason: str = ""


@dataclass
class SchedulerResult:
    rows: List[LedgerRow] = field(default_factory=list)
    dispatch_order: List[str] = field(default_factory=list)
    completion_order: List[str] = field(default_factory=list)
    peak_in_flight: int = 0
