from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .adapters import CsvEventLedger, CsvStatusLedger, SubprocessInvocationBackend
from .config import ALLOWED_LEDGER_KINDS, StageSpec
from .contracts import InvocationBackend, OutcomeClassifier, StatusLedger
from .errors import ConfigError
from ..orchestration.classifier import build_classifier


def ledger_path(state_dir: Path, stage: str, kind: str) -> Path:
    if kind == "csv_events":
        return state_dir / f"{stage}-ledger-events.csv"
    return state_dir / f"{stage}-ledger.csv"


def build_ledger(
    kind: str,
    path: Path,
    extra_columns: Sequence[str] = (),
    key_fields: Sequence[str] = (),
) -> StatusLedger:
    if kind == "csv_snapshot":
        return CsvStatusLedger(path, extra_columns, key_fields)
    if kind == "csv_events":
        return CsvEventLedger(path, extra_columns, key_fields)
    raise ConfigError(f"unknown ledger kind {kind!r} (allowed: {list(ALLOWED_LEDGER_KINDS)})")


@dataclass
class StageBundle:
    stage: StageSpec
    ledger: StatusLedger
    backend: InvocationBackend
    classifier: OutcomeClassifier

    def describe(self) -> Dict[str, Any]:
        def _d(x: Any) -> Dict[str, Any]:
            if hasattr(x, "describe") and callable(getattr(x, "describe")):
                return dict(getattr(x, "describe")())
            return {"class": x.__class__.__name__}

        return {
            "stage": self.stage.name,
            "ledger": _d(self.ledger),
            "backend": _d(self.backend),
            "classifier": _d(self.classifier),
        }


def build_stage_bundle(
    stage: StageSpec,
    *,
    state_dir: Path,
    cwd: Optional[Path] = None,
    backend: Optional[InvocationBackend] = None,
) -> StageBundle:
    """Wire the adapters a stage run needs from its configuration.

    ``backend`` replaces the subprocess backend (tests, dry runs).
    """
    ledger = build_ledger(
        stage.ledger,
        ledger_path(state_dir, stage.name, stage.ledger),
        stage.extra_columns,
        stage.key_fields,
    )
    if backend is None:
        backend = SubprocessInvocationBackend(
            command=stage.command,
            stage=stage.name,
            env=stage.env,
            cwd=cwd,
            extra_fields=stage.extra_columns,
        )
    return StageBundle(stage=stage, ledger=ledger, backend=backend, classifier=build_classifier(stage.classifier))
