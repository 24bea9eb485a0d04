from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from ..catalog.loader import load_catalog
from ..infra.config import StageSpec, validate_max_concurrent
from ..infra.contracts import InvocationBackend
from ..infra.errors import ConflictError, MalformedInputError, StageAbortedError, ValidationError
from ..infra.factory import build_stage_bundle
from ..infra.models import (
    EMPTY,
    FAILED,
    SUCCEEDED,
    SUCCEEDED_WITH_ISSUES,
    LedgerRow,
    SchedulerResult,
    StageVerdict,
    WorkItem,
)
from ..utils import console
from ..utils.fs import ensure_dir
from .handoff import (
    join_stage_catalog,
    load_predecessor_items,
    result_json_path,
    status_csv_path,
    write_result_json,
    write_status_csv,
)
from .scheduler import BoundedScheduler
from .status_reducer import failure_rows, reduce_stage_verdict


VERDICT_EXIT_CODES = {
    SUCCEEDED: 0,
    FAILED: 1,
    EMPTY: 2,
}


@dataclass
class StageReport:
    stage: str
    verdict: StageVerdict
    rows: List[LedgerRow]
    status_csv: Path
    result_json: Path
    exit_code: int
    scheduler: SchedulerResult = field(default_factory=SchedulerResult)

    def raise_for_verdict(self) -> None:
        if self.verdict.is_fatal:
            raise StageAbortedError(
                f"stage {self.stage} {self.verdict.verdict}: {self.verdict.summary()}",
                verdict=self.verdict,
                exit_code=self.exit_code,
            )


def verdict_exit_code(verdict: StageVerdict, partial_exit_code: int = 0) -> int:
    if verdict.verdict == SUCCEEDED_WITH_ISSUES:
        return int(partial_exit_code)
    return VERDICT_EXIT_CODES[verdict.verdict]


def resolve_stage_items(
    stage: StageSpec,
    *,
    state_dir: Path,
    catalog_path: Optional[Path] = None,
    predecessor_status: Optional[Path] = None,
    predecessor: Optional[StageSpec] = None,
) -> List[WorkItem]:
    """Decide what a stage works on.

    A stage with a predecessor reads only the predecessor's SUCCESS subset and
    never the raw catalog, even when the predecessor's artifact is missing.
    A stage that declares its own catalog (e.g. pipelines) joins that catalog
    against the SUCCESS subset; its rows never widen the set of repositories.
    ``predecessor`` supplies the extra columns of a predecessor that itself
    ran from such a catalog.
    """
    if stage.predecessor:
        if catalog_path is not None and stage.catalog is None:
            raise ValidationError(
                f"stage {stage.name} depends on {stage.predecessor}; it reads the predecessor status CSV, not a catalog"
            )
        if stage.catalog is not None and catalog_path is None:
            raise MalformedInputError(f"stage {stage.name} needs its catalog CSV ({list(stage.catalog.columns)})")
        path = predecessor_status or status_csv_path(state_dir, stage.predecessor)
        console.info("handoff", f"stage={stage.name} predecessor={stage.predecessor} status_csv={path}")
        items = load_predecessor_items(
            path,
            predecessor.extra_columns if predecessor else (),
            predecessor.key_fields if predecessor else (),
        )
        console.info("handoff", f"{len(items)} item(s) succeeded in {stage.predecessor}")
        if stage.catalog is not None and catalog_path is not None:
            items = join_stage_catalog(catalog_path, stage.catalog, items)
            console.info("catalog", f"joined {len(items)} item(s) from {catalog_path}")
        return items

    if catalog_path is not None and predecessor_status is not None:
        raise ValidationError(f"stage {stage.name}: give either a catalog or a predecessor status CSV, not both")

    if predecessor_status is not None:
        return load_predecessor_items(predecessor_status)

    if catalog_path is None:
        raise MalformedInputError(f"stage {stage.name} needs a catalog CSV")
    items = load_catalog(catalog_path)
    console.info("catalog", f"loaded {len(items)} item(s) from {catalog_path}")
    return items


def _report_verdict(stage: StageSpec, verdict: StageVerdict, rows: List[LedgerRow], status_csv: Path) -> None:
    console.info("stage", f"{stage.name} completed: {verdict.summary()}")

    if verdict.verdict == SUCCEEDED:
        console.section(f"All {verdict.succeeded} item(s) succeeded in stage {stage.name}")
    elif verdict.verdict == SUCCEEDED_WITH_ISSUES:
        console.warning(f"{verdict.failed} of {verdict.total} item(s) failed in stage {stage.name}")
        for r in failure_rows(rows):
            console.info("stage", f"  FAILED {r.key} <- {r.item.source} (log: {r.log_file})")
        console.complete_with_issues(
            f"Stage {stage.name} PARTIAL SUCCESS: {verdict.succeeded} succeeded, {verdict.failed} failed"
        )
    elif verdict.verdict == FAILED:
        console.error(f"All {verdict.total} item(s) failed in stage {stage.name}")
    else:
        console.error(f"Stage {stage.name} had no items to process")

    console.upload_summary(status_csv)
    console.set_outputs(
        {
            "verdict": verdict.verdict,
            "total": str(verdict.total),
            "succeeded": str(verdict.succeeded),
            "failed": str(verdict.failed),
            "status_csv": str(status_csv),
        }
    )


def run_stage(
    stage: StageSpec,
    *,
    state_dir: Path,
    logs_dir: Path,
    catalog_path: Optional[Path] = None,
    predecessor_status: Optional[Path] = None,
    predecessor: Optional[StageSpec] = None,
    max_concurrent: Optional[int] = None,
    stream_logs: bool = False,
    backend: Optional[InvocationBackend] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> StageReport:
    """Run one stage end to end and publish its terminal artifacts.

    Input, config and protocol errors raise before anything is dispatched.
    Per-item failures never raise; they end up in the ledger. The returned
    report carries the verdict and the exit code for the orchestrating layer.
    """
    items = resolve_stage_items(
        stage,
        state_dir=state_dir,
        catalog_path=catalog_path,
        predecessor_status=predecessor_status,
        predecessor=predecessor,
    )
    limit = validate_max_concurrent(max_concurrent) if max_concurrent is not None else stage.max_concurrent

    ensure_dir(state_dir)
    ensure_dir(logs_dir)
    bundle = build_stage_bundle(stage, state_dir=state_dir, backend=backend)

    console.section(f"Stage {stage.name}: {len(items)} item(s), max_concurrent={limit}")
    bundle.ledger.initialize(items)
    console.info("stage", f"initialized ledger: {bundle.ledger.path}")
    console.info("stage", f"adapters: {bundle.describe()}")

    if items:
        scheduler = BoundedScheduler(
            stage=stage.name,
            backend=bundle.backend,
            classifier=bundle.classifier,
            ledger=bundle.ledger,
            logs_dir=logs_dir,
            max_concurrent=limit,
            poll_interval=stage.poll_interval_seconds,
            item_timeout=stage.item_timeout_seconds,
            stream_logs=stream_logs,
            clock=clock,
            sleep=sleep,
        )
        result = scheduler.run(items)
    else:
        result = SchedulerResult(rows=bundle.ledger.read_terminal())

    if len(result.rows) != len(items):
        raise ConflictError(f"ledger has {len(result.rows)} rows for {len(items)} catalog items: {bundle.ledger.path}")

    verdict = reduce_stage_verdict(result.rows)
    status_csv = status_csv_path(state_dir, stage.name)
    write_status_csv(status_csv, result.rows)
    result_json = result_json_path(state_dir, stage.name)
    write_result_json(result_json, stage.name, verdict)

    _report_verdict(stage, verdict, result.rows, status_csv)

    return StageReport(
        stage=stage.name,
        verdict=verdict,
        rows=result.rows,
        status_csv=status_csv,
        result_json=result_json,
        exit_code=verdict_exit_code(verdict, stage.partial_exit_code),
        scheduler=result,
    )
