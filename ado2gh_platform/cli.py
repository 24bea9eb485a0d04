from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .catalog.loader import load_catalog
from .infra.config import load_stages_config
from .infra.errors import InfraError
from .infra.models import CATALOG_COLUMNS
from .orchestration.handoff import read_status_csv, write_filtered_catalog
from .orchestration.stage_runner import run_stage, verdict_exit_code
from .orchestration.status_reducer import reduce_stage_verdict
from .utils import console


def _repo_root() -> Path:
    # Assume this file is at repo_root/ado2gh_platform/cli.py
    return Path(__file__).resolve().parents[1]


def _opt_path(value: Optional[str]) -> Optional[Path]:
    if value is None or not str(value).strip():
        return None
    return Path(value).resolve()


def cmd_run_stage(args: argparse.Namespace) -> int:
    config = load_stages_config(_repo_root(), cli_path=args.config)
    stage = config.get(args.stage)
    predecessor = config.get(stage.predecessor) if stage.predecessor else None
    report = run_stage(
        stage,
        state_dir=Path(args.state_dir).resolve(),
        logs_dir=Path(args.logs_dir).resolve(),
        catalog_path=_opt_path(args.catalog),
        predecessor_status=_opt_path(args.predecessor_status),
        predecessor=predecessor,
        max_concurrent=args.max_concurrent,
        stream_logs=bool(args.stream_logs),
    )
    report.raise_for_verdict()
    return report.exit_code


def cmd_validate_catalog(args: argparse.Namespace) -> int:
    items = load_catalog(Path(args.catalog).resolve())
    console.info("catalog", f"{len(items)} item(s) OK: {args.catalog}")
    return 0


def cmd_verdict(args: argparse.Namespace) -> int:
    rows = read_status_csv(Path(args.status_csv).resolve())
    verdict = reduce_stage_verdict(rows)
    print(json.dumps(verdict.to_dict()))
    return verdict_exit_code(verdict, partial_exit_code=args.partial_exit_code)


def cmd_filter(args: argparse.Namespace) -> int:
    items = write_filtered_catalog(Path(args.status_csv).resolve(), Path(args.output).resolve())
    console.info("handoff", f"wrote {len(items)} successful item(s) to {args.output}")
    return 0


def _print_table(title: str, rows: List[Dict[str, str]], cols: List[str]) -> None:
    print("")
    print("=" * 80)
    print(title)
    print("=" * 80)
    if not rows:
        print("(no rows)")
        return
    widths = {c: max(len(c), *(len(str(r.get(c, ""))) for r in rows)) for c in cols}
    print(" | ".join(c.ljust(widths[c]) for c in cols))
    print("-+-".join("-" * widths[c] for c in cols))
    for r in rows:
        print(" | ".join(str(r.get(c, "")).ljust(widths[c]) for c in cols))


def cmd_summary(args: argparse.Namespace) -> int:
    path = Path(args.status_csv).resolve()
    rows = read_status_csv(path)
    verdict = reduce_stage_verdict(rows)
    cols = ["org", "teamproject", "repo", "github_org", "github_repo", "status", "log_file"]
    _print_table(f"STAGE STATUS: {path.name}", [r.to_row() for r in rows], cols)
    print("")
    print(f"[SUMMARY] {verdict.summary()} | Verdict: {verdict.verdict}")
    return 0


def cmd_stages(args: argparse.Namespace) -> int:
    config = load_stages_config(_repo_root(), cli_path=args.config)
    print(f"stages config: {config.source_path}")
    for name, s in config.stages.items():
        after = f" (after {s.predecessor})" if s.predecessor else ""
        if s.catalog:
            after += f" (catalog: {','.join(s.catalog.columns)})"
        print(f" - {name}{after}: {s.description} [max_concurrent={s.max_concurrent} classifier={s.classifier.kind}]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ado2gh-platform")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("run-stage", help="Run one pipeline stage over its work items")
    sp.add_argument("--stage", required=True)
    sp.add_argument(
        "--catalog",
        help=f"CSV with columns: {','.join(CATALOG_COLUMNS)}; for stages with their own catalog, that catalog",
    )
    sp.add_argument("--predecessor-status", help="Status CSV of the predecessor stage")
    sp.add_argument("--state-dir", default=".migration-state")
    sp.add_argument("--logs-dir", default="logs")
    sp.add_argument("--config", default=None, help="Stages YAML (default: config/stages.yml)")
    sp.add_argument("--max-concurrent", type=int, default=None)
    sp.add_argument("--stream-logs", action="store_true", help="Echo per-item log lines to the console")
    sp.set_defaults(func=cmd_run_stage)

    sp = sub.add_parser("validate-catalog", help="Validate a work catalog CSV without running anything")
    sp.add_argument("--catalog", required=True)
    sp.set_defaults(func=cmd_validate_catalog)

    sp = sub.add_parser("verdict", help="Aggregate a terminal status CSV into a stage verdict")
    sp.add_argument("--status-csv", required=True)
    sp.add_argument("--partial-exit-code", type=int, default=0)
    sp.set_defaults(func=cmd_verdict)

    sp = sub.add_parser("filter", help="Write the successful subset of a status CSV as a catalog")
    sp.add_argument("--status-csv", required=True)
    sp.add_argument("--output", required=True)
    sp.set_defaults(func=cmd_filter)

    sp = sub.add_parser("summary", help="Print a status CSV as a table")
    sp.add_argument("--status-csv", required=True)
    sp.set_defaults(func=cmd_summary)

    sp = sub.add_parser("stages", help="List configured stages")
    sp.add_argument("--config", default=None)
    sp.set_defaults(func=cmd_stages)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return int(args.func(args) or 0)
    except InfraError as e:
        console.error(f"{e.__class__.__name__}: {e}")
        return int(e.exit_code)


if __name__ == "__main__":
    sys.exit(main())
