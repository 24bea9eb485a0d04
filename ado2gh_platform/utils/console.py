"""Console output and pipeline signals.

Human-readable progress goes to stdout as ``[tag] message`` lines. Signals for
the orchestrating pipeline use Azure DevOps logging commands; when the run
happens inside GitHub Actions (``GITHUB_OUTPUT`` set) the stage verdict is
also exported as step outputs.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict


def info(tag: str, message: str) -> None:
    print(f"[{tag}] {message}", flush=True)


def section(title: str) -> None:
    print(f"##[section]{title}", flush=True)


def warning(message: str) -> None:
    print(f"##[warning]{message}", flush=True)
    print(f"##vso[task.logissue type=warning]{message}", flush=True)


def error(message: str) -> None:
    print(f"##[error]{message}", flush=True)
    print(f"##vso[task.logissue type=error]{message}", flush=True)


def complete_with_issues(message: str) -> None:
    """Mark the current pipeline task as SucceededWithIssues (proceed on a reduced set)."""
    print(f"##vso[task.complete result=SucceededWithIssues]{message}", flush=True)


def upload_summary(path: Path) -> None:
    print(f"##vso[task.uploadsummary]{path}", flush=True)


def set_outputs(values: Dict[str, str]) -> None:
    out_path = str(os.environ.get("GITHUB_OUTPUT", "") or "").strip()
    if not out_path:
        return
    with open(out_path, "a", encoding="utf-8") as f:
        for k, v in values.items():
            f.write(f"{k}={v}\n")
