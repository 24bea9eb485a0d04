from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterable, Sequence

CATALOG_HEADER = "org,teamproject,repo,github_org,github_repo,gh_repo_visibility"


def ensure_repo_on_path() -> Path:
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


def catalog_line(repo: str, github_org: str = "gh-org", visibility: str = "private") -> str:
    return f"ado-org,Project,{repo},{github_org},{repo},{visibility}"


def write_catalog(path: Path, repos: Iterable[str]) -> Path:
    lines = [CATALOG_HEADER] + [catalog_line(r) for r in repos]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def make_items(repos: Sequence[str]):
    from ado2gh_platform.infra.models import WorkItem

    return [
        WorkItem(
            org="ado-org",
            teamproject="Project",
            repo=r,
            github_org="gh-org",
            github_repo=r,
            gh_repo_visibility="private",
        )
        for r in repos
    ]
