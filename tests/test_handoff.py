from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from _testutil import ensure_repo_on_path, make_items


def _status_rows(states):
    from ado2gh_platform.infra.models import LedgerRow

    items = make_items([f"r{i}" for i in range(len(states))])
    return [LedgerRow(item=it, state=s, log_file=f"logs/{it.github_repo}.txt", updated_at="2026-01-01T00:00:00Z") for it, s in zip(items, states)]


class TestStatusHandoff(unittest.TestCase):
    def test_success_subset_round_trip(self) -> None:
        ensure_repo_on_path()

        from ado2gh_platform.infra.models import FAILURE, SUCCESS
        from ado2gh_platform.orchestration.handoff import (
            load_predecessor_items,
            read_status_csv,
            status_csv_path,
            write_status_csv,
        )

        with tempfile.TemporaryDirectory() as td:
            path = status_csv_path(Path(td), "migrate")
            self.assertEqual(path.name, "migrate-status.csv")
            write_status_csv(path, _status_rows([SUCCESS, FAILURE, SUCCESS, FAILURE, SUCCESS]))

            rows = read_status_csv(path)
            self.assertEqual(len(rows), 5)
            self.assertEqual(rows[1].log_file, "logs/r1.txt")

            items = load_predecessor_items(path)
            self.assertEqual([it.github_repo for it in items], ["r0", "r2", "r4"])

    def test_missing_file_is_distinct_from_nothing_to_do(self) -> None:
        ensure_repo_on_path()

        from ado2gh_platform.infra.errors import (
            NothingToDoError,
            PredecessorMissingError,
            ProtocolError,
        )
        from ado2gh_platform.infra.models import FAILURE
        from ado2gh_platform.orchestration.handoff import load_predecessor_items, write_status_csv

        with tempfile.TemporaryDirectory() as td:
            missing = Path(td) / "migrate-status.csv"
            with self.assertRaises(PredecessorMissingError) as cm:
                load_predecessor_items(missing)
            self.assertIsInstance(cm.exception, ProtocolError)
            self.assertEqual(cm.exception.exit_code, 4)

            write_status_csv(missing, _status_rows([FAILURE] * 5))
            with self.assertRaises(NothingToDoError) as cm2:
                load_predecessor_items(missing)
            self.assertNotIsInstance(cm2.exception, ProtocolError)
            self.assertEqual(cm2.exception.exit_code, 5)

    def test_unreadable_status_csv(self) -> None:
        ensure_repo_on_path()

        from ado2gh_platform.infra.errors import PredecessorUnreadableError
        from ado2gh_platform.infra.models import IN_PROGRESS, SUCCESS
        from ado2gh_platform.orchestration.handoff import read_status_csv, write_status_csv

        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "status.csv"

            p.write_text("org,teamproject,repo,github_org,github_repo,gh_repo_visibility\nado,T,r,gh,r,private\n", encoding="utf-8")
            with self.assertRaises(PredecessorUnreadableError):
                read_status_csv(p)

            p.write_text(
                "org,teamproject,repo,github_org,github_repo,gh_repo_visibility,status\nado,T,r,gh,r,private,Success\n",
                encoding="utf-8",
            )
            with self.assertRaises(PredecessorUnreadableError) as cm:
                read_status_csv(p)
            self.assertIn("unknown status", str(cm.exception))

            write_status_csv(p, _status_rows([SUCCESS, IN_PROGRESS]))
            with self.assertRaises(PredecessorUnreadableError) as cm:
                read_status_csv(p)
            self.assertIn("did not finish", str(cm.exception))

            p.write_text(
                "org,teamproject,repo,github_org,github_repo,gh_repo_visibility,status,log_file,updated_at\n"
                "ado,T,r,gh,r,private,SUCCESS,logs/r.txt,2026-01-01T00:00:00Z,surplus\n",
                encoding="utf-8",
            )
            with self.assertRaises(PredecessorUnreadableError) as cm:
                read_status_csv(p)
            self.assertIn("line 2", str(cm.exception))

            p.write_bytes(b"\xff\xfe\x00garbage")
            with self.assertRaises(PredecessorUnreadableError):
                read_status_csv(p)

    def test_filtered_catalog_and_result_json(self) -> None:
        ensure_repo_on_path()

        from ado2gh_platform.catalog import load_catalog
        from ado2gh_platform.infra.models import FAILURE, SUCCESS
        from ado2gh_platform.orchestration.handoff import (
            result_json_path,
            write_filtered_catalog,
            write_result_json,
            write_status_csv,
        )
        from ado2gh_platform.orchestration.status_reducer import reduce_stage_verdict

        with tempfile.TemporaryDirectory() as td:
            tmp = Path(td)
            rows = _status_rows([FAILURE, SUCCESS, SUCCESS])
            status = tmp / "migrate-status.csv"
            write_status_csv(status, rows)

            out = tmp / "next" / "repos.csv"
            written = write_filtered_catalog(status, out)
            self.assertEqual(len(written), 2)
            self.assertEqual([it.github_repo for it in load_catalog(out)], ["r1", "r2"])

            rj = result_json_path(tmp, "migrate")
            write_result_json(rj, "migrate", reduce_stage_verdict(rows))
            payload = json.loads(rj.read_text(encoding="utf-8"))

        self.assertEqual(payload["stage"], "migrate")
        self.assertEqual(payload["verdict"], "SUCCEEDED_WITH_ISSUES")
        self.assertEqual(payload["succeeded"], 2)
        self.assertEqual(payload["failed"], 1)


PIPELINES_HEADER = "org,teamproject,pipeline,github_org,github_repo,serviceConnection"


class TestStageCatalogJoin(unittest.TestCase):
    def _spec(self):
        from ado2gh_platform.infra.config import SecondaryCatalogSpec

        return SecondaryCatalogSpec(
            columns=("org", "teamproject", "pipeline", "github_org", "github_repo", "serviceConnection"),
            key=("pipeline",),
        )

    def test_rows_join_only_successful_repositories(self) -> None:
        ensure_repo_on_path()

        from ado2gh_platform.orchestration.handoff import join_stage_catalog

        upstream = make_items(["r0", "r2"])
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "pipelines.csv"
            p.write_text(
                PIPELINES_HEADER + "\n"
                "ado-org,Project,build,gh-org,r0,sc-1\n"
                "ado-org,Project,deploy,GH-ORG,R0,sc-1\n"
                "ado-org,Project,build,gh-org,r1,sc-1\n"
                "ado-org,Other,ci,gh-org,r2,sc-2\n",
                encoding="utf-8",
            )
            items = join_stage_catalog(p, self._spec(), upstream)

        self.assertEqual([it.key for it in items], ["gh-org/r0#build", "gh-org/r0#deploy", "gh-org/r2#ci"])
        self.assertEqual(items[1].repo, "r0")
        self.assertEqual(items[1].github_repo, "r0")
        self.assertEqual(items[2].teamproject, "Other")
        self.assertEqual(items[2].get("serviceConnection"), "sc-2")
        self.assertEqual(items[2].fields()["pipeline"], "ci")

    def test_duplicates_and_empty_joins(self) -> None:
        ensure_repo_on_path()

        from ado2gh_platform.infra.errors import MalformedInputError, NothingToDoError
        from ado2gh_platform.orchestration.handoff import join_stage_catalog

        upstream = make_items(["r0"])
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "pipelines.csv"
            p.write_text(
                PIPELINES_HEADER + "\n" "ado-org,Project,build,gh-org,r0,sc-1\n" "ado-org,Project,Build,gh-org,r0,sc-2\n",
                encoding="utf-8",
            )
            with self.assertRaises(MalformedInputError) as cm:
                join_stage_catalog(p, self._spec(), upstream)
            self.assertIn("line 3", str(cm.exception))

            p.write_text(PIPELINES_HEADER + "\n" "ado-org,Project,build,gh-org,r9,sc-1\n", encoding="utf-8")
            with self.assertRaises(NothingToDoError):
                join_stage_catalog(p, self._spec(), upstream)

            p.write_text(PIPELINES_HEADER + "\n" "ado-org,Project,build,gh-org,r0,\n", encoding="utf-8")
            with self.assertRaises(MalformedInputError) as cm:
                join_stage_catalog(p, self._spec(), upstream)
            self.assertIn("serviceConnection", str(cm.exception))

    def test_status_csv_keeps_catalog_columns(self) -> None:
        ensure_repo_on_path()

        from ado2gh_platform.infra.models import SUCCESS, LedgerRow, WorkItem
        from ado2gh_platform.orchestration.handoff import read_status_csv, write_status_csv

        base = make_items(["r0"])[0]
        rows = [
            LedgerRow(
                item=WorkItem(**{**base.fields(), "extra": (("pipeline", p), ("serviceConnection", "sc")), "key_fields": ("pipeline",)}),
                state=SUCCESS,
            )
            for p in ("build", "deploy")
        ]
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "rewire_pipelines-status.csv"
            write_status_csv(path, rows)
            header = path.read_text(encoding="utf-8").splitlines()[0]
            back = read_status_csv(path, ("pipeline", "serviceConnection"), ("pipeline",))

        self.assertIn("pipeline", header.split(","))
        self.assertEqual([r.key for r in back], ["gh-org/r0#build", "gh-org/r0#deploy"])


if __name__ == "__main__":
    unittest.main()
