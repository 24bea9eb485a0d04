from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from _testutil import ensure_repo_on_path

MINIMAL = """\
defaults:
  max_concurrent: 2
stages:
  migrate:
    command: ["tool", "{github_repo}"]
  boards:
    predecessor: migrate
    max_concurrent: 4
    command: ["tool", "boards", "{github_repo}"]
    classifier:
      kind: exit_status
"""


def _clean_env():
    return mock.patch.dict(
        os.environ,
        {k: v for k, v in os.environ.items() if k not in ("ADO2GH_STAGES_CONFIG", "ADO2GH_MAX_CONCURRENT")},
        clear=True,
    )


class TestStagesConfig(unittest.TestCase):
    def test_shipped_config_loads(self) -> None:
        repo_root = ensure_repo_on_path()

        from ado2gh_platform.infra.config import MAX_CONCURRENT_CEILING, load_stages_config

        with _clean_env():
            cfg = load_stages_config(repo_root)

        self.assertEqual(
            list(cfg.stages),
            ["migrate", "post_migration_validation", "rewire_pipelines", "boards_integration", "disable_ado_repo"],
        )
        migrate = cfg.get("migrate")
        self.assertEqual(migrate.max_concurrent, 3)
        self.assertEqual(migrate.classifier.kind, "markers")
        self.assertEqual(migrate.classifier.success_markers, ("State: SUCCEEDED",))
        self.assertEqual(migrate.classifier.noop_markers, ("No operation will be performed",))
        self.assertIsNone(migrate.item_timeout_seconds)
        self.assertEqual(cfg.get("boards_integration").predecessor, "migrate")
        disable = cfg.get("disable_ado_repo")
        self.assertEqual(disable.classifier.kind, "exit_status")
        rewire = cfg.get("rewire_pipelines")
        self.assertEqual(rewire.predecessor, "migrate")
        self.assertEqual(rewire.key_fields, ("pipeline",))
        self.assertEqual(rewire.extra_columns, ("pipeline", "serviceConnection"))
        self.assertIn("{serviceConnection}", rewire.command)
        self.assertIsNone(migrate.catalog)
        self.assertLessEqual(max(s.max_concurrent for s in cfg.stages.values()), MAX_CONCURRENT_CEILING)

    def test_defaults_and_overrides(self) -> None:
        repo_root = ensure_repo_on_path()

        from ado2gh_platform.infra.config import load_stages_config
        from ado2gh_platform.infra.errors import ConfigError

        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "stages.yml"
            p.write_text(MINIMAL, encoding="utf-8")

            with _clean_env():
                cfg = load_stages_config(repo_root, cli_path=str(p))
                self.assertEqual(cfg.get("migrate").max_concurrent, 2)
                self.assertEqual(cfg.get("boards").max_concurrent, 4)
                self.assertEqual(cfg.get("migrate").ledger, "csv_snapshot")

                os.environ["ADO2GH_MAX_CONCURRENT"] = "1"
                cfg = load_stages_config(repo_root, cli_path=str(p))
                self.assertEqual(cfg.get("boards").max_concurrent, 1)

                os.environ["ADO2GH_MAX_CONCURRENT"] = "9"
                with self.assertRaises(ConfigError) as cm:
                    load_stages_config(repo_root, cli_path=str(p))
                self.assertIn("exceeds the allowed limit of 5", str(cm.exception))

    def test_env_path_precedence(self) -> None:
        repo_root = ensure_repo_on_path()

        from ado2gh_platform.infra.config import resolve_stages_config_path

        with _clean_env():
            self.assertEqual(resolve_stages_config_path(repo_root), (repo_root / "config" / "stages.yml").resolve())
            os.environ["ADO2GH_STAGES_CONFIG"] = "/tmp/env-stages.yml"
            self.assertEqual(resolve_stages_config_path(repo_root), Path("/tmp/env-stages.yml").resolve())
            self.assertEqual(
                resolve_stages_config_path(repo_root, cli_path="/tmp/cli-stages.yml"),
                Path("/tmp/cli-stages.yml").resolve(),
            )

    def test_invalid_configs_raise_config_error(self) -> None:
        repo_root = ensure_repo_on_path()

        from ado2gh_platform.infra.config import load_stages_config
        from ado2gh_platform.infra.errors import ConfigError

        bad = {
            "over_ceiling": "stages:\n  m:\n    max_concurrent: 6\n    command: [tool]\n",
            "no_command": "stages:\n  m:\n    description: x\n",
            "unknown_key": "stages:\n  m:\n    command: [tool]\n    retries: 3\n",
            "empty_markers": "stages:\n  m:\n    command: [tool]\n    classifier: {kind: markers, success_markers: []}\n",
            "catalog_without_predecessor": "stages:\n  m:\n    command: [tool]\n    catalog: {columns: [github_org, github_repo, pipeline]}\n",
            "catalog_without_destination": "stages:\n  a:\n    command: [tool]\n  m:\n    predecessor: a\n    command: [tool]\n    catalog: {columns: [org, pipeline]}\n",
            "catalog_key_not_extra": "stages:\n  a:\n    command: [tool]\n  m:\n    predecessor: a\n    command: [tool]\n    catalog: {columns: [github_org, github_repo, pipeline], key: [repo]}\n",
            "bad_classifier": "stages:\n  m:\n    command: [tool]\n    classifier: {kind: regex}\n",
            "bad_ledger": "defaults:\n  ledger: sqlite\nstages:\n  m:\n    command: [tool]\n",
            "unknown_predecessor": "stages:\n  m:\n    predecessor: nope\n    command: [tool]\n",
            "cycle": "stages:\n  a:\n    predecessor: b\n    command: [tool]\n  b:\n    predecessor: a\n    command: [tool]\n",
            "not_yaml": "stages: [unclosed\n",
            "list_root": "- a\n- b\n",
        }
        with tempfile.TemporaryDirectory() as td, _clean_env():
            for name, text in bad.items():
                p = Path(td) / f"{name}.yml"
                p.write_text(text, encoding="utf-8")
                with self.assertRaises(ConfigError, msg=name):
                    load_stages_config(repo_root, cli_path=str(p))

            with self.assertRaises(ConfigError):
                load_stages_config(repo_root, cli_path=str(Path(td) / "missing.yml"))

    def test_unknown_stage(self) -> None:
        repo_root = ensure_repo_on_path()

        from ado2gh_platform.infra.config import load_stages_config
        from ado2gh_platform.infra.errors import ConfigError

        with _clean_env():
            cfg = load_stages_config(repo_root)
        with self.assertRaises(ConfigError):
            cfg.get("mannequin_manager")

    def test_validate_max_concurrent(self) -> None:
        ensure_repo_on_path()

        from ado2gh_platform.infra.config import validate_max_concurrent
        from ado2gh_platform.infra.errors import ConfigError

        self.assertEqual(validate_max_concurrent("5"), 5)
        self.assertEqual(validate_max_concurrent(1), 1)
        for bad in (0, 6, -1, "three", None):
            with self.assertRaises(ConfigError):
                validate_max_concurrent(bad)


if __name__ == "__main__":
    unittest.main()
