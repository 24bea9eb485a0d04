from __future__ import annotations

import os
import sys
import tempfile
import time
import unittest
from pathlib import Path
from unittest import mock

from _testutil import ensure_repo_on_path, make_items


class TestCommandTemplate(unittest.TestCase):
    def test_render_and_describe(self) -> None:
        ensure_repo_on_path()

        from ado2gh_platform.infra.adapters.exec_subprocess import SubprocessInvocationBackend, render_command

        item = make_items(["My Repo"])[0]
        argv = render_command(["gh", "ado2gh", "migrate-repo", "--github-repo", "{github_repo}", "--stage={stage}"], item, "migrate")
        self.assertEqual(argv, ["gh", "ado2gh", "migrate-repo", "--github-repo", "My Repo", "--stage=migrate"])

        backend = SubprocessInvocationBackend(command=["gh", "{github_org}/{github_repo}"], stage="migrate")
        self.assertEqual(backend.describe_command(item), "gh 'gh-org/My Repo'")

    def test_invalid_templates_fail_before_dispatch(self) -> None:
        ensure_repo_on_path()

        from ado2gh_platform.infra.adapters.exec_subprocess import SubprocessInvocationBackend, validate_command_template
        from ado2gh_platform.infra.errors import ValidationError

        validate_command_template(["tool", "{org}", "{teamproject}", "{repo}", "{gh_repo_visibility}"])
        for bad in ([], ["tool", "{token}"], ["tool", "{github_repo"]):
            with self.assertRaises(ValidationError):
                validate_command_template(bad)
        with self.assertRaises(ValidationError):
            SubprocessInvocationBackend(command=["tool", "{nope}"])

    def test_catalog_columns_extend_the_template(self) -> None:
        ensure_repo_on_path()

        from dataclasses import replace

        from ado2gh_platform.infra.adapters.exec_subprocess import SubprocessInvocationBackend, validate_command_template
        from ado2gh_platform.infra.errors import ValidationError

        command = ["gh", "ado2gh", "rewire-pipeline", "--ado-pipeline", "{pipeline}", "--service-connection-id", "{serviceConnection}"]
        with self.assertRaises(ValidationError):
            validate_command_template(command)

        backend = SubprocessInvocationBackend(command=command, extra_fields=("pipeline", "serviceConnection"))
        item = replace(make_items(["r1"])[0], extra=(("pipeline", "build"), ("serviceConnection", "sc-1")))
        self.assertEqual(
            backend.describe_command(item),
            "gh ado2gh rewire-pipeline --ado-pipeline build --service-connection-id sc-1",
        )


class TestSubprocessInvocationBackend(unittest.TestCase):
    def _wait(self, handle, limit: float = 30.0):
        deadline = time.monotonic() + limit
        while handle.poll() is None:
            if time.monotonic() > deadline:
                handle.kill()
                self.fail("child did not terminate")
            time.sleep(0.02)
        return handle.poll()

    def test_output_goes_to_log_only(self) -> None:
        ensure_repo_on_path()

        from ado2gh_platform.infra.adapters.exec_subprocess import SubprocessInvocationBackend

        script = "import os, sys; print('out', sys.argv[1], os.environ['MIGRATION_TOKEN']); print('err', file=sys.stderr)"
        with tempfile.TemporaryDirectory() as td, mock.patch.dict(os.environ, {"PARENT_SECRET": "s3cret"}):
            log = Path(td) / "logs" / "a.txt"
            backend = SubprocessInvocationBackend(
                command=[sys.executable, "-c", script, "{github_repo}"],
                env={"MIGRATION_TOKEN": "${PARENT_SECRET}"},
            )
            handle = backend.start(make_items(["a"])[0], log)
            self.assertEqual(self._wait(handle), 0)
            text = log.read_text(encoding="utf-8")

        self.assertIn("out a s3cret", text)
        self.assertIn("err", text)

    def test_exit_status_and_kill(self) -> None:
        ensure_repo_on_path()

        from ado2gh_platform.infra.adapters.exec_subprocess import SubprocessInvocationBackend

        item = make_items(["a"])[0]
        with tempfile.TemporaryDirectory() as td:
            failing = SubprocessInvocationBackend(command=[sys.executable, "-c", "import sys; sys.exit(3)"])
            self.assertEqual(self._wait(failing.start(item, Path(td) / "f.txt")), 3)

            sleeper = SubprocessInvocationBackend(command=[sys.executable, "-c", "import time; time.sleep(60)"])
            handle = sleeper.start(item, Path(td) / "s.txt")
            self.assertIsNone(handle.poll())
            handle.kill()
            self.assertIsNotNone(handle.poll())
            self.assertNotEqual(handle.poll(), 0)


if __name__ == "__main__":
    unittest.main()
