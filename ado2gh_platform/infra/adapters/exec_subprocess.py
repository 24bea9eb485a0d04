from __future__ import annotations

import os
import shlex
import string
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..contracts import InvocationBackend, InvocationHandle
from ..errors import ValidationError
from ..models import CATALOG_COLUMNS, WorkItem


TEMPLATE_FIELDS = tuple(CATALOG_COLUMNS) + ("stage",)


def template_fields(command: Sequence[str]) -> List[str]:
    """Return the placeholder names referenced by a command template."""
    names: List[str] = []
    for arg in command:
        for _, name, _, _ in string.Formatter().parse(arg):
            if name is not None and name not in names:
                names.append(name)
    return names


def validate_command_template(command: Sequence[str], extra_fields: Sequence[str] = ()) -> None:
    if not command:
        raise ValidationError("command template is empty")
    allowed = TEMPLATE_FIELDS + tuple(f for f in extra_fields if f not in TEMPLATE_FIELDS)
    try:
        unknown = [n for n in template_fields(command) if n not in allowed]
    except ValueError as e:
        raise ValidationError(f"command template is malformed: {e}")
    if unknown:
        raise ValidationError(f"command template references unknown fields {unknown} (allowed: {list(allowed)})")


def render_command(command: Sequence[str], item: WorkItem, stage: str = "") -> List[str]:
    values: Dict[str, str] = dict(item.fields())
    values["stage"] = stage
    return [arg.format(**values) for arg in command]


class SubprocessHandle(InvocationHandle):
    def __init__(self, proc: subprocess.Popen):
        self.proc = proc

    def poll(self) -> Optional[int]:
        return self.proc.poll()

    def kill(self) -> None:
        if self.proc.poll() is None:
            self.proc.kill()
            self.proc.wait()


class SubprocessInvocationBackend(InvocationBackend):
    """Runs the stage command as a child process per work item.

    stdout and stderr go to the item's log file only. The log handle is owned
    by the child; the parent closes its copy right after the spawn.
    """

    def __init__(
        self,
        *,
        command: Sequence[str],
        stage: str = "",
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[Path] = None,
        extra_fields: Sequence[str] = (),
    ):
        validate_command_template(command, extra_fields)
        self.command = list(command)
        self.stage = stage
        self.env = dict(env or {})
        self.cwd = cwd

    def _child_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        for k, v in self.env.items():
            # Values may reference the parent environment, e.g. GH_TOKEN: "${GH_PAT}".
            env[k] = os.path.expandvars(v)
        return env

    def start(self, item: WorkItem, log_path: Path) -> InvocationHandle:
        argv = render_command(self.command, item, stage=self.stage)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("ab") as log_f:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=log_f,
                stderr=subprocess.STDOUT,
                env=self._child_env(),
                cwd=str(self.cwd) if self.cwd is not None else None,
            )
        return SubprocessHandle(proc)

    def describe_command(self, item: WorkItem) -> str:
        return shlex.join(render_command(self.command, item, stage=self.stage))

    def describe(self) -> Dict[str, Any]:
        return {
            "class": self.__class__.__name__,
            "command": list(self.command),
            "stage": self.stage,
        }
