"""Bounded-concurrency dispatch of one external invocation per work item.

The coordinator is single-threaded: it launches child processes up to the
concurrency limit, then polls their liveness on a fixed interval. It never
waits on one particular item, so a slow migration cannot hold back
dispatching or recording of its siblings.

Completion is detected from the child's own termination status, never from
log content (a log may still be mid-write). Completions are processed one at
a time, which makes the scheduler the only, serialized, ledger writer.
"""

from __future__ import annotations

import hashlib
import re
import subprocess
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Deque, Dict, Optional, Sequence, Tuple

from ..infra.config import DEFAULT_POLL_INTERVAL_SECONDS, validate_max_concurrent
from ..infra.contracts import InvocationBackend, InvocationHandle, OutcomeClassifier, StatusLedger
from ..infra.models import (
    FAILURE,
    IN_PROGRESS,
    SUCCESS,
    Classification,
    LedgerRow,
    SchedulerResult,
    WorkItem,
)
from ..utils.fs import append_text, ensure_dir, read_text_tolerant
from ..utils.time import log_stamp, utcnow_iso

# Exit status reported for an invocation that could not be started at all.
LAUNCH_FAILED_EXIT = 127

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def log_file_name(stage: str, item: WorkItem, stamp: str) -> str:
    """Readable, per-item log name.

    Sanitizing alone is lossy (``a-b/c`` and ``a/b-c`` read the same), so a
    digest of the item key keeps names of distinct items distinct.
    """
    digest = hashlib.sha256(item.key.encode("utf-8")).hexdigest()[:8]
    parts = [stage, item.github_org, item.github_repo, *(item.get(k) for k in item.key_fields), digest, stamp]
    return "-".join(_UNSAFE_NAME_RE.sub("_", p) for p in parts if p) + ".txt"


class _LaunchFailed(InvocationHandle):
    def poll(self) -> Optional[int]:
        return LAUNCH_FAILED_EXIT

    def kill(self) -> None:
        return None


@dataclass
class _InFlight:
    item: WorkItem
    handle: InvocationHandle
    log_path: Path
    started: float
    output_offset: int = 0
    streamed: int = 0


class BoundedScheduler:
    def __init__(
        self,
        *,
        stage: str,
        backend: InvocationBackend,
        classifier: OutcomeClassifier,
        ledger: StatusLedger,
        logs_dir: Path,
        max_concurrent: int = 3,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        item_timeout: Optional[float] = None,
        stream_logs: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        echo: Callable[[str], None] = print,
    ):
        self.stage = stage
        self.backend = backend
        self.classifier = classifier
        self.ledger = ledger
        self.logs_dir = logs_dir
        self.max_concurrent = validate_max_concurrent(max_concurrent)
        self.poll_interval = float(poll_interval)
        self.item_timeout = float(item_timeout) if item_timeout else None
        self.stream_logs = stream_logs
        self.clock = clock
        self.sleep = sleep
        self.echo = echo
        self._last_status = ""

    def run(self, items: Sequence[WorkItem]) -> SchedulerResult:
        """Process every item to a terminal state; return once queue and in-flight set are empty.

        The ledger must already hold a PENDING row per item.
        """
        queue: Deque[WorkItem] = deque(items)
        in_flight: Dict[str, _InFlight] = {}
        result = SchedulerResult()
        counts = {SUCCESS: 0, FAILURE: 0}

        self.echo(f"[scheduler] stage={self.stage} items={len(queue)} max_concurrent={self.max_concurrent}")

        while queue or in_flight:
            while len(in_flight) < self.max_concurrent and queue:
                item = queue.popleft()
                in_flight[item.key] = self._dispatch(item)
                result.dispatch_order.append(item.key)
                result.peak_in_flight = max(result.peak_in_flight, len(in_flight))
                self._status(queue, in_flight, counts)

            if self.stream_logs:
                for fl in in_flight.values():
                    self._stream(fl)

            completed = 0
            for key in list(in_flight):
                fl = in_flight[key]
                exit_code, timed_out = self._check(fl)
                if exit_code is None and not timed_out:
                    continue
                if self.stream_logs:
                    self._stream(fl)
                row = self._complete(fl, exit_code, timed_out)
                del in_flight[key]
                completed += 1
                counts[row.state] += 1
                result.completion_order.append(key)
                self._status(queue, in_flight, counts)

            if in_flight and completed == 0:
                self.sleep(self.poll_interval)

        result.rows = self.ledger.read_terminal()
        return result

    def _dispatch(self, item: WorkItem) -> _InFlight:
        log_path = self._claim_log(item)
        self.ledger.update_row(item.key, IN_PROGRESS, str(log_path))

        append_text(
            log_path,
            f"[{utcnow_iso()}] [START] {self.stage}: {item.source} -> {item.key} "
            f"(gh_repo_visibility: {item.gh_repo_visibility})\n"
            f"[{utcnow_iso()}] [DEBUG] Running: {self.backend.describe_command(item)}\n",
        )

        # The child output starts here; the classifier never sees our header lines.
        output_offset = log_path.stat().st_size

        handle: InvocationHandle
        try:
            handle = self.backend.start(item, log_path)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            append_text(log_path, f"[{utcnow_iso()}] [ERROR] failed to launch: {e}\n")
            handle = _LaunchFailed()
        return _InFlight(item=item, handle=handle, log_path=log_path, started=self.clock(), output_offset=output_offset)

    def _claim_log(self, item: WorkItem) -> Path:
        # Never share a log: an existing file gets a numbered sibling instead.
        ensure_dir(self.logs_dir)
        first = self.logs_dir / log_file_name(self.stage, item, log_stamp())
        candidate, n = first, 0
        while True:
            try:
                with candidate.open("x", encoding="utf-8"):
                    return candidate
            except FileExistsError:
                n += 1
                candidate = first.with_name(f"{first.stem}.{n}{first.suffix}")

    def _check(self, fl: _InFlight) -> Tuple[Optional[int], bool]:
        exit_code = fl.handle.poll()
        if exit_code is not None:
            return exit_code, False
        if self.item_timeout is not None and self.clock() - fl.started > self.item_timeout:
            fl.handle.kill()
            return fl.handle.poll(), True
        return None, False

    def _classify(self, fl: _InFlight, exit_code: Optional[int], timed_out: bool) -> Classification:
        if timed_out:
            return Classification(FAILURE, f"Timed out after {self.item_timeout:g}s")
        if exit_code != 0:
            return Classification(FAILURE, f"Exited with status {exit_code}")
        return self.classifier.classify(read_text_tolerant(fl.log_path, offset=fl.output_offset))

    def _complete(self, fl: _InFlight, exit_code: Optional[int], timed_out: bool) -> LedgerRow:
        verdict = self._classify(fl, exit_code, timed_out)
        if verdict.state == SUCCESS:
            line = f"[{utcnow_iso()}] [SUCCESS] {self.stage}: {fl.item.source} -> {fl.item.key}\n"
        else:
            line = f"[{utcnow_iso()}] [FAILED] {verdict.reason}\n"
        append_text(fl.log_path, line)
        return self.ledger.update_row(fl.item.key, verdict.state, str(fl.log_path))

    def _stream(self, fl: _InFlight) -> None:
        if not fl.log_path.exists():
            return
        with fl.log_path.open("rb") as f:
            f.seek(fl.streamed)
            chunk = f.read()
        # Only whole lines; a partial last line is printed on a later pass.
        end = chunk.rfind(b"\n")
        if end < 0:
            return
        fl.streamed += end + 1
        for line in chunk[: end + 1].decode("utf-8", errors="replace").splitlines():
            line = line.replace("\r", "")
            if line.strip():
                self.echo(f"[{fl.item.github_repo}] {line}")

    def _status(self, queue: Deque[WorkItem], in_flight: Dict[str, _InFlight], counts: Dict[str, int]) -> None:
        status = (
            f"QUEUE: {len(queue)} | IN PROGRESS: {len(in_flight)} | "
            f"SUCCEEDED: {counts[SUCCESS]} | FAILED: {counts[FAILURE]}"
        )
        if status != self._last_status:
            self._last_status = status
            self.echo(f"[scheduler] {status}")
