"""Outcome classification for external operation logs.

Classification is fail-closed: a log counts as SUCCESS only when it carries an
explicit success marker and no no-op marker. Anything else, including an empty
or truncated log, is FAILURE. A false SUCCESS would let later stages rewire,
integrate or disable against a repository that was never migrated.

A destination that already exists makes the migration tool print its no-op
marker. That outcome is treated as FAILURE, not as "already done": the
existing repository may not be the one this run was meant to produce.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple

from ..infra.config import ClassifierSpec, DEFAULT_NOOP_MARKERS, DEFAULT_SUCCESS_MARKERS
from ..infra.contracts import OutcomeClassifier
from ..infra.errors import ConfigError
from ..infra.models import FAILURE, SUCCESS, Classification


@dataclass(frozen=True)
class MarkerClassifier(OutcomeClassifier):
    success_markers: Tuple[str, ...] = DEFAULT_SUCCESS_MARKERS
    noop_markers: Tuple[str, ...] = DEFAULT_NOOP_MARKERS

    def __post_init__(self) -> None:
        if not any(str(m or "").strip() for m in self.success_markers):
            raise ConfigError("marker classifier requires at least one success marker")

    def classify(self, log_text: str) -> Classification:
        text = log_text or ""
        for m in self.noop_markers:
            if m and m in text:
                return Classification(FAILURE, "No operation performed - destination may already exist or the operation was skipped")
        if any(m and m in text for m in self.success_markers):
            return Classification(SUCCESS, "")
        return Classification(FAILURE, "Operation did not reach a success state")

    def describe(self) -> Dict[str, Any]:
        return {
            "class": self.__class__.__name__,
            "success_markers": list(self.success_markers),
            "noop_markers": list(self.noop_markers),
        }


@dataclass(frozen=True)
class ExitStatusClassifier(OutcomeClassifier):
    """Trusts the exit status alone.

    The scheduler has already turned any non-zero exit into FAILURE before a
    classifier is consulted, so reaching this classifier means exit status 0.
    Only for commands that print no terminal marker.
    """

    def classify(self, log_text: str) -> Classification:
        return Classification(SUCCESS, "")

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__}


def build_classifier(spec: ClassifierSpec) -> OutcomeClassifier:
    if spec.kind == "markers":
        return MarkerClassifier(success_markers=tuple(spec.success_markers), noop_markers=tuple(spec.noop_markers))
    if spec.kind == "exit_status":
        return ExitStatusClassifier()
    raise ConfigError(f"unknown classifier kind {spec.kind!r}")
