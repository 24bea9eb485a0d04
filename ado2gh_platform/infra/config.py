from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jsonschema
import yaml

from ..utils.yamlio import read_yaml
from .errors import ConfigError
from .models import CATALOG_COLUMNS


DEFAULT_MAX_CONCURRENT = 3
# The migration API throttles above this; throttling failures are
# indistinguishable from real ones in the logs.
MAX_CONCURRENT_CEILING = 5
DEFAULT_POLL_INTERVAL_SECONDS = 2.0

ALLOWED_LEDGER_KINDS: Tuple[str, ...] = ("csv_snapshot", "csv_events")
ALLOWED_CLASSIFIER_KINDS: Tuple[str, ...] = ("markers", "exit_status")

DEFAULT_SUCCESS_MARKERS: Tuple[str, ...] = ("State: SUCCEEDED",)
DEFAULT_NOOP_MARKERS: Tuple[str, ...] = ("No operation will be performed",)


@dataclass(frozen=True)
class ClassifierSpec:
    kind: str = "markers"
    success_markers: Tuple[str, ...] = DEFAULT_SUCCESS_MARKERS
    noop_markers: Tuple[str, ...] = DEFAULT_NOOP_MARKERS


@dataclass(frozen=True)
class SecondaryCatalogSpec:
    """Per-item catalog a dependent stage joins against its predecessor's successes.

    Rows are matched to successful predecessor items on
    github_org/github_repo; ``key`` names the extra columns that tell apart
    several rows for one repository.
    """

    columns: Tuple[str, ...]
    key: Tuple[str, ...] = ()

    @property
    def extra_columns(self) -> Tuple[str, ...]:
        return tuple(c for c in self.columns if c not in CATALOG_COLUMNS)


@dataclass(frozen=True)
class StageSpec:
    name: str
    command: List[str]
    description: str = ""
    predecessor: str = ""
    classifier: ClassifierSpec = field(default_factory=ClassifierSpec)
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    item_timeout_seconds: Optional[float] = None
    ledger: str = "csv_snapshot"
    partial_exit_code: int = 0
    env: Dict[str, str] = field(default_factory=dict)
    catalog: Optional[SecondaryCatalogSpec] = None

    @property
    def extra_columns(self) -> Tuple[str, ...]:
        return self.catalog.extra_columns if self.catalog else ()

    @property
    def key_fields(self) -> Tuple[str, ...]:
        return self.catalog.key if self.catalog else ()


@dataclass(frozen=True)
class StagesConfig:
    source_path: str
    stages: Dict[str, StageSpec]

    def get(self, name: str) -> StageSpec:
        if name not in self.stages:
            raise ConfigError(f"unknown stage {name!r} (configured: {sorted(self.stages)})")
        return self.stages[name]


def resolve_stages_config_path(repo_root: Path, cli_path: Optional[str] = None) -> Path:
    """Resolve the stages YAML path.

    Precedence:
      1) CLI flag --config
      2) ADO2GH_STAGES_CONFIG
      3) <repo_root>/config/stages.yml
    """
    if cli_path and str(cli_path).strip():
        return Path(str(cli_path).strip()).expanduser().resolve()

    env_path = str(os.environ.get("ADO2GH_STAGES_CONFIG", "") or "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()

    return (repo_root / "config" / "stages.yml").resolve()


def _tunables_schema() -> Dict[str, Any]:
    # Fresh dict per call; callers attach it under several keys.
    return {
        "max_concurrent": {"type": "integer", "minimum": 1, "maximum": MAX_CONCURRENT_CEILING},
        "poll_interval_seconds": {"type": "number", "exclusiveMinimum": 0},
        "item_timeout_seconds": {"type": ["number", "null"], "exclusiveMinimum": 0},
        "ledger": {"type": "string", "enum": list(ALLOWED_LEDGER_KINDS)},
        "partial_exit_code": {"type": "integer", "minimum": 0, "maximum": 255},
    }


def _stages_schema() -> Dict[str, Any]:
    classifier = {
        "type": "object",
        "required": ["kind"],
        "properties": {
            "kind": {"type": "string", "enum": list(ALLOWED_CLASSIFIER_KINDS)},
            "success_markers": {"type": "array", "minItems": 1, "items": {"type": "string", "minLength": 1}},
            "noop_markers": {"type": "array", "items": {"type": "string", "minLength": 1}},
        },
        "additionalProperties": False,
    }

    catalog = {
        "type": "object",
        "required": ["columns"],
        "properties": {
            "columns": {"type": "array", "minItems": 1, "uniqueItems": True, "items": {"type": "string", "minLength": 1}},
            "key": {"type": "array", "uniqueItems": True, "items": {"type": "string", "minLength": 1}},
        },
        "additionalProperties": False,
    }

    stage = {
        "type": "object",
        "required": ["command"],
        "properties": {
            "description": {"type": "string"},
            "predecessor": {"type": "string"},
            "command": {"type": "array", "minItems": 1, "items": {"type": "string"}},
            "classifier": classifier,
            "catalog": catalog,
            "env": {"type": "object", "additionalProperties": {"type": "string"}},
            **_tunables_schema(),
        },
        "additionalProperties": False,
    }

    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "required": ["stages"],
        "properties": {
            "defaults": {"type": "object", "properties": _tunables_schema(), "additionalProperties": False},
            "stages": {"type": "object", "minProperties": 1, "additionalProperties": stage},
        },
        "additionalProperties": False,
    }


def _validate_dict(data: Dict[str, Any], path: Path) -> None:
    try:
        jsonschema.validate(instance=data, schema=_stages_schema())
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigError(f"stages config schema validation failed at {where}: {e.message} ({path})")


def validate_max_concurrent(value: Any) -> int:
    try:
        n = int(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigError(f"max_concurrent must be an integer, got {value!r}")
    if n < 1:
        raise ConfigError("max_concurrent must be at least 1")
    if n > MAX_CONCURRENT_CEILING:
        raise ConfigError(
            f"max_concurrent ({n}) exceeds the allowed limit of {MAX_CONCURRENT_CEILING}; "
            f"set it to {MAX_CONCURRENT_CEILING} or less"
        )
    return n


def _check_predecessors(stages: Dict[str, StageSpec]) -> None:
    for name, spec in stages.items():
        if spec.predecessor and spec.predecessor not in stages:
            raise ConfigError(f"stage {name!r} has unknown predecessor {spec.predecessor!r}")
        if spec.catalog and not spec.predecessor:
            raise ConfigError(f"stage {name!r} declares a catalog but no predecessor to join it against")

    for name in stages:
        seen = [name]
        cur = stages[name].predecessor
        while cur:
            if cur in seen:
                raise ConfigError(f"stage predecessor cycle: {' -> '.join(seen + [cur])}")
            seen.append(cur)
            cur = stages[cur].predecessor


def _build_catalog(name: str, raw: Optional[Dict[str, Any]]) -> Optional[SecondaryCatalogSpec]:
    if raw is None:
        return None
    columns = tuple(str(c).strip() for c in raw["columns"])
    key = tuple(str(c).strip() for c in (raw.get("key") or ()))
    missing = [c for c in ("github_org", "github_repo") if c not in columns]
    if missing:
        raise ConfigError(f"stage {name!r} catalog columns must include {missing} to join on the repository")
    spec = SecondaryCatalogSpec(columns=columns, key=key)
    stray = [k for k in key if k not in spec.extra_columns]
    if stray:
        raise ConfigError(f"stage {name!r} catalog key {stray} must name extra catalog columns {list(spec.extra_columns)}")
    return spec


def _build_stage(name: str, raw: Dict[str, Any], defaults: Dict[str, Any]) -> StageSpec:
    merged = {**defaults, **raw}

    craw = raw.get("classifier") or {"kind": "markers"}
    classifier = ClassifierSpec(
        kind=str(craw.get("kind") or "markers"),
        success_markers=tuple(craw["success_markers"]) if "success_markers" in craw else DEFAULT_SUCCESS_MARKERS,
        noop_markers=tuple(craw["noop_markers"]) if "noop_markers" in craw else DEFAULT_NOOP_MARKERS,
    )

    timeout = merged.get("item_timeout_seconds")
    return StageSpec(
        name=name,
        command=[str(a) for a in raw["command"]],
        description=str(raw.get("description") or ""),
        predecessor=str(raw.get("predecessor") or "").strip(),
        classifier=classifier,
        max_concurrent=validate_max_concurrent(merged.get("max_concurrent", DEFAULT_MAX_CONCURRENT)),
        poll_interval_seconds=float(merged.get("poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS)),
        item_timeout_seconds=float(timeout) if timeout is not None else None,
        ledger=str(merged.get("ledger") or "csv_snapshot"),
        partial_exit_code=int(merged.get("partial_exit_code", 0)),
        env={str(k): str(v) for k, v in (raw.get("env") or {}).items()},
        catalog=_build_catalog(name, raw.get("catalog")),
    )


def load_stages_config(repo_root: Path, cli_path: Optional[str] = None) -> StagesConfig:
    """Load and validate the stages configuration.

    Environment overrides:
      - ADO2GH_STAGES_CONFIG (file path)
      - ADO2GH_MAX_CONCURRENT (replaces max_concurrent for every stage)
    """
    path = resolve_stages_config_path(repo_root, cli_path)
    if not path.exists():
        raise ConfigError(f"stages config not found: {path}")

    try:
        data = read_yaml(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"stages config YAML parse error: {e} ({path})")
    _validate_dict(data, path)

    defaults = dict(data.get("defaults") or {})
    env_max = str(os.environ.get("ADO2GH_MAX_CONCURRENT", "") or "").strip()
    if env_max:
        defaults["max_concurrent"] = validate_max_concurrent(env_max)

    stages: Dict[str, StageSpec] = {}
    for name, raw in (data.get("stages") or {}).items():
        if env_max:
            raw = {k: v for k, v in raw.items() if k != "max_concurrent"}
        stages[str(name)] = _build_stage(str(name), raw, defaults)

    _check_predecessors(stages)
    return StagesConfig(source_path=str(path), stages=stages)
