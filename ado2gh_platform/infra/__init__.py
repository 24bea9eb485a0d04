from __future__ import annotations

from .models import (
    WorkItem,
    LedgerRow,
    StageVerdict,
    Classification,
    SchedulerResult,
)

from .errors import (
    InfraError,
    NotFoundError,
    ValidationError,
    ConflictError,
    MalformedInputError,
    ConfigError,
    ProtocolError,
    PredecessorMissingError,
    PredecessorUnreadableError,
    NothingToDoError,
    StageAbortedError,
)

from .contracts import (
    StatusLedger,
    OutcomeClassifier,
    InvocationBackend,
    InvocationHandle,
)

from .config import (
    StageSpec,
    StagesConfig,
    ClassifierSpec,
    SecondaryCatalogSpec,
    load_stages_config,
    resolve_stages_config_path,
)

__all__ = [
    "WorkItem",
    "LedgerRow",
    "StageVerdict",
    "Classification",
    "SchedulerResult",
    "InfraError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "MalformedInputError",
    "ConfigError",
    "ProtocolError",
    "PredecessorMissingError",
    "PredecessorUnreadableError",
    "NothingToDoError",
    "StageAbortedError",
    "StatusLedger",
    "OutcomeClassifier",
    "InvocationBackend",
    "InvocationHandle",
    "StageSpec",
    "StagesConfig",
    "ClassifierSpec",
    "SecondaryCatalogSpec",
    "load_stages_config",
    "resolve_stages_config_path",
]
