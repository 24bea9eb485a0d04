from __future__ import annotations

from typing import Any, Optional


class InfraError(Exception):
    """Base class for platform errors.

    ``exit_code`` is the stable process exit status a stage reports when the
    error terminates it.
    """

    exit_code = 3


class NotFoundError(InfraError):
    """Raised when a requested entity cannot be found."""


class ValidationError(InfraError):
    """Raised when a config, contract, or input fails validation."""


class ConflictError(InfraError):
    """Raised when an operation conflicts with existing state."""


class MalformedInputError(ValidationError):
    """Raised when a work catalog is unreadable, incomplete, or ambiguous."""

    exit_code = 3


class ConfigError(ValidationError):
    """Raised when the stages configuration is missing or invalid."""

    exit_code = 3


class ProtocolError(InfraError):
    """Raised when the handoff between two stages is broken."""

    exit_code = 4


class PredecessorMissingError(ProtocolError):
    """Raised when the predecessor stage's status CSV does not exist."""


class PredecessorUnreadableError(ProtocolError):
    """Raised when the predecessor stage's status CSV cannot be parsed or is not terminal."""


class NothingToDoError(InfraError):
    """Raised when the predecessor stage produced no successful items."""

    exit_code = 5


class StageAbortedError(InfraError):
    """Raised when a stage ends with a fatal verdict (FAILED or EMPTY)."""

    def __init__(self, message: str, verdict: Optional[Any] = None, exit_code: int = 1) -> None:
        super().__init__(message)
        self.verdict = verdict
        self.exit_code = exit_code
