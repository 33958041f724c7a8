"""Shared error taxonomy for the autonomy loop."""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorClass(Enum):
    """How a failure affects retries, the current cycle, and the daemon."""

    RECOVERABLE = "recoverable"      # log, skip the action, keep looping
    NON_RETRYABLE = "non_retryable"  # permanent request-shape error, fail fast
    FATAL = "fatal"                  # unclassified, counts toward shutdown budget

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


class AutonomyError(RuntimeError):
    """
    Single error type for every classified failure.

    Callers branch on ``kind`` rather than on subclasses. ``check`` names the
    safety-gate check that produced the error (None for non-gate failures) and
    ``details`` carries diagnostic numbers (shortfalls, status codes, reasons).
    """

    def __init__(self, kind: ErrorClass, message: str, cause: Optional[BaseException] = None,
                 check: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause
        self.check = check
        self.details = details or {}

    @classmethod
    def recoverable(cls, message: str, cause: Optional[BaseException] = None, **kwargs) -> "AutonomyError":
        return cls(ErrorClass.RECOVERABLE, message, cause=cause, **kwargs)

    @classmethod
    def non_retryable(cls, message: str, cause: Optional[BaseException] = None, **kwargs) -> "AutonomyError":
        return cls(ErrorClass.NON_RETRYABLE, message, cause=cause, **kwargs)

    @classmethod
    def fatal(cls, message: str, cause: Optional[BaseException] = None, **kwargs) -> "AutonomyError":
        return cls(ErrorClass.FATAL, message, cause=cause, **kwargs)

    @property
    def is_recoverable(self) -> bool:
        return self.kind is ErrorClass.RECOVERABLE

    @property
    def from_gate(self) -> bool:
        return self.check is not None

    def __repr__(self) -> str:
        return f"AutonomyError(kind={self.kind.value}, message={self.message!r}, check={self.check!r})"


def classify(error: BaseException) -> ErrorClass:
    """Return the error class of any exception; untagged errors are FATAL."""
    if isinstance(error, AutonomyError):
        return error.kind
    return ErrorClass.FATAL


def is_recoverable(error: BaseException) -> bool:
    return classify(error) is ErrorClass.RECOVERABLE
