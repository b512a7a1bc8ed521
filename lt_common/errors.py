"""Shared error taxonomy for loadtest-orchestrator."""

from __future__ import annotations

from typing import Any, Mapping, TypeVar


def _normalize_context_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return normalize_context(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_context_value(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def normalize_context(context: Mapping[str, Any]) -> dict[str, Any]:
    """Return a JSON-friendly copy of an error context mapping."""
    return {key: _normalize_context_value(val) for key, val in context.items()}


class LTError(Exception):
    """Base error type for typed failure handling."""

    def __init__(
        self,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.context = normalize_context(context or {})
        if cause is not None:
            self.__cause__ = cause

    @property
    def error_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.error_type, "message": str(self), "context": self.context}


class ConfigurationError(LTError):
    """Failure due to missing or invalid backend/orchestrator configuration."""


class BackendError(LTError):
    """Failure inside an execution backend."""


class BackendExecutionError(BackendError):
    """The load-test tool could not be started or its transport failed."""


class CiBuildTimeoutError(BackendError):
    """A CI queue item never turned into a build within the allowed window."""


class ResultParseError(LTError):
    """Failure reading or reducing a raw result file."""


class InjectionError(LTError):
    """Failure producing a parameter-injected working copy of a script."""


class PersistenceError(LTError):
    """Failure reading or writing job records."""


class JobNotFoundError(PersistenceError):
    """The referenced job does not exist in the store."""


class InvalidTransitionError(LTError):
    """A job status change would move the job backwards."""


class SchedulerError(LTError):
    """The scheduler was used incorrectly (e.g. started without a callback)."""


T = TypeVar("T", bound=LTError)


def wrap_error(
    error_cls: type[T],
    message: str,
    *,
    context: Mapping[str, Any] | None = None,
    cause: Exception | None = None,
) -> T:
    """Create a typed LTError with optional context and cause."""
    return error_cls(message, context=context, cause=cause)


def error_to_payload(error: LTError) -> dict[str, Any]:
    """Convert an LTError to an event/job payload."""
    return {
        "error_type": error.error_type,
        "error": str(error),
        "error_context": error.context,
    }
