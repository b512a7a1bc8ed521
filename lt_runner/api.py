"""Public API surface for lt_runner."""

from lt_runner.backends import (
    BackendRegistry,
    CiClient,
    CiTriggerBackend,
    ExecutionBackend,
    HealthStatus,
    LocalBackend,
    RemoteShellBackend,
)
from lt_runner.models.config import (
    CI_BACKEND,
    LOCAL_BACKEND,
    SSH_BACKEND,
    BackendConfig,
    CiTriggerBackendConfig,
    LocalBackendConfig,
    RemoteShellBackendConfig,
    build_backend_configs,
    collect_backend_configs,
)
from lt_runner.models.context import JobContext
from lt_runner.models.events import (
    EventType,
    ExecutionEvent,
    ExecutionPhase,
    LogLevel,
)
from lt_runner.results import ResultReducer, ResultSummary, TransactionStats
from lt_runner.scripts import InjectionParams, ParameterInjector

__all__ = [
    "BackendConfig",
    "BackendRegistry",
    "CI_BACKEND",
    "CiClient",
    "CiTriggerBackend",
    "CiTriggerBackendConfig",
    "EventType",
    "ExecutionBackend",
    "ExecutionEvent",
    "ExecutionPhase",
    "HealthStatus",
    "InjectionParams",
    "JobContext",
    "LOCAL_BACKEND",
    "LocalBackend",
    "LocalBackendConfig",
    "LogLevel",
    "ParameterInjector",
    "RemoteShellBackend",
    "RemoteShellBackendConfig",
    "ResultReducer",
    "ResultSummary",
    "SSH_BACKEND",
    "TransactionStats",
    "build_backend_configs",
    "collect_backend_configs",
]
