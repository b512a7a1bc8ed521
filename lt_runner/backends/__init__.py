"""Execution backends: local process, remote shell and CI trigger."""

from lt_runner.backends.base import ExecutionBackend, HealthStatus, build_tool_args
from lt_runner.backends.ci_trigger import CiClient, CiTriggerBackend
from lt_runner.backends.local import LocalBackend
from lt_runner.backends.registry import BackendRegistry
from lt_runner.backends.remote_shell import RemoteShellBackend

__all__ = [
    "BackendRegistry",
    "CiClient",
    "CiTriggerBackend",
    "ExecutionBackend",
    "HealthStatus",
    "LocalBackend",
    "RemoteShellBackend",
    "build_tool_args",
]
