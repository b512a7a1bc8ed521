"""Lookup of configured execution backends by type string."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from lt_common.errors import ConfigurationError
from lt_runner.backends.base import ExecutionBackend, HealthStatus
from lt_runner.backends.ci_trigger import CiTriggerBackend
from lt_runner.backends.local import LocalBackend
from lt_runner.backends.remote_shell import RemoteShellBackend
from lt_runner.models.config import (
    BackendConfig,
    CiTriggerBackendConfig,
    LocalBackendConfig,
    RemoteShellBackendConfig,
)

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Holds one backend instance per type; configured once at start-up.

    Backend types whose settings were rejected are remembered with the
    validation message so lookups and health checks can report it.
    """

    def __init__(self, backends: Iterable[ExecutionBackend] = ()) -> None:
        self._backends: dict[str, ExecutionBackend] = {}
        self._config_errors: dict[str, str] = {}
        for backend in backends:
            self.register(backend)

    def register(self, backend: ExecutionBackend) -> None:
        self._backends[backend.backend_type] = backend
        self._config_errors.pop(backend.backend_type, None)
        logger.debug("Registered backend %s", backend.backend_type)

    def mark_misconfigured(self, backend_type: str, message: str) -> None:
        self._config_errors[backend_type] = message
        logger.warning("Backend %s is unavailable: %s", backend_type, message)

    def config_error(self, backend_type: str) -> str | None:
        return self._config_errors.get(backend_type)

    def get(self, backend_type: str) -> ExecutionBackend:
        backend = self._backends.get(backend_type)
        if backend is None:
            message = self._config_errors.get(backend_type) or f"Backend '{backend_type}' is not configured"
            raise ConfigurationError(
                message,
                context={"backend_type": backend_type, "available": self.types()},
            )
        return backend

    def types(self) -> list[str]:
        return sorted(self._backends)

    def __contains__(self, backend_type: object) -> bool:
        return backend_type in self._backends

    def __len__(self) -> int:
        return len(self._backends)

    def health_check(self, backend_type: str) -> HealthStatus:
        try:
            backend = self.get(backend_type)
        except ConfigurationError as exc:
            return HealthStatus(False, str(exc))
        return backend.health_check()

    @classmethod
    def from_configs(
        cls,
        configs: Mapping[str, BackendConfig],
        *,
        config_errors: Mapping[str, str] | None = None,
        kill_grace_seconds: float = 5.0,
        ci_poll_interval: float = 5.0,
        ci_queue_timeout: float = 300.0,
        health_timeout: float = 5.0,
    ) -> "BackendRegistry":
        """Instantiate a backend for every configuration entry."""
        registry = cls()
        for config in configs.values():
            if isinstance(config, LocalBackendConfig):
                registry.register(LocalBackend(config, kill_grace_seconds=kill_grace_seconds))
            elif isinstance(config, RemoteShellBackendConfig):
                registry.register(RemoteShellBackend(config, health_timeout=health_timeout))
            elif isinstance(config, CiTriggerBackendConfig):
                registry.register(
                    CiTriggerBackend(
                        config,
                        poll_interval=ci_poll_interval,
                        queue_timeout=ci_queue_timeout,
                        health_timeout=health_timeout,
                    )
                )
            else:
                raise ConfigurationError(f"Unsupported backend config: {type(config).__name__}")
        for backend_type, message in (config_errors or {}).items():
            registry.mark_misconfigured(backend_type, message)
        return registry
