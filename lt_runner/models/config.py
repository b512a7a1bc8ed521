"""Backend configuration models (one per execution backend)."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from lt_common.env import parse_int_env

LOCAL_BACKEND = "local"
SSH_BACKEND = "ssh"
CI_BACKEND = "ci"

DEFAULT_TOOL_PATH = "/usr/bin/jmeter"


class LocalBackendConfig(BaseModel):
    """Configuration for running the load-test tool on this machine."""

    type: Literal["local"] = LOCAL_BACKEND
    tool_path: Path = Field(default=Path(DEFAULT_TOOL_PATH), description="Path to the load-test executable")
    tool_home: Optional[Path] = Field(default=None, description="Exported as JMETER_HOME when set")


class RemoteShellBackendConfig(BaseModel):
    """Configuration for running the tool on a remote host over SSH."""

    type: Literal["ssh"] = SSH_BACKEND
    host: str = Field(description="Hostname or IP address of the load generator")
    port: int = Field(default=22, gt=0, description="SSH port")
    username: str = Field(default="jmeter", description="SSH user")
    private_key_path: Optional[Path] = Field(default=None, description="Private key used for authentication")
    password: Optional[str] = Field(default=None, description="Password used when no key is configured")
    tool_path: str = Field(default=DEFAULT_TOOL_PATH, description="Path to the tool on the remote host")
    remote_work_dir: str = Field(default="/tmp/jmeter", description="Remote scratch directory")

    @model_validator(mode="after")
    def validate_host_not_empty(self) -> "RemoteShellBackendConfig":
        if not self.host or not self.host.strip():
            raise ValueError("RemoteShellBackendConfig: 'host' must be non-empty")
        return self


class CiTriggerBackendConfig(BaseModel):
    """Configuration for triggering a parameterized CI build."""

    type: Literal["ci"] = CI_BACKEND
    base_url: str = Field(description="CI server base URL")
    username: str = Field(default="", description="CI user for basic auth")
    api_token: str = Field(default="", description="CI API token for basic auth")
    job_name: str = Field(default="performance-test", description="Parameterized job to trigger")
    result_artifact: str = Field(default="results.csv", description="Artifact holding the raw results")

    @model_validator(mode="after")
    def validate_base_url(self) -> "CiTriggerBackendConfig":
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"CiTriggerBackendConfig: base_url must be http(s), got {self.base_url!r}")
        self.base_url = self.base_url.rstrip("/")
        return self


BackendConfig = Union[LocalBackendConfig, RemoteShellBackendConfig, CiTriggerBackendConfig]


def _get(settings: Mapping[str, str], key: str) -> str | None:
    value = settings.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _local_config(settings: Mapping[str, str]) -> LocalBackendConfig:
    tool_home = _get(settings, "jmeter_home")
    return LocalBackendConfig(
        tool_path=Path(_get(settings, "jmeter_path") or DEFAULT_TOOL_PATH),
        tool_home=Path(tool_home) if tool_home else None,
    )


def _ssh_config(settings: Mapping[str, str]) -> RemoteShellBackendConfig | None:
    ssh_host = _get(settings, "ssh_host")
    if not ssh_host:
        return None
    key_path = _get(settings, "ssh_private_key_path")
    return RemoteShellBackendConfig(
        host=ssh_host,
        port=parse_int_env(_get(settings, "ssh_port")) or 22,
        username=_get(settings, "ssh_username") or "jmeter",
        private_key_path=Path(key_path) if key_path else None,
        password=_get(settings, "ssh_password"),
        tool_path=_get(settings, "ssh_jmeter_path") or DEFAULT_TOOL_PATH,
        remote_work_dir=_get(settings, "ssh_remote_work_dir") or "/tmp/jmeter",
    )


def _ci_config(settings: Mapping[str, str]) -> CiTriggerBackendConfig | None:
    ci_url = _get(settings, "ci_url") or _get(settings, "jenkins_url")
    if not ci_url:
        return None
    return CiTriggerBackendConfig(
        base_url=ci_url,
        username=_get(settings, "ci_username") or _get(settings, "jenkins_username") or "",
        api_token=_get(settings, "ci_api_token") or _get(settings, "jenkins_api_token") or "",
        job_name=_get(settings, "ci_job_name")
        or _get(settings, "jenkins_job_name")
        or "performance-test",
        result_artifact=_get(settings, "ci_result_artifact") or "results.csv",
    )


_BUILDERS: dict[str, Callable[[Mapping[str, str]], Optional[BackendConfig]]] = {
    LOCAL_BACKEND: _local_config,
    SSH_BACKEND: _ssh_config,
    CI_BACKEND: _ci_config,
}


def build_backend_configs(settings: Mapping[str, str]) -> dict[str, BackendConfig]:
    """Build backend configurations from the ``runner`` settings category.

    The local backend is always configured; SSH needs ``ssh_host`` and CI needs
    ``ci_url`` (``jenkins_*`` keys are accepted as aliases). Raises
    ``ValidationError`` on the first invalid backend.
    """
    configs: dict[str, BackendConfig] = {}
    for backend_type, builder in _BUILDERS.items():
        config = builder(settings)
        if config is not None:
            configs[backend_type] = config
    return configs


def collect_backend_configs(
    settings: Mapping[str, str],
) -> tuple[dict[str, BackendConfig], dict[str, str]]:
    """Like ``build_backend_configs`` but keeps going past invalid backends.

    Returns the valid configurations and, per rejected backend type, a
    readable validation message.
    """
    configs: dict[str, BackendConfig] = {}
    errors: dict[str, str] = {}
    for backend_type, builder in _BUILDERS.items():
        try:
            config = builder(settings)
        except ValidationError as exc:
            detail = "; ".join(str(err.get("msg", "")) for err in exc.errors()) or str(exc)
            errors[backend_type] = f"Invalid {backend_type} backend settings: {detail}"
            continue
        if config is not None:
            configs[backend_type] = config
    return configs, errors
