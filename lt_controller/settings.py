"""Orchestrator tuning knobs with environment overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from lt_common.env import parse_float_env, parse_int_env

DATA_SUBDIRS = ("results", "logs", "scripts", "temp")


class OrchestratorSettings(BaseModel):
    """Timing and storage settings for the orchestrator and its backends."""

    data_dir: Path = Field(default=Path("data"), description="Root of results/logs/scripts/temp")
    poll_interval_seconds: float = Field(default=2.0, gt=0, description="Idle scheduler poll")
    default_cooldown_seconds: float = Field(default=900, ge=0, description="Pause between jobs")
    kill_grace_seconds: float = Field(default=5.0, ge=0, description="SIGTERM to SIGKILL delay")
    ci_poll_interval_seconds: float = Field(default=5.0, gt=0, description="CI build poll")
    ci_queue_timeout_seconds: float = Field(default=300, gt=0, description="CI build-number wait")
    health_timeout_seconds: float = Field(default=5.0, gt=0, description="Health check timeout")
    default_ramp_up_seconds: int = Field(default=60, ge=0, description="Ramp-up when a job has none")

    @property
    def results_dir(self) -> Path:
        return self.data_dir / "results"

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def scripts_dir(self) -> Path:
        return self.data_dir / "scripts"

    @property
    def temp_dir(self) -> Path:
        return self.data_dir / "temp"

    @property
    def store_path(self) -> Path:
        return self.data_dir / "jobs.json"

    def ensure_dirs(self) -> None:
        for name in DATA_SUBDIRS:
            (self.data_dir / name).mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, **overrides: object
    ) -> "OrchestratorSettings":
        """Build settings from ``LT_*`` variables; explicit overrides win."""
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        if env.get("LT_DATA_DIR"):
            values["data_dir"] = Path(env["LT_DATA_DIR"]).expanduser()
        poll = parse_float_env(env.get("LT_POLL_INTERVAL"))
        if poll is not None:
            values["poll_interval_seconds"] = poll
        cooldown = parse_float_env(env.get("LT_DEFAULT_COOLDOWN"))
        if cooldown is not None:
            values["default_cooldown_seconds"] = cooldown
        grace = parse_float_env(env.get("LT_KILL_GRACE"))
        if grace is not None:
            values["kill_grace_seconds"] = grace
        ramp_up = parse_int_env(env.get("LT_DEFAULT_RAMP_UP"))
        if ramp_up is not None:
            values["default_ramp_up_seconds"] = ramp_up
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
