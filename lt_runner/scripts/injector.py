"""Produce a parameter-injected working copy of a load-test script."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from lt_common.errors import InjectionError

logger = logging.getLogger(__name__)

_THREAD_GROUP_PROP = re.compile(
    r'(<stringProp name="ThreadGroup\.(num_threads|ramp_time|duration)">)([^<]*)(</stringProp>)'
)
_BARE_INT = re.compile(r"^\d+$")


@dataclass(frozen=True)
class InjectionParams:
    concurrency: int
    duration_seconds: int
    ramp_up_seconds: int
    custom_properties: dict[str, str] = field(default_factory=dict)

    def standard_properties(self) -> list[tuple[str, str]]:
        return [
            ("threads", str(self.concurrency)),
            ("num_threads", str(self.concurrency)),
            ("duration", str(self.duration_seconds)),
            ("rampup", str(self.ramp_up_seconds)),
            ("ramp_up", str(self.ramp_up_seconds)),
        ]


def replace_property(content: str, name: str, value: str) -> str:
    """Replace ``${__P(name[,default])}``, ``${__property(...)}`` and ``${name}``."""
    escaped = re.escape(name)
    patterns = (
        rf"\$\{{__P\({escaped}(?:,[^)]*)?\)\}}",
        rf"\$\{{__property\({escaped}(?:,[^)]*)?\)\}}",
        rf"\$\{{{escaped}\}}",
    )
    for pattern in patterns:
        content = re.sub(pattern, lambda _match: value, content, flags=re.IGNORECASE)
    return content


def replace_thread_group_values(content: str, params: InjectionParams) -> str:
    """Overwrite ThreadGroup settings that hold a placeholder or a bare integer."""
    values = {
        "num_threads": str(params.concurrency),
        "ramp_time": str(params.ramp_up_seconds),
        "duration": str(params.duration_seconds),
    }

    def _sub(match: re.Match[str]) -> str:
        prefix, key, current, suffix = match.groups()
        if "${" in current or _BARE_INT.match(current.strip()):
            return f"{prefix}{values[key]}{suffix}"
        return match.group(0)

    return _THREAD_GROUP_PROP.sub(_sub, content)


class ParameterInjector:
    """Write ``<stem>_work<suffix>`` next to other working files; never touch the source."""

    def inject(self, source: str | Path, output_dir: str | Path, params: InjectionParams) -> Path:
        source = Path(source)
        output_dir = Path(output_dir)
        try:
            content = source.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise InjectionError(
                f"Cannot read script {source}: {exc}",
                context={"source": str(source)},
                cause=exc,
            ) from exc

        for name, value in params.standard_properties():
            content = replace_property(content, name, value)
        content = replace_thread_group_values(content, params)
        for name, value in params.custom_properties.items():
            content = replace_property(content, name, value)

        output_path = output_dir / f"{source.stem}_work{source.suffix}"
        if output_path.resolve() == source.resolve():
            raise InjectionError(
                "Working copy would overwrite the source script",
                context={"source": str(source)},
            )
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            output_path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise InjectionError(
                f"Cannot write working copy {output_path}: {exc}",
                context={"output": str(output_path)},
                cause=exc,
            ) from exc
        logger.debug("Wrote injected script %s", output_path)
        return output_path
