"""Option parsing shared by several commands."""

from __future__ import annotations

from typing import Iterable, Optional

import typer


def parse_property_options(values: Optional[Iterable[str]]) -> dict[str, str]:
    """Turn repeated ``--property key=value`` options into a dict."""
    properties: dict[str, str] = {}
    for raw in values or []:
        if "=" not in raw:
            raise typer.BadParameter(f"Expected key=value, got {raw!r}", param_hint="--property")
        key, value = raw.split("=", 1)
        key = key.strip()
        if not key:
            raise typer.BadParameter(f"Empty property name in {raw!r}", param_hint="--property")
        properties[key] = value.strip()
    return properties


def fmt(value: object) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)
