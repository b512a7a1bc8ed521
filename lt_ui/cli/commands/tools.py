from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from lt_common.errors import LTError
from lt_runner.results.reducer import ResultReducer
from lt_runner.scripts.injector import InjectionParams, ParameterInjector
from lt_ui.cli.commands.options import fmt, parse_property_options
from lt_ui.cli.context import CLIContext
from lt_ui.presenter import TableModel


def register_tool_commands(app: typer.Typer, ctx: CLIContext) -> None:
    @app.command("analyze")
    def analyze(
        result_file: Path = typer.Argument(..., help="Delimited result file with a header row."),
        delimiter: str = typer.Option(",", "--delimiter", help="Field delimiter."),
    ) -> None:
        """Reduce a result file into per-transaction statistics."""
        try:
            summary = ResultReducer(delimiter=delimiter).reduce(result_file)
        except LTError as exc:
            ctx.present.error(str(exc))
            raise typer.Exit(1)
        if summary.total_samples == 0:
            ctx.present.warning(f"No samples in {result_file}")
            return
        rows = []
        stats = list(summary.transactions)
        if summary.overall is not None:
            stats.append(summary.overall)
        for item in stats:
            rows.append(
                [
                    item.label,
                    str(item.sample_count),
                    str(item.error_count),
                    fmt(item.error_percent),
                    str(item.min),
                    str(item.max),
                    str(item.mean),
                    str(item.median),
                    fmt(item.std_dev),
                    str(item.p90),
                    str(item.p95),
                    str(item.p99),
                    fmt(item.throughput),
                ]
            )
        ctx.present.table(
            TableModel(
                title=f"Results: {result_file.name}",
                columns=[
                    "Label", "Samples", "Errors", "Err %", "Min", "Max", "Mean",
                    "Median", "StdDev", "p90", "p95", "p99", "Tput/s",
                ],
                rows=rows,
            )
        )
        ctx.present.info(
            f"{summary.total_samples} samples over {summary.duration_ms / 1000:.1f}s, "
            f"{summary.throughput:.2f} req/s"
        )

    @app.command("inject")
    def inject(
        script: Path = typer.Argument(..., help="Script template."),
        output_dir: Path = typer.Option(Path("."), "--out", "-o", help="Directory for the working copy."),
        concurrency: int = typer.Option(1, "--concurrency", "-u", min=1),
        duration: int = typer.Option(60, "--duration", "-d", min=1),
        ramp_up: int = typer.Option(60, "--ramp-up", "-r", min=0),
        prop: Optional[List[str]] = typer.Option(None, "--property", "-p", help="key=value (repeatable)."),
    ) -> None:
        """Write a parameter-injected working copy of a script."""
        params = InjectionParams(
            concurrency=concurrency,
            duration_seconds=duration,
            ramp_up_seconds=ramp_up,
            custom_properties=parse_property_options(prop),
        )
        try:
            path = ParameterInjector().inject(script, output_dir, params)
        except LTError as exc:
            ctx.present.error(str(exc))
            raise typer.Exit(1)
        ctx.present.success(f"Wrote {path}")
