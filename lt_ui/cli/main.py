"""
Command-line interface for loadtest-orchestrator.

Creates jobs, queues them and runs the sequential scheduler against the
configured backends (local process, SSH host, CI server).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from lt_common.logging import configure_logging
from lt_ui.cli.commands.jobs import (
    create_jobs_app,
    register_cancel_command,
    register_enqueue_command,
)
from lt_ui.cli.commands.service import register_service_commands
from lt_ui.cli.commands.settings import create_settings_app
from lt_ui.cli.commands.tools import register_tool_commands
from lt_ui.cli.context import CLIContext

ctx_store = CLIContext()

app = typer.Typer(
    help="Queue and run load-test jobs one at a time with a cooldown in between.",
    no_args_is_help=True,
)


@app.callback(invoke_without_command=True)
def entry(
    ctx: typer.Context,
    data_dir: Optional[Path] = typer.Option(
        None,
        "--data-dir",
        envvar="LT_DATA_DIR",
        help="Directory holding results, logs, temp files and the job store.",
    ),
    store: Optional[Path] = typer.Option(
        None, "--store", help="Job store JSON file (default: <data-dir>/jobs.json)."
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON."),
) -> None:
    """Global options shared by every command."""
    configure_logging(debug=debug, json=json_logs or None, force=True)
    ctx_store.reset()
    ctx_store.data_dir = data_dir
    ctx_store.store_path = store

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


app.add_typer(create_jobs_app(ctx_store), name="jobs")
app.add_typer(create_settings_app(ctx_store), name="settings")
register_enqueue_command(app, ctx_store)
register_cancel_command(app, ctx_store)
register_service_commands(app, ctx_store)
register_tool_commands(app, ctx_store)


def main() -> None:
    """Console script entrypoint (Typer app)."""
    app()


if __name__ == "__main__":
    main()
