from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from lt_common.errors import LTError
from lt_controller.models.jobs import JobStatus
from lt_ui.cli.commands.options import fmt, parse_property_options
from lt_ui.cli.context import CLIContext
from lt_ui.presenter import TableModel


def create_jobs_app(ctx: CLIContext) -> typer.Typer:
    """Build the jobs Typer app (add/list/show)."""
    app = typer.Typer(help="Create and inspect load-test jobs.", no_args_is_help=True)

    @app.command("add")
    def jobs_add(
        script: Path = typer.Argument(..., help="Load-test script to run."),
        name: str = typer.Option("", "--name", "-n", help="Display name."),
        backend: str = typer.Option("local", "--backend", "-b", help="Backend type: local, ssh or ci."),
        concurrency: int = typer.Option(1, "--concurrency", "-u", min=1, help="Concurrent virtual users."),
        duration: int = typer.Option(60, "--duration", "-d", min=1, help="Test duration in seconds."),
        ramp_up: Optional[int] = typer.Option(None, "--ramp-up", "-r", min=0, help="Ramp-up in seconds."),
        cooldown: Optional[int] = typer.Option(
            None, "--cooldown", min=0, help="Cooldown applied after this job."
        ),
        prop: Optional[List[str]] = typer.Option(
            None, "--property", "-p", help="Tool property override key=value (repeatable)."
        ),
    ) -> None:
        """Register a new job in pending state."""
        properties = parse_property_options(prop)
        job = ctx.store.create_job(
            name=name or script.stem,
            backend_type=backend,
            backend_config={"custom_properties": properties} if properties else {},
            script_path=str(script.expanduser().resolve()),
            concurrency=concurrency,
            duration_seconds=duration,
            ramp_up_seconds=ramp_up,
            cooldown_seconds=cooldown,
        )
        ctx.present.success(f"Created job {job.id} ({job.name})")

    @app.command("list")
    def jobs_list(
        status: Optional[JobStatus] = typer.Option(None, "--status", "-s", help="Only jobs in this status."),
    ) -> None:
        """List jobs."""
        jobs = ctx.store.find_jobs_by_status(status) if status else ctx.store.list_jobs()
        if not jobs:
            ctx.present.warning("No jobs found")
            return
        rows = [
            [
                str(job.id),
                job.name,
                job.status.value,
                job.backend_type,
                f"{job.progress_percent}%",
                fmt(job.total_samples),
                fmt(job.error_percent),
            ]
            for job in jobs
        ]
        ctx.present.table(
            TableModel(
                title="Jobs",
                columns=["ID", "Name", "Status", "Backend", "Progress", "Samples", "Error %"],
                rows=rows,
            )
        )

    @app.command("show")
    def jobs_show(job_id: int = typer.Argument(..., help="Job id.")) -> None:
        """Show one job and its per-transaction statistics."""
        job = ctx.store.get_job(job_id)
        if job is None:
            ctx.present.error(f"Job {job_id} not found")
            raise typer.Exit(1)
        ctx.present.key_values(
            f"Job {job.id}",
            [
                ("Name", job.name),
                ("Status", job.status.value),
                ("Backend", job.backend_type),
                ("Script", job.script_path),
                ("Users", job.concurrency),
                ("Duration (s)", job.duration_seconds),
                ("Ramp-up (s)", job.ramp_up_seconds),
                ("Phase", job.current_phase),
                ("Progress", f"{job.progress_percent}%"),
                ("Queued", job.queued_at),
                ("Started", job.started_at),
                ("Completed", job.completed_at),
                ("Exit code", job.exit_code),
                ("Result file", job.result_file),
                ("Log file", job.log_file),
                ("Samples", job.total_samples),
                ("Errors", job.error_count),
                ("Avg (ms)", fmt(job.average_response_time)),
                ("p90 (ms)", fmt(job.p90_response_time)),
                ("p95 (ms)", fmt(job.p95_response_time)),
                ("Throughput (/s)", fmt(job.throughput)),
                ("Error log", job.error_log),
            ],
        )
        stats = ctx.store.get_transaction_stats(job_id)
        if stats:
            ctx.present.table(
                TableModel(
                    title="Transactions",
                    columns=["Label", "Samples", "Err %", "Mean", "Median", "p90", "p95", "p99", "Tput"],
                    rows=[
                        [
                            item.label,
                            str(item.sample_count),
                            fmt(item.error_percent),
                            str(item.mean),
                            str(item.median),
                            str(item.p90),
                            str(item.p95),
                            str(item.p99),
                            fmt(item.throughput),
                        ]
                        for item in stats
                    ],
                )
            )

    return app


def register_enqueue_command(app: typer.Typer, ctx: CLIContext) -> None:
    @app.command("enqueue")
    def enqueue(
        job_id: int = typer.Argument(..., help="Pending job to queue."),
        priority: int = typer.Option(
            0,
            "--priority",
            help="Lower runs sooner. Not stored: a running `lt serve` queues the job at priority 0.",
        ),
    ) -> None:
        """Queue a pending job; a running `lt serve` picks it up on its next poll."""
        queue = ctx.orchestrator.queue
        queue.load_queued()
        try:
            queue.enqueue(job_id, priority)
        except LTError as exc:
            ctx.present.error(str(exc))
            raise typer.Exit(1)
        ctx.present.success(f"Job {job_id} queued at position {queue.position(job_id)}")


def register_cancel_command(app: typer.Typer, ctx: CLIContext) -> None:
    @app.command("cancel")
    def cancel(job_id: int = typer.Argument(..., help="Job to cancel.")) -> None:
        """Cancel a queued or running job, including one owned by `lt serve`."""
        orchestrator = ctx.orchestrator
        orchestrator.queue.load_queued()
        try:
            cancelled = orchestrator.cancel(job_id)
        except LTError as exc:
            ctx.present.error(str(exc))
            raise typer.Exit(1)
        if not cancelled:
            ctx.present.warning(f"Job {job_id} is not queued or running")
            raise typer.Exit(1)
        ctx.present.success(f"Job {job_id} cancelled")
