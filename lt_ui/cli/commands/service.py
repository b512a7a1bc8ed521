from __future__ import annotations

import time
from typing import Optional

import typer
from rich.markup import escape

from lt_common.errors import LTError
from lt_controller.models.jobs import JobStatus
from lt_controller.notifications import Notification, NotificationKind
from lt_ui.cli.context import CLIContext
from lt_ui.presenter import Presenter, TableModel

_QUIET_KINDS = {NotificationKind.EXECUTION_EVENT, NotificationKind.DEQUEUED}


class NotificationPrinter:
    """Render orchestrator notifications as console lines."""

    def __init__(self, present: Presenter, *, show_logs: bool = False) -> None:
        self._present = present
        self._show_logs = show_logs

    def __call__(self, note: Notification) -> None:
        if note.kind is NotificationKind.EXECUTION_EVENT:
            self._print_event(note)
            return
        if note.kind in _QUIET_KINDS:
            return
        prefix = f"[job {note.job_id}] " if note.job_id is not None else ""
        details = ", ".join(f"{key}={value}" for key, value in note.payload.items())
        message = f"{prefix}{note.kind.value}" + (f" ({details})" if details else "")
        if note.kind in {NotificationKind.TEST_FAILED, NotificationKind.WARNING}:
            self._present.warning(message)
        else:
            self._present.info(message)

    def _print_event(self, note: Notification) -> None:
        event = note.payload.get("event") or {}
        data = event.get("data") or {}
        kind = event.get("type")
        if kind == "phase":
            self._present.info(f"[job {note.job_id}] phase {data.get('phase')}: {data.get('message')}")
        elif kind == "error":
            self._present.error(f"[job {note.job_id}] {data.get('message')}")
        elif kind == "complete":
            self._present.info(f"[job {note.job_id}] finished with exit code {data.get('exitCode')}")
        elif kind == "log" and self._show_logs:
            line = escape(f"[job {note.job_id}] {data.get('message')}")
            self._present.console.print(f"[dim]{line}[/dim]")


def register_service_commands(app: typer.Typer, ctx: CLIContext) -> None:
    @app.command("serve")
    def serve(
        drain: bool = typer.Option(
            False, "--drain", help="Exit once the queue is empty and no job is running."
        ),
        cooldown: Optional[float] = typer.Option(
            None, "--cooldown", min=0, help="Override the default cooldown in seconds."
        ),
        show_logs: bool = typer.Option(False, "--logs", help="Echo tool output lines."),
    ) -> None:
        """Restore the queue and run jobs one at a time until interrupted."""
        orchestrator = ctx.orchestrator
        if cooldown is not None:
            orchestrator.cooldown.set_default_duration(cooldown)
        unsubscribe = orchestrator.subscribe(NotificationPrinter(ctx.present, show_logs=show_logs))
        try:
            orchestrator.initialize()
            while True:
                if drain and orchestrator.is_idle():
                    break
                time.sleep(0.5)
        except KeyboardInterrupt:
            ctx.present.warning("Interrupted; waiting for the scheduler to stop")
        except LTError as exc:
            ctx.present.error(str(exc))
            raise typer.Exit(1)
        finally:
            orchestrator.shutdown(timeout=5.0)
            unsubscribe()

    @app.command("status")
    def status() -> None:
        """Show the persisted queue and the running job."""
        orchestrator = ctx.orchestrator
        orchestrator.queue.load_queued()
        items = orchestrator.queue.items()
        running = ctx.store.find_jobs_by_status(JobStatus.RUNNING)
        if running:
            for job in running:
                ctx.present.info(
                    f"Running: job {job.id} ({job.name}) {job.progress_percent}% phase={job.current_phase or '-'}"
                )
        else:
            ctx.present.info("No job running")
        if not items:
            ctx.present.info("Queue is empty")
            return
        rows = []
        for index, item in enumerate(items, start=1):
            job = ctx.store.get_job(item.job_id)
            rows.append(
                [
                    str(index),
                    str(item.job_id),
                    job.name if job else "-",
                    job.backend_type if job else "-",
                    item.enqueued_at.isoformat(timespec="seconds"),
                ]
            )
        ctx.present.table(
            TableModel(title="Queue", columns=["#", "Job", "Name", "Backend", "Queued at"], rows=rows)
        )

    @app.command("health")
    def health(backend: str = typer.Argument(..., help="Backend type: local, ssh or ci.")) -> None:
        """Check that a backend is reachable and usable."""
        try:
            result = ctx.orchestrator.health_check(backend)
        except LTError as exc:
            ctx.present.error(str(exc))
            raise typer.Exit(1)
        if result.ok:
            ctx.present.success(f"{backend}: {result.message}")
            return
        ctx.present.error(f"{backend}: {result.message}")
        raise typer.Exit(1)
