from __future__ import annotations

import io

import pytest
from rich.console import Console

from lt_controller.notifications import Notification, NotificationKind
from lt_ui.cli.commands.options import fmt, parse_property_options
from lt_ui.cli.commands.service import NotificationPrinter
from lt_ui.presenter import Presenter, TableModel

pytestmark = [pytest.mark.unit_ui]


def _presenter() -> tuple[Presenter, io.StringIO]:
    buffer = io.StringIO()
    return Presenter(Console(file=buffer, width=160, color_system=None)), buffer


def test_table_and_key_values() -> None:
    present, buffer = _presenter()
    present.table(TableModel(title="Jobs", columns=["ID", "Name"], rows=[["1", "smoke"]]))
    present.key_values("Job 1", [("Exit code", None), ("Status", "completed")])

    output = buffer.getvalue()
    assert "Jobs" in output and "smoke" in output
    assert "Exit code" in output and "-" in output
    assert "completed" in output


def test_notification_printer_filters_logs() -> None:
    present, buffer = _presenter()
    printer = NotificationPrinter(present)
    log = {"type": "log", "data": {"message": "summary = 10", "level": "info"}}
    printer(Notification(NotificationKind.EXECUTION_EVENT, 1, {"event": log}))
    printer(Notification(NotificationKind.DEQUEUED, 1))
    printer(Notification(NotificationKind.TEST_FAILED, 1, {"error": "boom"}))
    printer(
        Notification(
            NotificationKind.EXECUTION_EVENT,
            1,
            {"event": {"type": "complete", "data": {"exitCode": 0}}},
        )
    )

    output = buffer.getvalue()
    assert "summary = 10" not in output
    assert "dequeued" not in output
    assert "[job 1] test_failed (error=boom)" in output
    assert "finished with exit code 0" in output

    verbose, verbose_buffer = _presenter()
    NotificationPrinter(verbose, show_logs=True)(
        Notification(NotificationKind.EXECUTION_EVENT, 2, {"event": log})
    )
    assert "summary = 10" in verbose_buffer.getvalue()


def test_option_helpers() -> None:
    assert parse_property_options(["env=qa", " port = 8443 "]) == {"env": "qa", "port": "8443"}
    assert parse_property_options(None) == {}
    assert fmt(None) == "-"
    assert fmt(1.234) == "1.23"
    assert fmt(7) == "7"
