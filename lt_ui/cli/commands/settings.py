from __future__ import annotations

import typer

from lt_controller.store import RUNNER_SETTINGS
from lt_ui.cli.context import CLIContext
from lt_ui.presenter import TableModel

_SECRET_KEYS = {"ssh_password", "ci_api_token", "jenkins_api_token"}


def create_settings_app(ctx: CLIContext) -> typer.Typer:
    """Build the settings Typer app (set/show)."""
    app = typer.Typer(help="Manage backend settings.", no_args_is_help=True)

    @app.command("set")
    def settings_set(
        key: str = typer.Argument(..., help="Setting name, e.g. ssh_host or ci_url."),
        value: str = typer.Argument(..., help="Setting value."),
        category: str = typer.Option(RUNNER_SETTINGS, "--category", help="Settings category."),
    ) -> None:
        """Store a setting value."""
        ctx.store.set_setting(category, key, value)
        ctx.present.success(f"{category}.{key} updated")

    @app.command("show")
    def settings_show(
        category: str = typer.Option(RUNNER_SETTINGS, "--category", help="Settings category."),
    ) -> None:
        """Show stored settings (secrets masked)."""
        values = ctx.store.get_runner_settings(category)
        if not values:
            ctx.present.warning(f"No settings in category '{category}'")
            return
        rows = [
            [key, "****" if key in _SECRET_KEYS else value]
            for key, value in sorted(values.items())
        ]
        ctx.present.table(TableModel(title=f"Settings: {category}", columns=["Key", "Value"], rows=rows))

    return app
