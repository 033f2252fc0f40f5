"""Main Typer application, entry point for the ``barrage`` CLI."""

from __future__ import annotations

import typer

from barrage import __version__
from barrage.cli.export import export_cmd
from barrage.cli.results import results_cmd
from barrage.cli.run import run_cmd
from barrage.cli.serve import serve_cmd

app = typer.Typer(
    name="barrage",
    help="Drive Artillery load tests and watch their metrics live.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("serve", help="Start the HTTP API and live-result WebSocket server.")(serve_cmd)
app.command("run", help="Run a stored load test and follow it in the terminal.")(run_cmd)
app.command("results", help="List persisted test results.")(results_cmd)
app.command("export", help="Export endpoints, tests and results to a JSON file.")(export_cmd)


def _version_callback(value: bool) -> None:
    """Print version and exit.

    Args:
        value: True if --version was passed.
    """
    if value:
        typer.echo(f"barrage {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Barrage: load-test orchestration with live metric reconciliation."""
