"""``barrage results``: list persisted results."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import typer
from rich.table import Table

from barrage.cli._options import DATA_DIR_OPTION, console, resolve_config
from barrage.metrics.models import RunStatus
from barrage.storage.repository import JsonRepository

_STATUS_STYLES = {
    RunStatus.COMPLETED: "green",
    RunStatus.FAILED: "red",
    RunStatus.RUNNING: "yellow",
}


def results_cmd(
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Maximum number of results to show, newest first.",
        min=1,
    ),
    data_dir: Path | None = DATA_DIR_OPTION,
) -> None:
    """Print a table of the most recent persisted results."""
    config = resolve_config(data_dir)
    results = JsonRepository(config.data_dir).load_results()
    results.sort(key=lambda r: r.timestamp, reverse=True)

    if not results:
        console.print(f"[yellow]No results stored in {config.data_dir}[/yellow]")
        return

    table = Table(title="Test Results", show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Started (UTC)")
    table.add_column("Result ID")
    table.add_column("Test")
    table.add_column("Status")
    table.add_column("Requests", justify="right")
    table.add_column("RPS", justify="right")
    table.add_column("p95", justify="right")

    for result in results[:limit]:
        started = datetime.fromtimestamp(result.timestamp / 1000, tz=UTC)
        style = _STATUS_STYLES[result.status]
        table.add_row(
            started.strftime("%Y-%m-%d %H:%M:%S"),
            result.id,
            result.test_id,
            f"[{style}]{result.status.value}[/{style}]",
            str(result.summary.requests_completed),
            f"{result.summary.rps.mean:.1f}",
            f"{result.summary.latency.p95:.1f}ms",
        )
    console.print(table)
