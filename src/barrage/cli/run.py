"""``barrage run``: execute a stored load test with live terminal output."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from barrage._internal.errors import ConfigError, LaunchError
from barrage._internal.logging import setup_logging
from barrage.cli._options import DATA_DIR_OPTION, console, resolve_config
from barrage.engine.lifecycle import RunController
from barrage.metrics.models import RunStatus
from barrage.storage.repository import JsonRepository

if TYPE_CHECKING:
    from collections.abc import Callable

    from barrage._internal.config import BarrageConfig
    from barrage.catalog.models import Endpoint, LoadTestDefinition
    from barrage.metrics.models import TestResult


# ---------------------------------------------------------------------------
# Rich live display
# ---------------------------------------------------------------------------


def _make_live_table(result: TestResult | None) -> Table:
    """Build a Rich table summarising the current run state.

    Args:
        result: Latest result snapshot, or None before the run starts.

    Returns:
        Formatted Rich Table.
    """
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    if result is None:
        table.add_row("Status", "Starting...")
        return table

    summary = result.summary
    table.add_row("Status", result.status.value)
    table.add_row("Progress", f"{result.progress}%")
    table.add_row("Requests", str(summary.requests_completed))
    table.add_row("Requests/sec", f"{summary.rps.mean:.1f}")
    table.add_row("Median Latency", f"{summary.latency.median:.1f}ms")
    table.add_row("p95 Latency", f"{summary.latency.p95:.1f}ms")
    table.add_row("p99 Latency", f"{summary.latency.p99:.1f}ms")
    table.add_row(
        "Scenarios",
        f"{summary.scenarios.completed}/{summary.scenarios.created} completed",
    )
    return table


def _print_summary(result: TestResult) -> None:
    """Print a final summary table after the run reaches a terminal state.

    Args:
        result: Terminal result.
    """
    summary = result.summary
    ok = result.status is RunStatus.COMPLETED
    table = Table(
        title="Test Complete" if ok else "Test Failed",
        show_header=True,
        header_style="bold green" if ok else "bold red",
        expand=True,
    )
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Result ID", result.id)
    table.add_row("Duration", f"{summary.duration:g}s")
    table.add_row("Requests", str(summary.requests_completed))
    table.add_row("Timed Out", str(summary.requests_timed_out))
    table.add_row("Scenarios Created", str(summary.scenarios.created))
    table.add_row("Scenarios Completed", str(summary.scenarios.completed))
    table.add_row("Scenarios Failed", str(summary.scenarios.failed))
    table.add_row("Mean Requests/sec", f"{summary.rps.mean:.1f}")
    table.add_row("Min / Max Latency", f"{summary.latency.min:.1f} / {summary.latency.max:.1f}ms")
    table.add_row("p95 / p99 Latency", f"{summary.latency.p95:.1f} / {summary.latency.p99:.1f}ms")

    if summary.codes:
        codes_table = Table(title="Status Codes", show_header=True, header_style="bold cyan")
        codes_table.add_column("Code")
        codes_table.add_column("Count", justify="right")
        for code, count in sorted(summary.codes.items()):
            codes_table.add_row(code, str(count))
        console.print(codes_table)

    if summary.errors:
        errors_table = Table(title="Errors", show_header=True, header_style="bold red")
        errors_table.add_column("Error")
        errors_table.add_column("Count", justify="right")
        for label, count in sorted(summary.errors.items()):
            errors_table.add_row(label, str(count))
        console.print(errors_table)

    console.print(table)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


async def _execute(
    config: BarrageConfig,
    definition: LoadTestDefinition,
    catalog: list[Endpoint],
    timeout: float,
    on_update: Callable[[TestResult], None],
) -> TestResult:
    """Start the run and poll it until terminal or *timeout* seconds pass.

    Raises:
        TimeoutError: If the run is still going after *timeout*; it is cancelled.
    """
    controller = RunController(config, repository=JsonRepository(config.data_dir))
    loop = asyncio.get_running_loop()
    run_id = await controller.compile_and_start(definition, catalog)
    deadline = loop.time() + timeout
    try:
        while True:
            result = controller.get_result(run_id)
            on_update(result)
            if result.status.is_terminal:
                return result
            if loop.time() >= deadline:
                msg = f"Run {run_id} did not finish within {timeout:g}s"
                raise TimeoutError(msg)
            await asyncio.sleep(config.broadcast_interval)
    finally:
        await controller.shutdown()


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
    test_id: str = typer.Argument(..., help="Identifier of a stored load test."),
    timeout: float = typer.Option(
        600.0,
        "--timeout",
        "-t",
        help="Give up and cancel the run after this many seconds.",
        min=1.0,
    ),
    data_dir: Path | None = DATA_DIR_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    show_log: bool = typer.Option(
        False,
        "--show-log",
        help="Print the raw engine log after the run.",
    ),
) -> None:
    """Run a stored load test and exit non-zero unless it completes."""
    setup_logging(logging.DEBUG if verbose else logging.WARNING)
    config = resolve_config(data_dir)
    repository = JsonRepository(config.data_dir)

    definition = repository.get_test(test_id)
    if definition is None:
        console.print(f"[red]Error:[/red] No stored test with id {test_id!r}")
        raise typer.Exit(code=1)
    catalog = repository.load_endpoints()

    console.print(
        Panel(
            f"[bold]Test:[/bold]      {definition.name or definition.id}\n"
            f"[bold]Endpoints:[/bold] {len(definition.endpoint_ids)}\n"
            f"[bold]Duration:[/bold]  {definition.settings.duration:g}s\n"
            f"[bold]Arrival:[/bold]   {definition.settings.arrival_rate:g}/s",
            title="Barrage",
            border_style="cyan",
        )
    )

    try:
        with Live(
            _make_live_table(None),
            console=console,
            refresh_per_second=4,
            transient=True,
        ) as live:
            result = asyncio.run(
                _execute(
                    config,
                    definition,
                    catalog,
                    timeout,
                    lambda snapshot: live.update(_make_live_table(snapshot)),
                )
            )
    except ConfigError as exc:
        console.print(f"[red]Invalid test:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    except LaunchError as exc:
        console.print(f"[red]Could not start the engine:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    except TimeoutError as exc:
        console.print(f"[red]Timed out:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    _print_summary(result)
    if show_log:
        console.print(result.raw_output, markup=False, highlight=False)

    if result.status is not RunStatus.COMPLETED:
        console.print(f"[red]FAIL:[/red] {result.raw_output.strip().splitlines()[-1]}")
        raise typer.Exit(code=1)
    console.print("[green]Load test completed successfully.[/green]")
