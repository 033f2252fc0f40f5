"""``barrage export``: write every stored list into one JSON document."""

from __future__ import annotations

from pathlib import Path

import typer

from barrage.cli._options import DATA_DIR_OPTION, console, resolve_config
from barrage.storage.repository import JsonRepository


def export_cmd(
    output: Path = typer.Argument(
        ...,
        help="Destination file for the export.",
        dir_okay=False,
    ),
    data_dir: Path | None = DATA_DIR_OPTION,
) -> None:
    """Export endpoints, tests and results."""
    config = resolve_config(data_dir)
    repository = JsonRepository(config.data_dir)
    if not repository.export_all(output):
        console.print(f"[red]Error:[/red] Could not write {output}")
        raise typer.Exit(code=1)
    counts = ", ".join(f"{len(items)} {kind}" for kind, items in repository.dump_all().items())
    console.print(f"[green]Exported[/green] {counts} to {output}")
