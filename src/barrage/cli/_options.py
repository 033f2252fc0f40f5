"""Option definitions and config resolution shared by the CLI commands."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import typer
from rich.console import Console

from barrage._internal.config import BarrageConfig, load_config
from barrage._internal.errors import ConfigError

console = Console(stderr=True)

DATA_DIR_OPTION = typer.Option(
    None,
    "--data-dir",
    help="Directory holding endpoints.json, tests.json and results.json "
    "(default: $BARRAGE_DATA_DIR or ./data).",
)


def resolve_config(data_dir: Path | None = None, **overrides: object) -> BarrageConfig:
    """Load the environment config and apply non-None CLI overrides.

    Raises:
        typer.Exit: With code 1 if the environment config is invalid.
    """
    try:
        config = load_config()
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    changes = {key: value for key, value in overrides.items() if value is not None}
    if data_dir is not None:
        changes["data_dir"] = data_dir
    return dataclasses.replace(config, **changes) if changes else config
