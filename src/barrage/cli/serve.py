"""``barrage serve``: run the HTTP API and WebSocket server."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import typer
from aiohttp import web
from rich.panel import Panel

from barrage._internal.logging import get_logger, setup_logging
from barrage.cli._options import DATA_DIR_OPTION, console, resolve_config
from barrage.web.app import create_app

logger = get_logger("cli.serve")


def _install_uvloop() -> None:
    """Install uvloop as the default event loop policy if available.

    Falls back silently to the default asyncio event loop on Windows
    or if uvloop is not installed.
    """
    if sys.platform == "win32":
        return

    try:
        import uvloop

        uvloop.install()
        logger.debug("uvloop installed as event loop policy")
    except ImportError:
        logger.debug("uvloop not available, using default asyncio event loop")


def serve_cmd(
    host: str | None = typer.Option(
        None,
        "--host",
        help="Interface to bind (default: $BARRAGE_HOST or 0.0.0.0).",
    ),
    port: int | None = typer.Option(
        None,
        "--port",
        "-p",
        help="Port to listen on (default: $BARRAGE_PORT or 4000).",
        min=1,
        max=65535,
    ),
    data_dir: Path | None = DATA_DIR_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    log_json: bool = typer.Option(
        False,
        "--log-json",
        help="Emit logs as one JSON object per line.",
    ),
) -> None:
    """Start the server and block until interrupted."""
    setup_logging(logging.DEBUG if verbose else logging.INFO, json_format=log_json)
    config = resolve_config(data_dir, host=host, port=port)
    _install_uvloop()

    console.print(
        Panel(
            f"[bold]Listening:[/bold] http://{config.host}:{config.port}\n"
            f"[bold]Data dir:[/bold]  {config.data_dir}\n"
            f"[bold]Engine:[/bold]    {' '.join(config.engine_command)}",
            title="Barrage",
            border_style="cyan",
        )
    )
    web.run_app(create_app(config), host=config.host, port=config.port, print=None)
