"""Starting the engine process and reading its output streams."""

from __future__ import annotations

import asyncio
import codecs
from typing import TYPE_CHECKING

from barrage._internal.errors import LaunchError
from barrage._internal.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from barrage.engine.protocol import EngineInvocation

logger = get_logger("engine.launcher")

_READ_SIZE = 4096


class EngineLauncher:
    """Spawns engine processes with piped stdout and stderr."""

    async def launch(self, invocation: EngineInvocation) -> asyncio.subprocess.Process:
        """Start the engine for *invocation*.

        Args:
            invocation: Argument vector and artifact paths for the run.

        Returns:
            The running process.

        Raises:
            LaunchError: If the executable cannot be found or started.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *invocation.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            msg = f"Failed to start engine {invocation.argv[0]!r}: {exc}"
            raise LaunchError(msg, run_id=invocation.run_id) from exc
        logger.info("Engine started for run %s (pid %d)", invocation.run_id, process.pid)
        return process


async def pump_stream(
    stream: asyncio.StreamReader | None,
    on_chunk: Callable[[str], None],
) -> None:
    """Feed decoded chunks from *stream* to *on_chunk* until EOF.

    Multi-byte characters split across reads are held back until complete;
    undecodable bytes are replaced rather than raised.

    Args:
        stream: Process pipe, or None if the stream was not captured.
        on_chunk: Synchronous handler called once per non-empty chunk, in
            arrival order.
    """
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        data = await stream.read(_READ_SIZE)
        text = decoder.decode(data, final=not data)
        if text:
            on_chunk(text)
        if not data:
            break
