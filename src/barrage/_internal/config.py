"""Configuration loading for barrage."""

from __future__ import annotations

import os
import shlex
import tempfile
from dataclasses import dataclass
from pathlib import Path

from barrage._internal.errors import ConfigError


def _default_temp_dir() -> Path:
    return Path(tempfile.gettempdir()) / "barrage"


@dataclass(frozen=True)
class BarrageConfig:
    """Process-wide barrage configuration.

    Attributes:
        data_dir: Directory holding the persisted endpoint, test and result lists.
        temp_dir: Directory for per-run engine config and report artifacts.
        engine_command: Argument vector prefix used to invoke the engine.
        host: Interface the HTTP server binds to.
        port: Port the HTTP server listens on.
        broadcast_interval: Seconds between snapshot publications for running runs.
        final_broadcast_delay: Settle delay before the final snapshot is published.
        progress_stall_seconds: Seconds without a progress marker before the
            optimistic +5% increment fires.
        completion_grace_seconds: Seconds after reaching 100% before a run that
            has not exited is forced to ``completed``.
        results_cap: Number of terminal results kept in the persisted list.
        max_retained_runs: Number of terminal runs kept in memory.
    """

    data_dir: Path = Path("data")
    temp_dir: Path = _default_temp_dir()
    engine_command: tuple[str, ...] = ("artillery",)
    host: str = "0.0.0.0"
    port: int = 4000
    broadcast_interval: float = 0.5
    final_broadcast_delay: float = 1.0
    progress_stall_seconds: float = 3.0
    completion_grace_seconds: float = 5.0
    results_cap: int = 50
    max_retained_runs: int = 200


def _read_int(name: str, default: int, minimum: int, maximum: int | None = None) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        msg = f"{name} must be an integer, got: {raw!r}"
        raise ConfigError(msg) from None
    if value < minimum or (maximum is not None and value > maximum):
        bound = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        msg = f"{name} must be {bound}, got: {value}"
        raise ConfigError(msg)
    return value


def _read_float(name: str, default: float, *, allow_zero: bool = False) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number, got: {raw!r}"
        raise ConfigError(msg) from None
    if value < 0 or (value == 0 and not allow_zero):
        requirement = "non-negative" if allow_zero else "positive"
        msg = f"{name} must be {requirement}, got: {value}"
        raise ConfigError(msg)
    return value


def load_config() -> BarrageConfig:
    """Load configuration from ``BARRAGE_*`` environment variables.

    Environment variables:
        BARRAGE_DATA_DIR: Persistence directory (default: ./data).
        BARRAGE_TEMP_DIR: Artifact directory (default: <tmp>/barrage).
        BARRAGE_ENGINE: Engine command line, shell-split (default: artillery).
        BARRAGE_HOST / BARRAGE_PORT: Server bind address (default: 0.0.0.0:4000).
        BARRAGE_BROADCAST_INTERVAL: Publish cadence in seconds (default: 0.5).
        BARRAGE_FINAL_BROADCAST_DELAY: Final publish delay (default: 1.0).
        BARRAGE_STALL_SECONDS: Stagnant-progress window (default: 3.0).
        BARRAGE_GRACE_SECONDS: Post-100% grace period (default: 5.0).
        BARRAGE_RESULTS_CAP: Persisted results kept (default: 50).
        BARRAGE_MAX_RETAINED_RUNS: Terminal runs kept in memory (default: 200).

    Returns:
        Populated BarrageConfig instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    defaults = BarrageConfig()

    engine_raw = os.environ.get("BARRAGE_ENGINE")
    engine_command = defaults.engine_command
    if engine_raw is not None:
        engine_command = tuple(shlex.split(engine_raw))
        if not engine_command:
            msg = "BARRAGE_ENGINE must not be empty"
            raise ConfigError(msg)

    data_dir = os.environ.get("BARRAGE_DATA_DIR")
    temp_dir = os.environ.get("BARRAGE_TEMP_DIR")

    return BarrageConfig(
        data_dir=Path(data_dir) if data_dir else defaults.data_dir,
        temp_dir=Path(temp_dir) if temp_dir else defaults.temp_dir,
        engine_command=engine_command,
        host=os.environ.get("BARRAGE_HOST", defaults.host),
        port=_read_int("BARRAGE_PORT", defaults.port, 1, 65535),
        broadcast_interval=_read_float("BARRAGE_BROADCAST_INTERVAL", defaults.broadcast_interval),
        final_broadcast_delay=_read_float(
            "BARRAGE_FINAL_BROADCAST_DELAY", defaults.final_broadcast_delay, allow_zero=True
        ),
        progress_stall_seconds=_read_float(
            "BARRAGE_STALL_SECONDS", defaults.progress_stall_seconds
        ),
        completion_grace_seconds=_read_float(
            "BARRAGE_GRACE_SECONDS", defaults.completion_grace_seconds, allow_zero=True
        ),
        results_cap=_read_int("BARRAGE_RESULTS_CAP", defaults.results_cap, 1),
        max_retained_runs=_read_int("BARRAGE_MAX_RETAINED_RUNS", defaults.max_retained_runs, 1),
    )
