"""Custom exception hierarchy for barrage."""

from __future__ import annotations


class BarrageError(Exception):
    """Base exception for all barrage errors.

    All custom exceptions in barrage inherit from this class, making it
    easy to catch any project-specific error with a single except clause.
    """


class ConfigError(BarrageError):
    """Raised when configuration is invalid or missing.

    Examples:
        - A load test definition selects no endpoints from the catalog.
        - The first selected endpoint has no parseable absolute URL.
        - The compiled flow ends up empty.
        - Required environment variable has an invalid value.
    """


class LaunchError(BarrageError):
    """Raised when the load-generation engine process cannot be started.

    The run has already been recorded as ``failed`` by the time this is
    raised; ``run_id`` identifies it so callers can inspect the log.
    """

    def __init__(self, message: str, run_id: str | None = None) -> None:
        super().__init__(message)
        self.run_id = run_id


class ReportParseError(BarrageError):
    """Raised when the engine's aggregate report is missing its expected shape.

    Never fatal for a run: the accumulated metrics are kept and the run
    still completes.
    """


class ProcessFailure(BarrageError):
    """Describes an engine process that exited with a non-zero code."""

    def __init__(self, returncode: int) -> None:
        super().__init__(f"Engine exited with code {returncode}")
        self.returncode = returncode


class RunNotFoundError(BarrageError):
    """Raised when a run identifier is unknown to the store."""


class StorageError(BarrageError):
    """Raised when a persisted payload cannot be interpreted."""
