"""In-memory store of per-run state, keyed by run identifier."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from barrage.catalog.models import RunSettings
    from barrage.engine.protocol import EngineInvocation
    from barrage.metrics.models import TestResult


@dataclass(eq=False)
class RunRecord:
    """Everything the controller tracks for one run.

    ``result`` is only mutated while holding ``lock``; readers go through
    :meth:`RunStore.snapshot` which copies under the same lock.

    Attributes:
        result: Live result, mutated in place until terminal.
        settings: Requested load shape, input to the progress estimator.
        invocation: Engine artifacts and argv, None before compilation.
        process: Engine process handle; cleared on exit or cancellation.
        last_progress_at: Loop time of the last progress increase.
        grace_handle: Pending forced-completion timer, armed at 100%.
        watchdog: Task applying the stalled-progress increment.
        monitor: Task reading engine output until exit.
        persist: Task writing the terminal result to the repository.
        done: Set once the result reaches a terminal status.
    """

    result: TestResult
    settings: RunSettings
    invocation: EngineInvocation | None = None
    process: asyncio.subprocess.Process | None = None
    last_progress_at: float = 0.0
    grace_handle: asyncio.TimerHandle | None = None
    watchdog: asyncio.Task[None] | None = None
    monitor: asyncio.Task[None] | None = None
    persist: asyncio.Task[None] | None = None
    done: asyncio.Event = field(default_factory=asyncio.Event)
    lock: threading.RLock = field(default_factory=threading.RLock)

    @property
    def run_id(self) -> str:
        return self.result.id

    @property
    def settled(self) -> bool:
        """True once the run is terminal, its engine is gone and its result is saved."""
        if not self.result.status.is_terminal or self.process is not None:
            return False
        if self.monitor is not None and not self.monitor.done():
            return False
        return self.persist is None or self.persist.done()

    def cancel_timers(self) -> None:
        """Disarm the grace timer and stop the progress watchdog."""
        if self.grace_handle is not None:
            self.grace_handle.cancel()
            self.grace_handle = None
        if self.watchdog is not None and not self.watchdog.done():
            self.watchdog.cancel()


class RunStore:
    """Thread-safe map of run id to ``RunRecord``.

    Records are kept in insertion order, which is also creation order, so
    pruning evicts the oldest terminal runs first.
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._records: dict[str, RunRecord] = {}
        self._lock = threading.Lock()

    def add(self, record: RunRecord) -> None:
        """Register a new run.

        Args:
            record: The run's record; its result id must be unused.

        Raises:
            ValueError: If a run with the same id is already stored.
        """
        with self._lock:
            if record.run_id in self._records:
                msg = f"Run {record.run_id} already exists"
                raise ValueError(msg)
            self._records[record.run_id] = record

    def get(self, run_id: str) -> RunRecord | None:
        with self._lock:
            return self._records.get(run_id)

    def snapshot(self, run_id: str) -> TestResult | None:
        """Return a deep copy of the run's result, or None if unknown."""
        record = self.get(run_id)
        if record is None:
            return None
        with record.lock:
            return record.result.snapshot()

    def snapshots(self) -> list[TestResult]:
        """Return copies of every stored result in creation order."""
        with self._lock:
            records = list(self._records.values())
        out = []
        for record in records:
            with record.lock:
                out.append(record.result.snapshot())
        return out

    def records(self) -> list[RunRecord]:
        with self._lock:
            return list(self._records.values())

    def running(self) -> list[RunRecord]:
        """Return the records whose result is not yet terminal."""
        with self._lock:
            return [r for r in self._records.values() if not r.result.status.is_terminal]

    def remove(self, run_id: str) -> RunRecord | None:
        with self._lock:
            return self._records.pop(run_id, None)

    def prune(self, keep: int) -> list[str]:
        """Evict the oldest settled runs so at most *keep* terminal runs remain.

        Terminal runs whose engine is still alive or whose result is not yet
        saved are never evicted.

        Args:
            keep: Number of terminal runs to retain.

        Returns:
            Identifiers of the evicted runs.
        """
        with self._lock:
            terminal = [
                run_id
                for run_id, record in self._records.items()
                if record.result.status.is_terminal
            ]
            settled = [run_id for run_id in terminal if self._records[run_id].settled]
        excess = settled[: max(0, len(terminal) - keep)]
        for run_id in excess:
            self.remove(run_id)
        return excess

    def __contains__(self, run_id: object) -> bool:
        with self._lock:
            return run_id in self._records

    def __len__(self) -> int:
        """Return the number of stored runs."""
        with self._lock:
            return len(self._records)
