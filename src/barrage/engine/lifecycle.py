"""Run lifecycle: compile, launch, monitor, finalize, persist, clean up.

Every run owns one engine process. All mutation of a run's result happens
on the event loop in one of a few callbacks (output chunk, watchdog tick,
grace timer, exit, cancel), and every path to a terminal status goes
through :meth:`RunController._finish`, which makes terminal transitions
happen at most once.

Known approximation: once progress reaches 100% a grace timer is armed and,
if the engine has not exited when it fires, the run is marked
``completed``. A stuck engine is therefore reported as successful, and a
report it writes afterwards is not applied. The engine itself keeps running
until it exits or :meth:`RunController.shutdown` terminates it.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from typing import TYPE_CHECKING

from barrage._internal.errors import (
    LaunchError,
    ProcessFailure,
    ReportParseError,
    RunNotFoundError,
)
from barrage._internal.logging import get_logger
from barrage.compiler.config import compile_run_config, write_run_config
from barrage.engine.launcher import EngineLauncher, pump_stream
from barrage.engine.protocol import EngineInvocation
from barrage.engine.store import RunRecord, RunStore
from barrage.metrics.estimator import estimate_from_progress
from barrage.metrics.extractors import extract_progress
from barrage.metrics.models import RunStatus, TestResult
from barrage.metrics.reconciler import OutputReconciler, load_report

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from barrage._internal.config import BarrageConfig
    from barrage._internal.types import JsonDict
    from barrage.catalog.models import Endpoint, LoadTestDefinition
    from barrage.storage.repository import JsonRepository

logger = get_logger("engine.lifecycle")

STALL_INCREMENT = 5
STALL_CEILING = 95

_REPORT_WAIT_SECONDS = 2.0
_REPORT_POLL_SECONDS = 0.05

NO_REPORT_NOTE = "Test completed but no report file was generated."
CANCELLED_NOTE = "Test was cancelled by user."


class RunController:
    """Owns every run started in this process.

    Args:
        config: Timing constants, artifact directory and engine command.
        store: Shared run store; a fresh one is created if omitted.
        repository: Receives each result once it turns terminal.
        launcher: Process launcher, replaceable in tests.
        on_terminal: Called with the run id right after a run turns terminal.
    """

    def __init__(
        self,
        config: BarrageConfig,
        *,
        store: RunStore | None = None,
        repository: JsonRepository | None = None,
        launcher: EngineLauncher | None = None,
        on_terminal: Callable[[str], None] | None = None,
    ) -> None:
        self._config = config
        self._store = store if store is not None else RunStore()
        self._repository = repository
        self._launcher = launcher if launcher is not None else EngineLauncher()
        self._on_terminal = on_terminal
        self._reconciler = OutputReconciler()

    @property
    def store(self) -> RunStore:
        return self._store

    # ------------------------------------------------------------------
    # Caller-facing operations
    # ------------------------------------------------------------------

    async def compile_and_start(
        self,
        definition: LoadTestDefinition,
        catalog: Iterable[Endpoint],
    ) -> str:
        """Compile *definition* and start the engine against it.

        Args:
            definition: The load test to run.
            catalog: Every known endpoint.

        Returns:
            The new run's identifier.

        Raises:
            ConfigError: If the definition cannot be compiled. No run is created.
            LaunchError: If the engine could not be started. The run exists
                with status ``failed`` and ``exc.run_id`` set.
        """
        run_config = compile_run_config(definition, catalog)

        run_id = str(uuid.uuid4())
        invocation = EngineInvocation.build(
            self._config.engine_command, self._config.temp_dir, definition.id, run_id
        )
        record = RunRecord(
            result=TestResult.new(run_id, definition.id, definition.settings.duration),
            settings=definition.settings,
            invocation=invocation,
        )
        self._store.add(record)
        logger.info(
            "Starting run %s for test %s", run_id, definition.id, extra={"run_id": run_id}
        )

        try:
            write_run_config(run_config, invocation.config_path)
            record.process = await self._launcher.launch(invocation)
        except (OSError, LaunchError) as exc:
            self._fail_launch(record, exc)
            if record.persist is not None:
                await record.persist
            msg = f"Could not start test {definition.id}: {exc}"
            raise LaunchError(msg, run_id=run_id) from exc

        record.last_progress_at = asyncio.get_running_loop().time()
        record.monitor = asyncio.create_task(self._monitor(record), name=f"monitor-{run_id}")
        record.watchdog = asyncio.create_task(
            self._watch_progress(record), name=f"watchdog-{run_id}"
        )
        self._prune()
        return run_id

    def get_result(self, run_id: str) -> TestResult:
        """Return a snapshot of the run's result.

        Falls back to the persisted list for runs no longer held in memory.

        Raises:
            RunNotFoundError: If the id is unknown.
        """
        snapshot = self._store.snapshot(run_id)
        if snapshot is not None:
            return snapshot
        if self._repository is not None:
            for stored in self._repository.load_results():
                if stored.id == run_id:
                    return stored
        msg = f"Test result not found: {run_id}"
        raise RunNotFoundError(msg)

    def list_results(self) -> list[TestResult]:
        """Return in-memory and persisted results, de-duplicated, newest first.

        Reads the repository from disk; event-loop callers run it in a thread.
        """
        merged: dict[str, TestResult] = {}
        for result in self._store.snapshots():
            merged[result.id] = result
        if self._repository is not None:
            for stored in self._repository.load_results():
                merged.setdefault(stored.id, stored)
        return sorted(merged.values(), key=lambda r: r.timestamp, reverse=True)

    def cancel(self, run_id: str) -> bool:
        """Request termination of a running engine process.

        Returns immediately; the run is ``failed`` on return and the exit
        handler, when it fires later, leaves the result untouched.

        Returns:
            True if a running process was found and termination requested,
            False if there is nothing to cancel.
        """
        record = self._store.get(run_id)
        if record is None or record.process is None:
            return False
        with record.lock:
            if record.result.status.is_terminal:
                return False
            process, record.process = record.process, None
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            record.result.append_log(f"\n{CANCELLED_NOTE}\n")
            self._finish(record, RunStatus.FAILED)
        logger.info("Run %s cancelled", run_id, extra={"run_id": run_id})
        return True

    async def wait_for_terminal(self, run_id: str, timeout: float | None = None) -> TestResult:
        """Wait until the run is terminal and return its final snapshot.

        Raises:
            RunNotFoundError: If the id is unknown.
            TimeoutError: If *timeout* elapses first.
        """
        record = self._store.get(run_id)
        if record is None:
            return self.get_result(run_id)
        await asyncio.wait_for(record.done.wait(), timeout)
        if record.persist is not None:
            await record.persist
        return self.get_result(run_id)

    async def shutdown(self) -> None:
        """Stop every engine still alive and wait for outstanding work.

        Running runs are cancelled. An engine that outlived its run, because
        the grace timer already marked it completed, is terminated without
        touching the final result.
        """
        pending: list[asyncio.Task[None]] = []
        for record in self._store.records():
            process = record.process
            if process is not None and not self.cancel(record.run_id):
                logger.info(
                    "Terminating engine left running by finished run %s",
                    record.run_id,
                    extra={"run_id": record.run_id},
                )
                with contextlib.suppress(ProcessLookupError):
                    process.terminate()
            if record.monitor is not None:
                pending.append(record.monitor)
            if record.persist is not None:
                pending.append(record.persist)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Process monitoring
    # ------------------------------------------------------------------

    async def _monitor(self, record: RunRecord) -> None:
        process = record.process
        if process is None:
            return
        try:
            await asyncio.gather(
                pump_stream(process.stdout, lambda text: self._on_stdout(record, text)),
                pump_stream(process.stderr, lambda text: self._on_stderr(record, text)),
            )
            returncode = await process.wait()
            await self._on_exit(record, returncode)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Monitoring failed for run %s", record.run_id, extra={"run_id": record.run_id}
            )
            with record.lock:
                record.result.append_log("\nInternal error while monitoring the test.\n")
                self._finish(record, RunStatus.FAILED)
            self._cleanup(record)

    def _on_stdout(self, record: RunRecord, text: str) -> None:
        with record.lock:
            result = record.result
            if result.status.is_terminal:
                return
            result.append_log(text)
            self._reconciler.reconcile(result)

            progress = extract_progress(text)
            if progress is not None and progress > result.progress:
                self._set_progress(record, progress)

    def _on_stderr(self, record: RunRecord, text: str) -> None:
        with record.lock:
            if record.result.status.is_terminal:
                return
            suffix = "" if text.endswith("\n") else "\n"
            record.result.append_log(f"ERROR: {text}{suffix}")
        logger.debug(
            "Engine stderr for run %s: %s",
            record.run_id,
            text.rstrip(),
            extra={"run_id": record.run_id},
        )

    def _set_progress(self, record: RunRecord, progress: int) -> None:
        record.result.progress = progress
        record.last_progress_at = asyncio.get_running_loop().time()
        estimate_from_progress(record.result, record.settings)
        if progress >= 100 and record.grace_handle is None:
            record.grace_handle = asyncio.get_running_loop().call_later(
                self._config.completion_grace_seconds, self._grace_expired, record
            )
            logger.debug(
                "Run %s reached 100%%, grace timer armed",
                record.run_id,
                extra={"run_id": record.run_id},
            )

    async def _watch_progress(self, record: RunRecord) -> None:
        """Bump stalled progress by a fixed step while the run is alive."""
        stall = self._config.progress_stall_seconds
        loop = asyncio.get_running_loop()
        while not record.result.status.is_terminal:
            await asyncio.sleep(stall / 3)
            with record.lock:
                result = record.result
                if result.status.is_terminal or result.progress >= STALL_CEILING:
                    continue
                if loop.time() - record.last_progress_at < stall:
                    continue
                bumped = min(result.progress + STALL_INCREMENT, STALL_CEILING)
                logger.debug(
                    "Run %s progress stalled, %d%% -> %d%%",
                    result.id,
                    result.progress,
                    bumped,
                    extra={"run_id": result.id},
                )
                self._set_progress(record, bumped)

    def _grace_expired(self, record: RunRecord) -> None:
        record.grace_handle = None
        with record.lock:
            if record.result.status.is_terminal:
                return
            logger.warning(
                "Run %s still running %.1fs after reaching 100%%, marking completed",
                record.run_id,
                self._config.completion_grace_seconds,
                extra={"run_id": record.run_id},
            )
            self._finish(record, RunStatus.COMPLETED)

    async def _on_exit(self, record: RunRecord, returncode: int) -> None:
        record.process = None
        if record.grace_handle is not None:
            record.grace_handle.cancel()
            record.grace_handle = None

        if record.result.status.is_terminal:
            logger.debug(
                "Run %s exited with code %d after reaching %s",
                record.run_id,
                returncode,
                record.result.status.value,
            )
        elif returncode == 0:
            report = await self._read_report(record)
            with record.lock:
                if not record.result.status.is_terminal:
                    self._reconciler.reconcile(record.result)
                    if report is not None:
                        self._reconciler.apply_report(record.result, report)
                    self._finish(record, RunStatus.COMPLETED)
        else:
            failure = ProcessFailure(returncode)
            logger.warning("Run %s: %s", record.run_id, failure, extra={"run_id": record.run_id})
            with record.lock:
                if not record.result.status.is_terminal:
                    self._reconciler.reconcile(record.result)
                    record.result.append_log(f"\nTest failed with exit code {returncode}\n")
                    self._finish(record, RunStatus.FAILED)

        self._cleanup(record)

    async def _read_report(self, record: RunRecord) -> JsonDict | None:
        """Wait briefly for the report file, then parse it.

        A missing or unparsable report is noted in the raw log and yields None.
        """
        if record.invocation is None:
            return None
        path = record.invocation.report_path
        loop = asyncio.get_running_loop()
        deadline = loop.time() + _REPORT_WAIT_SECONDS
        while not path.exists() and loop.time() < deadline:
            await asyncio.sleep(_REPORT_POLL_SECONDS)

        if not path.exists():
            logger.warning(
                "Run %s finished without a report at %s",
                record.run_id,
                path,
                extra={"run_id": record.run_id},
            )
            with record.lock:
                record.result.append_log(f"\n{NO_REPORT_NOTE}\n")
            return None
        try:
            return load_report(path)
        except ReportParseError as exc:
            logger.warning("Run %s: %s", record.run_id, exc, extra={"run_id": record.run_id})
            with record.lock:
                record.result.append_log(f"\nCould not read the report file: {exc}\n")
            return None

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _finish(self, record: RunRecord, status: RunStatus) -> bool:
        """Move the run to *status* unless it is already terminal.

        Persists the result and notifies the terminal callback exactly once.
        """
        result = record.result
        if result.status.is_terminal:
            return False
        result.status = status
        if status is RunStatus.COMPLETED:
            result.progress = 100
        record.cancel_timers()
        record.done.set()
        logger.info(
            "Run %s %s: requests=%d, progress=%d%%",
            result.id,
            status.value,
            result.summary.requests_completed,
            result.progress,
            extra={"run_id": result.id},
        )

        if self._repository is not None:
            record.persist = asyncio.get_running_loop().create_task(
                self._persist(result.snapshot()), name=f"persist-{result.id}"
            )
        if self._on_terminal is not None:
            self._on_terminal(result.id)
        return True

    async def _persist(self, result: TestResult) -> None:
        """Append the final result to the repository on a worker thread."""
        if self._repository is None:
            return
        saved = await asyncio.to_thread(
            self._repository.append_bounded, result, cap=self._config.results_cap
        )
        if not saved:
            logger.error(
                "Result of run %s was not persisted", result.id, extra={"run_id": result.id}
            )

    def _fail_launch(self, record: RunRecord, exc: Exception) -> None:
        logger.error(
            "Run %s could not be started: %s", record.run_id, exc, extra={"run_id": record.run_id}
        )
        with record.lock:
            record.result.append_log(f"ERROR: {exc}\n")
            self._finish(record, RunStatus.FAILED)
        self._cleanup(record)

    def _cleanup(self, record: RunRecord) -> None:
        """Delete the run's temporary artifacts; failures are only logged."""
        if record.invocation is None:
            return
        for path in record.invocation.artifacts:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not delete %s: %s", path, exc)

    def _prune(self) -> None:
        evicted = self._store.prune(self._config.max_retained_runs)
        if evicted:
            logger.debug("Evicted %d finished runs from memory", len(evicted))
