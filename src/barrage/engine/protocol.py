"""Types describing the boundary between the controller and the engine process."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path


@dataclass(frozen=True)
class EngineInvocation:
    """Everything needed to start one engine process.

    Attributes:
        run_id: Run the process belongs to.
        config_path: Compiled run configuration written before launch.
        report_path: Where the engine is asked to write its aggregate report.
        argv: Full argument vector, e.g. ``("artillery", "run", cfg, "-o", rpt)``.
    """

    run_id: str
    config_path: Path
    report_path: Path
    argv: tuple[str, ...]

    @classmethod
    def build(
        cls,
        engine_command: Sequence[str],
        temp_dir: Path,
        definition_id: str,
        run_id: str,
    ) -> EngineInvocation:
        """Derive artifact paths and the argument vector for a run.

        Args:
            engine_command: Engine executable plus any leading arguments.
            temp_dir: Directory for per-run artifacts.
            definition_id: Identifier of the load test being run.
            run_id: Identifier of the run.
        """
        config_path = temp_dir / f"test-{definition_id}-{run_id}.json"
        report_path = temp_dir / f"report-{run_id}.json"
        argv = (*engine_command, "run", str(config_path), "-o", str(report_path))
        return cls(run_id=run_id, config_path=config_path, report_path=report_path, argv=argv)

    @property
    def artifacts(self) -> tuple[Path, Path]:
        return self.config_path, self.report_path
