"""Result dataclasses for a single run.

A ``TestResult`` is created when a run is accepted, mutated in place by
reconciliation passes, and frozen once its status is terminal. Wire form
uses the camelCase keys the browser expects.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from barrage._internal.types import JsonDict

__all__ = [
    "LatencySummary",
    "RpsSummary",
    "RunStatus",
    "ScenarioCounts",
    "Summary",
    "TestResult",
]

LATENCY_FIELDS = ("min", "max", "median", "p95", "p99")


class RunStatus(str, Enum):
    """Run status; ``completed`` and ``failed`` are terminal."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


@dataclass
class ScenarioCounts:
    """Virtual user scenario counters.

    Attributes:
        created: Scenarios launched.
        completed: Scenarios that ran to the end of their flow.
        failed: ``max(0, created - completed)``.
    """

    created: int = 0
    completed: int = 0
    failed: int = 0

    def recompute_failed(self) -> None:
        self.failed = max(0, self.created - self.completed)


@dataclass
class LatencySummary:
    """Response time summary in milliseconds. Zero means not yet measured."""

    min: float = 0.0
    max: float = 0.0
    median: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


@dataclass
class RpsSummary:
    """Request rate summary.

    Attributes:
        mean: Mean requests per second.
        count: Requests the mean is based on.
    """

    mean: float = 0.0
    count: int = 0


@dataclass
class Summary:
    """Aggregate metrics for a run.

    Attributes:
        duration: Requested phase duration in seconds.
        scenarios: Scenario counters.
        codes: HTTP status code -> response count.
        errors: Error label -> occurrence count.
        requests_completed: Requests that received a response.
        requests_timed_out: Requests that timed out.
        scenarios_avoided: Scenarios skipped by the engine.
        latency: Response time summary.
        rps: Request rate summary.
    """

    duration: float = 0.0
    scenarios: ScenarioCounts = field(default_factory=ScenarioCounts)
    codes: dict[str, int] = field(default_factory=dict)
    errors: dict[str, int] = field(default_factory=dict)
    requests_completed: int = 0
    requests_timed_out: int = 0
    scenarios_avoided: int = 0
    latency: LatencySummary = field(default_factory=LatencySummary)
    rps: RpsSummary = field(default_factory=RpsSummary)

    def to_dict(self) -> JsonDict:
        return {
            "duration": self.duration,
            "scenarios": {
                "created": self.scenarios.created,
                "completed": self.scenarios.completed,
                "failed": self.scenarios.failed,
            },
            "codes": dict(self.codes),
            "errors": dict(self.errors),
            "requestsCompleted": self.requests_completed,
            "requestsTimedOut": self.requests_timed_out,
            "scenariosAvoided": self.scenarios_avoided,
            "latency": {name: getattr(self.latency, name) for name in LATENCY_FIELDS},
            "rps": {"mean": self.rps.mean, "count": self.rps.count},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Summary:
        scenarios = data.get("scenarios") or {}
        latency = data.get("latency") or {}
        rps = data.get("rps") or {}
        return cls(
            duration=float(data.get("duration", 0) or 0),
            scenarios=ScenarioCounts(
                created=int(scenarios.get("created", 0) or 0),
                completed=int(scenarios.get("completed", 0) or 0),
                failed=int(scenarios.get("failed", 0) or 0),
            ),
            codes={str(k): int(v) for k, v in (data.get("codes") or {}).items()},
            errors={str(k): int(v) for k, v in (data.get("errors") or {}).items()},
            requests_completed=int(data.get("requestsCompleted", 0) or 0),
            requests_timed_out=int(data.get("requestsTimedOut", 0) or 0),
            scenarios_avoided=int(data.get("scenariosAvoided", 0) or 0),
            latency=LatencySummary(
                **{name: float(latency.get(name, 0) or 0) for name in LATENCY_FIELDS}
            ),
            rps=RpsSummary(
                mean=float(rps.get("mean", 0) or 0),
                count=int(rps.get("count", 0) or 0),
            ),
        )


@dataclass
class TestResult:
    """Live and final state of one run.

    Attributes:
        id: Run identifier, distinct from the definition id.
        test_id: Identifier of the originating load test definition.
        timestamp: Creation time in epoch milliseconds.
        status: Current status.
        progress: Percent complete, 0-100, non-decreasing while running.
        raw_output: Accumulated engine output and lifecycle notes.
        summary: Aggregate metrics.
    """

    __test__ = False

    id: str
    test_id: str
    timestamp: int
    status: RunStatus = RunStatus.RUNNING
    progress: int = 0
    raw_output: str = ""
    summary: Summary = field(default_factory=Summary)

    @classmethod
    def new(cls, run_id: str, test_id: str, duration: float) -> TestResult:
        """Create the initial ``running`` result with an all-zero summary."""
        return cls(
            id=run_id,
            test_id=test_id,
            timestamp=int(time.time() * 1000),
            raw_output="Starting test...\n",
            summary=Summary(duration=duration),
        )

    def append_log(self, text: str) -> None:
        self.raw_output += text

    def snapshot(self) -> TestResult:
        """Return a deep copy safe to hand to readers."""
        return copy.deepcopy(self)

    def to_dict(self) -> JsonDict:
        return {
            "id": self.id,
            "testId": self.test_id,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "progress": self.progress,
            "rawOutput": self.raw_output,
            "summary": self.summary.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TestResult:
        return cls(
            id=str(data["id"]),
            test_id=str(data.get("testId", "")),
            timestamp=int(data.get("timestamp", 0) or 0),
            status=RunStatus(data.get("status", RunStatus.RUNNING.value)),
            progress=int(data.get("progress", 0) or 0),
            raw_output=str(data.get("rawOutput", "")),
            summary=Summary.from_dict(data.get("summary") or {}),
        )
