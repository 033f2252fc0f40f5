"""Placeholder metrics synthesized from a coarse progress percentage.

While the engine is running it reports little beyond a percent-complete
marker. To keep viewers informed the estimator fills in plausible values
derived from the requested load shape. None of these numbers are
measurements; they are superseded by extracted values or the final report.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from barrage._internal.logging import get_logger

if TYPE_CHECKING:
    from barrage.catalog.models import RunSettings
    from barrage.metrics.models import TestResult

logger = get_logger("metrics.estimator")

COMPLETION_RATIO = 0.9

# Share of estimated requests assigned to each synthesized status code.
CODE_DISTRIBUTION = (("200", 0.8), ("404", 0.1), ("500", 0.05), ("403", 0.05))

PLACEHOLDER_LATENCY = {"min": 50.0, "median": 150.0, "p95": 300.0, "p99": 450.0, "max": 500.0}


def estimate_requests(progress: float, settings: RunSettings) -> int:
    """Return ``ceil(duration * arrival_rate * progress / 100)``."""
    return math.ceil(settings.duration * settings.arrival_rate * progress / 100)


def estimate_from_progress(result: TestResult, settings: RunSettings) -> bool:
    """Backfill metrics that have no real values yet.

    Nothing happens unless the estimated request count exceeds the stored
    ``requests_completed``; counters therefore never go down.

    Args:
        result: The run's mutable result; ``result.progress`` is the input signal.
        settings: Requested load shape.

    Returns:
        True if the result was modified.
    """
    progress = result.progress
    if progress <= 0:
        return False

    summary = result.summary
    estimated = estimate_requests(progress, settings)
    if estimated <= summary.requests_completed:
        return False

    summary.requests_completed = estimated
    summary.scenarios.created = max(summary.scenarios.created, estimated)
    summary.scenarios.completed = max(
        summary.scenarios.completed, math.floor(estimated * COMPLETION_RATIO)
    )
    summary.scenarios.recompute_failed()

    if not summary.codes:
        for code, share in CODE_DISTRIBUTION:
            count = math.floor(estimated * share)
            if count > 0:
                summary.codes[code] = count

    if summary.latency.median == 0:
        for name, value in PLACEHOLDER_LATENCY.items():
            setattr(summary.latency, name, value)

    if summary.rps.mean == 0:
        elapsed = settings.duration * progress / 100
        if elapsed > 0:
            summary.rps.mean = estimated / elapsed
            summary.rps.count = max(summary.rps.count, estimated)

    logger.debug(
        "Estimated metrics for %s at %d%%: requests=%d", result.id, progress, estimated
    )
    return True
