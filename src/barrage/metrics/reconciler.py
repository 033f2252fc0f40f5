"""Merge extracted engine metrics into a run's result.

Merge policy while a run is live:

- Counters (requests, scenarios, timeouts, skips, rps mean/count) only move
  up. The engine's reports are cumulative, so a smaller number is noise.
- Latency fields are overwritten only by values > 0; zero means "not yet
  measured".
- Code and error histograms are merged key by key, keeping the larger count.

The final aggregate report is authoritative: any value it actually carries
replaces the accumulated one, and everything it lacks is left alone.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from barrage._internal.errors import ReportParseError
from barrage._internal.logging import get_logger
from barrage.metrics import extractors
from barrage.metrics.codes import normalize_codes
from barrage.metrics.models import LATENCY_FIELDS

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from barrage._internal.types import JsonDict
    from barrage.metrics.extractors import Extractor
    from barrage.metrics.models import Summary, TestResult

logger = get_logger("metrics.reconciler")

_REPORT_CODE_KEY = re.compile(r"(?:^|\.)(\d{3})$")


def load_report(path: Path) -> JsonDict:
    """Read and validate the engine's aggregate report.

    Args:
        path: Report file written by the engine.

    Returns:
        The decoded report; guaranteed to contain an ``aggregate`` object.

    Raises:
        ReportParseError: If the file cannot be read, is not JSON, or lacks
            an ``aggregate`` object.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read report {path}: {exc}"
        raise ReportParseError(msg) from exc
    try:
        report = json.loads(content)
    except ValueError as exc:
        msg = f"Report {path} is not valid JSON: {exc}"
        raise ReportParseError(msg) from exc
    if not isinstance(report, dict) or not isinstance(report.get("aggregate"), dict):
        msg = f"Report {path} has no aggregate data"
        raise ReportParseError(msg)
    return report


def _positive(value: Any) -> float | None:
    """Return *value* as a float if it is a number > 0, else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if value > 0 else None


def _max_merge(target: dict[str, int], incoming: Mapping[str, int]) -> bool:
    changed = False
    for key, count in incoming.items():
        if count > target.get(key, 0):
            target[key] = count
            changed = True
    return changed


class OutputReconciler:
    """Extracts metrics from accumulated engine output into a ``TestResult``.

    Stateless: every call re-reads ``result.raw_output`` in full, because a
    metric may straddle two output chunks. Running the same log twice is a
    no-op the second time.
    """

    def reconcile(self, result: TestResult) -> bool:
        """Run one extraction pass over the result's raw log.

        Extraction problems are logged and absorbed; a pass never raises.

        Args:
            result: The run's mutable result.

        Returns:
            True if any metric changed.
        """
        try:
            return self._reconcile(result)
        except Exception:
            logger.exception("Metric extraction failed for run %s", result.id)
            return False

    def _reconcile(self, result: TestResult) -> bool:
        log = result.raw_output
        summary = result.summary
        changed = False

        changed |= self._raise(summary, "requests_completed", extractors.REQUESTS_COMPLETED, log)
        changed |= self._raise(summary, "requests_timed_out", extractors.REQUESTS_TIMED_OUT, log)
        changed |= self._raise(summary, "scenarios_avoided", extractors.SCENARIOS_AVOIDED, log)

        scenarios_changed = self._raise(
            summary.scenarios, "created", extractors.SCENARIOS_CREATED, log
        )
        scenarios_changed |= self._raise(
            summary.scenarios, "completed", extractors.SCENARIOS_COMPLETED, log
        )
        if scenarios_changed:
            summary.scenarios.recompute_failed()
            changed = True

        changed |= self._merge_latency(summary, log)

        rps_found = extractors.first_match(
            extractors.RPS_MEAN, log, include_fallbacks=summary.rps.mean == 0
        )
        if rps_found is not None and rps_found[1] > summary.rps.mean:
            summary.rps.mean = float(rps_found[1])
            changed = True
        if summary.rps.mean > 0 and summary.requests_completed > summary.rps.count:
            summary.rps.count = summary.requests_completed
            changed = True

        codes_found = extractors.first_match(extractors.STATUS_CODES, log)
        if codes_found is not None:
            changed |= _max_merge(summary.codes, normalize_codes(codes_found[1]))

        errors_found = extractors.first_match(extractors.ERRORS, log)
        if errors_found is not None:
            changed |= _max_merge(summary.errors, errors_found[1])

        if changed:
            logger.debug(
                "Reconciled run %s: requests=%d, codes=%s",
                result.id,
                summary.requests_completed,
                summary.codes,
            )
        return changed

    @staticmethod
    def _raise(
        target: object,
        attr: str,
        family: Sequence[Extractor[int]],
        log: str,
    ) -> bool:
        """Set ``target.attr`` to the extracted value only if strictly greater."""
        current = getattr(target, attr)
        found = extractors.first_match(family, log, include_fallbacks=current == 0)
        if found is None:
            return False
        name, value = found
        if value > current:
            setattr(target, attr, value)
            logger.debug("Extracted %s=%d using %s", attr, value, name)
            return True
        return False

    @staticmethod
    def _merge_latency(summary: Summary, log: str) -> bool:
        found = extractors.first_match(extractors.LATENCY, log)
        if found is None:
            return False
        changed = False
        for key, value in found[1].items():
            if value > 0 and getattr(summary.latency, key) != value:
                setattr(summary.latency, key, value)
                changed = True
        return changed

    def apply_report(self, result: TestResult, report: Mapping[str, Any]) -> None:
        """Overlay the engine's aggregate report onto the accumulated summary.

        Args:
            result: The run's mutable result.
            report: Report as returned by :func:`load_report`.
        """
        aggregate = report.get("aggregate") or {}
        counters = aggregate.get("counters") or {}
        summaries = aggregate.get("summaries") or {}
        rates = aggregate.get("rates") or {}
        summary = result.summary

        requests = _positive(counters.get("http.requests"))
        if requests is not None:
            summary.requests_completed = int(requests)
            summary.rps.count = int(requests)

        session = summaries.get("vusers.session_length") or {}
        created = _positive(counters.get("vusers.created")) or _positive(session.get("count"))
        if created is not None:
            summary.scenarios.created = int(created)
        completed = _positive(counters.get("vusers.completed"))
        if completed is not None:
            summary.scenarios.completed = int(completed)
        summary.scenarios.recompute_failed()

        timed_out = _positive(counters.get("errors.ETIMEDOUT")) or _positive(
            counters.get("http.requests.timeouts")
        )
        if timed_out is not None:
            summary.requests_timed_out = int(timed_out)
        skipped = _positive(counters.get("vusers.skipped"))
        if skipped is not None:
            summary.scenarios_avoided = int(skipped)

        response_time = summaries.get("http.response_time") or {}
        for key in LATENCY_FIELDS:
            value = _positive(response_time.get(key))
            if value is not None:
                setattr(summary.latency, key, value)

        rate = _positive(rates.get("http.request_rate"))
        if rate is not None:
            summary.rps.mean = rate

        report_codes = _report_codes(aggregate, counters)
        summary.codes = normalize_codes(report_codes or summary.codes)

        report_errors = _report_errors(aggregate, counters)
        if report_errors:
            summary.errors = report_errors

        logger.info(
            "Applied aggregate report to run %s: requests=%d, codes=%s",
            result.id,
            summary.requests_completed,
            summary.codes,
        )


def _report_codes(aggregate: Mapping[str, Any], counters: Mapping[str, Any]) -> dict[str, int]:
    codes: dict[str, int] = {}
    sources = [aggregate.get("codes") or {}, counters]
    for source in sources:
        for key, count in source.items():
            if source is counters and not str(key).startswith("http.codes."):
                continue
            match = _REPORT_CODE_KEY.search(str(key))
            if match is not None and _positive(count) is not None:
                codes[match.group(1)] = int(count)
        if codes:
            break
    return codes


def _report_errors(aggregate: Mapping[str, Any], counters: Mapping[str, Any]) -> dict[str, int]:
    errors = {
        str(label): int(count)
        for label, count in (aggregate.get("errors") or {}).items()
        if _positive(count) is not None
    }
    if errors:
        return errors
    return {
        key.removeprefix("errors."): int(count)
        for key, count in counters.items()
        if key.startswith("errors.") and _positive(count) is not None
    }
