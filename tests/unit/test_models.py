"""Tests for result dataclasses."""

from __future__ import annotations

import pytest

from barrage.metrics.models import RunStatus, Summary, TestResult


class TestRunStatus:
    @pytest.mark.parametrize(
        ("status", "terminal"),
        [(RunStatus.RUNNING, False), (RunStatus.COMPLETED, True), (RunStatus.FAILED, True)],
    )
    def test_is_terminal(self, status: RunStatus, terminal: bool):
        assert status.is_terminal is terminal


class TestTestResult:
    def test_new_starts_running_with_zero_summary(self):
        result = TestResult.new("run-1", "test-1", 30)
        assert result.status is RunStatus.RUNNING
        assert result.progress == 0
        assert result.raw_output == "Starting test...\n"
        assert result.summary == Summary(duration=30)
        assert result.timestamp > 0

    def test_snapshot_is_deep(self):
        result = TestResult.new("run-1", "test-1", 30)
        result.summary.codes["200"] = 1
        copy = result.snapshot()
        result.summary.codes["200"] = 5
        result.summary.latency.median = 10
        result.append_log("more")
        assert copy.summary.codes == {"200": 1}
        assert copy.summary.latency.median == 0
        assert copy.raw_output == "Starting test...\n"

    def test_wire_form_uses_camel_case(self):
        result = TestResult.new("run-1", "test-1", 30)
        result.summary.requests_completed = 4
        data = result.to_dict()
        assert data["testId"] == "test-1"
        assert data["rawOutput"] == "Starting test...\n"
        assert data["status"] == "running"
        assert data["summary"]["requestsCompleted"] == 4
        assert data["summary"]["scenarios"] == {"created": 0, "completed": 0, "failed": 0}
        assert data["summary"]["latency"] == {
            "min": 0.0,
            "max": 0.0,
            "median": 0.0,
            "p95": 0.0,
            "p99": 0.0,
        }

    def test_from_dict_restores_to_dict(self):
        result = TestResult.new("run-1", "test-1", 30)
        result.status = RunStatus.COMPLETED
        result.progress = 100
        result.summary.codes = {"200": 9, "500": 1}
        result.summary.errors = {"ECONNRESET": 1}
        result.summary.rps.mean = 1.5
        result.summary.scenarios.created = 10
        assert TestResult.from_dict(result.to_dict()) == result

    def test_from_dict_tolerates_missing_summary(self):
        result = TestResult.from_dict({"id": "r", "status": "failed"})
        assert result.status is RunStatus.FAILED
        assert result.summary == Summary()
