"""Barrage: drive Artillery load tests and reconcile their output in real time."""

from __future__ import annotations

from barrage.catalog.models import AuthSpec, Endpoint, LoadTestDefinition, RunSettings
from barrage.compiler.config import RunConfig, compile_run_config
from barrage.engine.lifecycle import RunController
from barrage.metrics.models import RunStatus, Summary, TestResult

__version__ = "0.1.0"

__all__ = [
    "AuthSpec",
    "Endpoint",
    "LoadTestDefinition",
    "RunConfig",
    "RunController",
    "RunSettings",
    "RunStatus",
    "Summary",
    "TestResult",
    "compile_run_config",
]
