"""Shared test fixtures for the barrage test suite."""

from __future__ import annotations

import sys
import textwrap
from typing import TYPE_CHECKING

import pytest

from barrage._internal.config import BarrageConfig
from barrage.catalog.models import AuthSpec, AuthType, Endpoint, LoadTestDefinition, RunSettings

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Catalog fixtures
# =============================================================================


@pytest.fixture
def get_endpoint() -> Endpoint:
    """Plain GET endpoint without auth or body."""
    return Endpoint(id="ep-get", name="List users", url="https://api.example.com/users?page=1")


@pytest.fixture
def post_endpoint() -> Endpoint:
    """POST endpoint with a JSON body and bearer auth."""
    return Endpoint(
        id="ep-post",
        name="Create user",
        url="https://api.example.com/users",
        method="POST",
        headers={"Content-Type": "application/json"},
        body='{"name": "ada"}',
        auth=AuthSpec(type=AuthType.BEARER, token="secret-token"),
    )


@pytest.fixture
def definition(get_endpoint: Endpoint) -> LoadTestDefinition:
    """One-endpoint test: 60 seconds at 2 arrivals per second."""
    return LoadTestDefinition(
        id="test-1",
        name="Smoke",
        endpoint_ids=frozenset({get_endpoint.id}),
        settings=RunSettings(duration=60, arrival_rate=2),
    )


# =============================================================================
# Fake engine
# =============================================================================

# Mimics ``artillery run <config> -o <report>``. Scripts copy the config they
# were given next to the report as ``<report>.seen`` so tests can inspect it.
_ENGINE_PRELUDE = """\
import json
import sys
import time

config_path, report_path = sys.argv[2], sys.argv[4]
with open(config_path) as fh:
    config = json.load(fh)
with open(report_path + ".seen", "w") as fh:
    json.dump({"argv": sys.argv[1:], "config": config}, fh)


def emit(text):
    print(text, flush=True)


def write_report(aggregate):
    with open(report_path, "w") as fh:
        json.dump({"aggregate": aggregate}, fh)

"""


@pytest.fixture
def fake_engine(tmp_path: Path) -> Callable[[str], tuple[str, ...]]:
    """Factory writing a fake engine script; returns the engine command."""

    def _make(body: str, name: str = "engine") -> tuple[str, ...]:
        script = tmp_path / f"{name}.py"
        script.write_text(_ENGINE_PRELUDE + textwrap.dedent(body))
        return (sys.executable, str(script))

    return _make


@pytest.fixture
def fast_config(tmp_path: Path) -> Callable[..., BarrageConfig]:
    """Factory for a config with short timings rooted in ``tmp_path``."""

    def _make(
        engine_command: tuple[str, ...] = ("artillery",), **overrides: object
    ) -> BarrageConfig:
        values: dict[str, object] = {
            "data_dir": tmp_path / "data",
            "temp_dir": tmp_path / "artifacts",
            "engine_command": engine_command,
            "broadcast_interval": 0.05,
            "final_broadcast_delay": 0.05,
            "progress_stall_seconds": 5.0,
            "completion_grace_seconds": 0.3,
        }
        values.update(overrides)
        return BarrageConfig(**values)  # type: ignore[arg-type]

    return _make
