"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from barrage._internal.config import BarrageConfig, load_config
from barrage._internal.errors import ConfigError

_ENV_VARS = (
    "BARRAGE_DATA_DIR",
    "BARRAGE_TEMP_DIR",
    "BARRAGE_ENGINE",
    "BARRAGE_HOST",
    "BARRAGE_PORT",
    "BARRAGE_BROADCAST_INTERVAL",
    "BARRAGE_FINAL_BROADCAST_DELAY",
    "BARRAGE_STALL_SECONDS",
    "BARRAGE_GRACE_SECONDS",
    "BARRAGE_RESULTS_CAP",
    "BARRAGE_MAX_RETAINED_RUNS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestBarrageConfig:
    """Tests for the BarrageConfig dataclass."""

    def test_defaults(self):
        """Timing defaults match the documented lifecycle constants."""
        config = BarrageConfig()
        assert config.data_dir == Path("data")
        assert config.engine_command == ("artillery",)
        assert config.port == 4000
        assert config.broadcast_interval == 0.5
        assert config.final_broadcast_delay == 1.0
        assert config.progress_stall_seconds == 3.0
        assert config.completion_grace_seconds == 5.0
        assert config.results_cap == 50

    def test_frozen(self):
        """BarrageConfig is immutable."""
        config = BarrageConfig()
        with pytest.raises(AttributeError):
            config.port = 1  # type: ignore[misc]


class TestLoadConfig:
    """Tests for the load_config function."""

    def test_defaults_from_env(self):
        assert load_config() == BarrageConfig()

    def test_paths_from_env(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
        monkeypatch.setenv("BARRAGE_DATA_DIR", str(tmp_path / "d"))
        monkeypatch.setenv("BARRAGE_TEMP_DIR", str(tmp_path / "t"))
        config = load_config()
        assert config.data_dir == tmp_path / "d"
        assert config.temp_dir == tmp_path / "t"

    def test_engine_is_shell_split(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BARRAGE_ENGINE", "npx --yes 'artillery@2'")
        assert load_config().engine_command == ("npx", "--yes", "artillery@2")

    def test_empty_engine_raises_error(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BARRAGE_ENGINE", "   ")
        with pytest.raises(ConfigError, match="BARRAGE_ENGINE must not be empty"):
            load_config()

    def test_port_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BARRAGE_PORT", "8080")
        assert load_config().port == 8080

    def test_invalid_port_raises_error(self, monkeypatch: pytest.MonkeyPatch):
        """Non-integer BARRAGE_PORT raises ConfigError."""
        monkeypatch.setenv("BARRAGE_PORT", "http")
        with pytest.raises(ConfigError, match="must be an integer"):
            load_config()

    def test_out_of_range_port_raises_error(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BARRAGE_PORT", "70000")
        with pytest.raises(ConfigError, match="between 1 and 65535"):
            load_config()

    def test_zero_results_cap_raises_error(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BARRAGE_RESULTS_CAP", "0")
        with pytest.raises(ConfigError, match="must be >= 1"):
            load_config()

    def test_float_timings_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BARRAGE_BROADCAST_INTERVAL", "0.25")
        monkeypatch.setenv("BARRAGE_GRACE_SECONDS", "0")
        config = load_config()
        assert config.broadcast_interval == 0.25
        assert config.completion_grace_seconds == 0.0

    def test_zero_interval_raises_error(self, monkeypatch: pytest.MonkeyPatch):
        """A zero broadcast interval would spin; it must be positive."""
        monkeypatch.setenv("BARRAGE_BROADCAST_INTERVAL", "0")
        with pytest.raises(ConfigError, match="must be positive"):
            load_config()

    def test_negative_grace_raises_error(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BARRAGE_GRACE_SECONDS", "-1")
        with pytest.raises(ConfigError, match="must be non-negative"):
            load_config()

    def test_non_numeric_stall_raises_error(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BARRAGE_STALL_SECONDS", "soon")
        with pytest.raises(ConfigError, match="must be a number"):
            load_config()
