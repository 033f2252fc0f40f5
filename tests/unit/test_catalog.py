"""Tests for endpoint and load test definition models."""

from __future__ import annotations

import pytest

from barrage._internal.errors import ConfigError
from barrage.catalog.models import (
    ApiKeyPlacement,
    AuthSpec,
    AuthType,
    Endpoint,
    LoadTestDefinition,
    RunSettings,
)


class TestAuthSpec:
    def test_missing_descriptor_means_none(self):
        assert AuthSpec.from_dict(None).type is AuthType.NONE
        assert AuthSpec.from_dict({}).type is AuthType.NONE

    def test_api_key_placement_read_from_in(self):
        auth = AuthSpec.from_dict({"type": "API Key", "key": "X-Key", "value": "v", "in": "query"})
        assert auth.type is AuthType.API_KEY
        assert auth.placement is ApiKeyPlacement.QUERY

    def test_unknown_type_raises(self):
        with pytest.raises(ConfigError, match="Invalid auth descriptor"):
            AuthSpec.from_dict({"type": "OAuth"})

    def test_to_dict_writes_in_only_for_api_key(self):
        bearer = AuthSpec(type=AuthType.BEARER, token="t").to_dict()
        api_key = AuthSpec(type=AuthType.API_KEY, key="k", value="v").to_dict()
        assert bearer == {"type": "Bearer", "token": "t"}
        assert api_key == {"type": "API Key", "key": "k", "value": "v", "in": "header"}


class TestEndpoint:
    def test_from_dict_normalizes_method(self):
        endpoint = Endpoint.from_dict(
            {"id": "e1", "name": "Ping", "url": "http://h/ping", "method": "post"}
        )
        assert endpoint.method == "POST"
        assert endpoint.headers == {}
        assert endpoint.auth == AuthSpec()

    def test_unknown_method_raises(self):
        with pytest.raises(ConfigError, match="Unsupported HTTP method"):
            Endpoint.from_dict({"id": "e1", "url": "http://h", "method": "FETCH"})

    def test_missing_url_raises(self):
        with pytest.raises(ConfigError, match="'url'"):
            Endpoint.from_dict({"id": "e1"})

    def test_round_trip(self, post_endpoint: Endpoint):
        assert Endpoint.from_dict(post_endpoint.to_dict()) == post_endpoint


class TestRunSettings:
    def test_rejects_non_positive_duration(self):
        with pytest.raises(ConfigError, match="duration must be positive"):
            RunSettings(duration=0, arrival_rate=1)

    def test_rejects_non_positive_arrival_rate(self):
        with pytest.raises(ConfigError, match="arrival_rate must be positive"):
            RunSettings(duration=10, arrival_rate=-2)

    def test_zero_optionals_are_unset(self):
        """The browser sends 0 for options the user left empty."""
        settings = RunSettings.from_dict(
            {"duration": 30, "arrivalRate": 5, "rampTo": 0, "maxVusers": "", "maxLatency": None}
        )
        assert settings.ramp_to is None
        assert settings.max_vusers is None
        assert settings.max_latency is None
        assert settings.to_dict() == {"duration": 30.0, "arrivalRate": 5.0}

    def test_optionals_are_kept(self):
        settings = RunSettings.from_dict(
            {"duration": 30, "arrivalRate": 5, "rampTo": 20, "maxVusers": 50, "maxLatency": 800}
        )
        assert settings.ramp_to == 20
        assert settings.max_vusers == 50
        assert settings.max_latency == 800

    def test_non_numeric_duration_raises(self):
        with pytest.raises(ConfigError, match="must be numbers"):
            RunSettings.from_dict({"duration": "long", "arrivalRate": 1})


class TestLoadTestDefinition:
    def test_from_dict(self):
        definition = LoadTestDefinition.from_dict(
            {
                "id": "t1",
                "name": "Checkout",
                "endpoints": ["b", "a"],
                "config": {"duration": 60, "arrivalRate": 2},
            }
        )
        assert definition.endpoint_ids == frozenset({"a", "b"})
        assert definition.to_dict()["endpoints"] == ["a", "b"]

    def test_missing_config_raises(self):
        with pytest.raises(ConfigError, match="'config'"):
            LoadTestDefinition.from_dict({"id": "t1", "endpoints": []})

    def test_without_endpoint(self, definition: LoadTestDefinition):
        stripped = definition.without_endpoint("ep-get")
        assert stripped.endpoint_ids == frozenset()
        assert definition.endpoint_ids == frozenset({"ep-get"})
