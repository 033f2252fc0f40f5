"""Tests for compiling load test definitions into engine configurations."""

from __future__ import annotations

import base64
import json
from typing import TYPE_CHECKING

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
from barrage.compiler.config import (
    SCENARIO_NAME,
    JsonBody,
    RawBody,
    compile_run_config,
    parse_body,
    write_run_config,
)

if TYPE_CHECKING:
    from pathlib import Path


def _definition(*endpoint_ids: str, **settings: float) -> LoadTestDefinition:
    return LoadTestDefinition(
        id="t1",
        name="Test",
        endpoint_ids=frozenset(endpoint_ids),
        settings=RunSettings(**{"duration": 60, "arrival_rate": 2, **settings}),
    )


def _only_request(config_dict: dict, method: str) -> dict:
    flow = config_dict["scenarios"][0]["flow"]
    assert len(flow) == 1
    return flow[0][method]


class TestParseBody:
    def test_json(self):
        assert parse_body('{"a": [1, 2]}') == JsonBody({"a": [1, 2]})

    def test_invalid_json_falls_back_to_raw(self):
        assert parse_body("name=ada&x=1") == RawBody("name=ada&x=1")


class TestCompileRunConfig:
    def test_single_get_endpoint(self, definition: LoadTestDefinition, get_endpoint: Endpoint):
        """One GET endpoint without auth or body compiles to one bare step."""
        out = compile_run_config(definition, [get_endpoint]).to_dict()

        assert out["config"] == {
            "target": "https://api.example.com",
            "phases": [{"duration": 60, "arrivalRate": 2}],
        }
        assert out["scenarios"][0]["name"] == SCENARIO_NAME
        request = _only_request(out, "get")
        assert request == {"url": "/users?page=1", "name": "List users"}

    def test_filters_to_selected_endpoints_in_catalog_order(
        self, get_endpoint: Endpoint, post_endpoint: Endpoint
    ):
        other = Endpoint(id="ep-x", name="Unused", url="https://other.example.com/")
        definition = _definition("ep-post", "ep-get")
        flow = compile_run_config(definition, [post_endpoint, other, get_endpoint]).to_dict()[
            "scenarios"
        ][0]["flow"]
        assert [next(iter(step)) for step in flow] == ["post", "get"]

    def test_target_comes_from_first_selected_endpoint(self, get_endpoint: Endpoint):
        first = Endpoint(id="a", name="A", url="http://first.local:8080/x")
        config = compile_run_config(_definition("a", "ep-get"), [first, get_endpoint])
        assert config.target == "http://first.local:8080"

    def test_bearer_auth_and_json_body(self, post_endpoint: Endpoint):
        request = _only_request(
            compile_run_config(_definition("ep-post"), [post_endpoint]).to_dict(), "post"
        )
        assert request["headers"] == {
            "Content-Type": "application/json",
            "Authorization": "Bearer secret-token",
        }
        assert request["json"] == {"name": "ada"}
        assert "body" not in request

    def test_basic_auth_is_base64_encoded(self):
        endpoint = Endpoint(
            id="e",
            name="E",
            url="https://h/",
            auth=AuthSpec(type=AuthType.BASIC, username="user", password="pass"),
        )
        request = _only_request(compile_run_config(_definition("e"), [endpoint]).to_dict(), "get")
        expected = base64.b64encode(b"user:pass").decode()
        assert request["headers"]["Authorization"] == f"Basic {expected}"

    def test_api_key_in_query(self):
        """A query-placed API key goes into qs and adds no Authorization header."""
        endpoint = Endpoint(
            id="e",
            name="E",
            url="https://h/items",
            auth=AuthSpec(
                type=AuthType.API_KEY, key="api_key", value="k-123", placement=ApiKeyPlacement.QUERY
            ),
        )
        request = _only_request(compile_run_config(_definition("e"), [endpoint]).to_dict(), "get")
        assert request["qs"] == {"api_key": "k-123"}
        assert "headers" not in request

    def test_api_key_in_header(self):
        endpoint = Endpoint(
            id="e",
            name="E",
            url="https://h/items",
            auth=AuthSpec(type=AuthType.API_KEY, key="X-Api-Key", value="k-123"),
        )
        request = _only_request(compile_run_config(_definition("e"), [endpoint]).to_dict(), "get")
        assert request["headers"] == {"X-Api-Key": "k-123"}
        assert "qs" not in request

    def test_raw_body_fallback(self):
        endpoint = Endpoint(id="e", name="E", url="https://h/form", method="PUT", body="a=1&b=2")
        request = _only_request(compile_run_config(_definition("e"), [endpoint]).to_dict(), "put")
        assert request["body"] == "a=1&b=2"
        assert "json" not in request

    def test_body_ignored_for_get(self):
        endpoint = Endpoint(id="e", name="E", url="https://h/", body='{"a": 1}')
        request = _only_request(compile_run_config(_definition("e"), [endpoint]).to_dict(), "get")
        assert "json" not in request
        assert "body" not in request

    def test_run_options(self, get_endpoint: Endpoint):
        definition = _definition("ep-get", ramp_to=10, max_vusers=25, max_latency=500)
        config = compile_run_config(definition, [get_endpoint]).to_dict()["config"]
        assert config["phases"] == [{"duration": 60, "arrivalRate": 2, "rampTo": 10}]
        assert config["maxVusers"] == 25
        assert config["ensure"] == {"maxLatency": 500}

    def test_no_selected_endpoints_raises(self, get_endpoint: Endpoint):
        with pytest.raises(ConfigError, match="No endpoints selected"):
            compile_run_config(_definition("missing"), [get_endpoint])

    @pytest.mark.parametrize("url", ["not a url", "/relative/path", "api.example.com/x"])
    def test_unparseable_url_raises(self, url: str):
        endpoint = Endpoint(id="e", name="Broken", url=url)
        with pytest.raises(ConfigError, match="Invalid URL format in endpoint: Broken"):
            compile_run_config(_definition("e"), [endpoint])

    def test_deterministic(self, get_endpoint: Endpoint, post_endpoint: Endpoint):
        definition = _definition("ep-get", "ep-post")
        catalog = [get_endpoint, post_endpoint]
        assert compile_run_config(definition, catalog) == compile_run_config(definition, catalog)


class TestWriteRunConfig:
    def test_writes_json_creating_parents(
        self, tmp_path: Path, definition: LoadTestDefinition, get_endpoint: Endpoint
    ):
        config = compile_run_config(definition, [get_endpoint])
        path = write_run_config(config, tmp_path / "nested" / "cfg.json")
        assert json.loads(path.read_text()) == config.to_dict()
