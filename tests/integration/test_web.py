"""Integration tests for the HTTP API and the live-results WebSocket."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import pytest
from aiohttp.test_utils import TestClient, TestServer

from barrage.web.app import EXPORT_FILENAME, create_app

if TYPE_CHECKING:
    from aiohttp import ClientWebSocketResponse

    from barrage.catalog.models import Endpoint, LoadTestDefinition

SUCCESS_ENGINE = """
emit("http.codes.200: 6")
emit("http.requests: 6")
write_report({"counters": {"http.requests": 6, "http.codes.200": 6}})
"""

HANGING_ENGINE = """
emit("[20%]")
time.sleep(30)
"""


@pytest.fixture
async def make_client(fast_config, fake_engine):
    """Factory starting the app against a fake engine with the given body."""
    async with contextlib.AsyncExitStack() as stack:

        async def _make(
            body: str | None = None,
            engine_command: tuple[str, ...] = ("artillery",),
            **overrides: object,
        ) -> TestClient:
            if body is not None:
                engine_command = fake_engine(body)
            app = create_app(fast_config(engine_command, **overrides))
            return await stack.enter_async_context(TestClient(TestServer(app)))

        yield _make


@pytest.fixture
async def client(make_client) -> TestClient:
    return await make_client()


def _run_body(definition: LoadTestDefinition, *endpoints: Endpoint) -> dict:
    return {"test": definition.to_dict(), "endpoints": [e.to_dict() for e in endpoints]}


async def _start(client: TestClient, definition: LoadTestDefinition, endpoint: Endpoint) -> str:
    resp = await client.post("/api/tests/run", json=_run_body(definition, endpoint))
    return (await resp.json())["resultId"]


async def _wait_for_status(client: TestClient, run_id: str, status: str) -> dict:
    for _ in range(200):
        resp = await client.get(f"/api/tests/result/{run_id}")
        result = await resp.json()
        if result["status"] == status:
            return result
        await asyncio.sleep(0.05)
    pytest.fail(f"run {run_id} never reached {status}")


async def _receive_until(ws: ClientWebSocketResponse, status: str) -> dict:
    while True:
        message = await ws.receive_json(timeout=5)
        if message["event"] == "testUpdate" and message["result"]["status"] == status:
            return message["result"]


class TestEndpointRoutes:
    async def test_crud(self, client: TestClient, get_endpoint: Endpoint):
        resp = await client.post("/api/endpoints", json=get_endpoint.to_dict())
        assert resp.status == 200
        assert await resp.json() == get_endpoint.to_dict()

        resp = await client.get("/api/endpoints")
        assert [e["id"] for e in await resp.json()] == ["ep-get"]

        resp = await client.delete("/api/endpoints/ep-get")
        assert await resp.json() == {"success": True}

        resp = await client.delete("/api/endpoints/ep-get")
        assert resp.status == 404
        assert (await resp.json())["error"] == "Endpoint not found"

    async def test_invalid_json_rejected(self, client: TestClient):
        resp = await client.post("/api/endpoints", data="{oops")
        assert resp.status == 400

    async def test_unsupported_method_rejected(self, client: TestClient):
        resp = await client.post(
            "/api/endpoints", json={"id": "x", "url": "http://h/", "method": "BREW"}
        )
        assert resp.status == 400
        assert "Unsupported HTTP method" in (await resp.json())["error"]

    async def test_delete_removes_endpoint_from_tests(
        self, client: TestClient, get_endpoint: Endpoint, definition: LoadTestDefinition
    ):
        await client.post("/api/endpoints", json=get_endpoint.to_dict())
        await client.post("/api/tests", json=definition.to_dict())

        await client.delete(f"/api/endpoints/{get_endpoint.id}")

        tests = await (await client.get("/api/tests")).json()
        assert tests[0]["endpoints"] == []


class TestTestRoutes:
    async def test_crud(self, client: TestClient, definition: LoadTestDefinition):
        resp = await client.post("/api/tests", json=definition.to_dict())
        assert await resp.json() == definition.to_dict()

        tests = await (await client.get("/api/tests")).json()
        assert [t["id"] for t in tests] == [definition.id]

        resp = await client.delete(f"/api/tests/{definition.id}")
        assert await resp.json() == {"success": True}

        resp = await client.delete(f"/api/tests/{definition.id}")
        assert resp.status == 404
        assert (await resp.json())["error"] == "Test not found"

    async def test_missing_config_rejected(self, client: TestClient):
        resp = await client.post("/api/tests", json={"id": "t", "endpoints": []})
        assert resp.status == 400


class TestRunRoutes:
    async def test_run_to_completion(
        self, make_client, definition: LoadTestDefinition, get_endpoint: Endpoint
    ):
        client = await make_client(SUCCESS_ENGINE)

        resp = await client.post("/api/tests/run", json=_run_body(definition, get_endpoint))
        assert resp.status == 200
        run_id = (await resp.json())["resultId"]

        result = await _wait_for_status(client, run_id, "completed")
        assert result["testId"] == definition.id
        assert result["progress"] == 100
        assert result["summary"]["requestsCompleted"] == 6
        assert result["summary"]["codes"] == {"200": 6}

        results = await (await client.get("/api/tests/results")).json()
        assert [r["id"] for r in results] == [run_id]

    async def test_invalid_run_body(self, client: TestClient, definition: LoadTestDefinition):
        resp = await client.post("/api/tests/run", json={"test": definition.to_dict()})
        assert resp.status == 400
        assert (await resp.json())["error"] == "Invalid request body"

    async def test_no_selected_endpoints(
        self, client: TestClient, definition: LoadTestDefinition
    ):
        resp = await client.post("/api/tests/run", json=_run_body(definition))
        assert resp.status == 400
        assert "No endpoints selected" in (await resp.json())["error"]

    async def test_launch_failure_reports_result_id(
        self, make_client, definition: LoadTestDefinition, get_endpoint: Endpoint
    ):
        client = await make_client(engine_command=("/nonexistent/barrage-engine",))

        resp = await client.post("/api/tests/run", json=_run_body(definition, get_endpoint))
        assert resp.status == 500
        run_id = (await resp.json())["resultId"]

        result = await (await client.get(f"/api/tests/result/{run_id}")).json()
        assert result["status"] == "failed"

    async def test_unknown_result(self, client: TestClient):
        resp = await client.get("/api/tests/result/nope")
        assert resp.status == 404

    async def test_cancel(
        self, make_client, definition: LoadTestDefinition, get_endpoint: Endpoint
    ):
        client = await make_client(HANGING_ENGINE)
        run_id = await _start(client, definition, get_endpoint)

        resp = await client.post(f"/api/tests/cancel/{run_id}")
        assert await resp.json() == {"message": "Test cancelled successfully"}

        resp = await client.post(f"/api/tests/cancel/{run_id}")
        assert resp.status == 404
        assert (await resp.json())["error"] == "Test not found or already completed"

        result = await (await client.get(f"/api/tests/result/{run_id}")).json()
        assert result["status"] == "failed"


class TestExportImport:
    async def test_export(self, client: TestClient, get_endpoint: Endpoint):
        await client.post("/api/endpoints", json=get_endpoint.to_dict())

        resp = await client.get("/api/export")

        assert EXPORT_FILENAME in resp.headers["Content-Disposition"]
        assert await resp.json() == {
            "endpoints": [get_endpoint.to_dict()],
            "tests": [],
            "results": [],
        }

    async def test_import(self, client: TestClient, get_endpoint: Endpoint):
        resp = await client.post("/api/import", json={"endpoints": [get_endpoint.to_dict()]})

        assert await resp.json() == {
            "message": "Data imported successfully",
            "imported": {"endpoints": 1},
        }
        endpoints = await (await client.get("/api/endpoints")).json()
        assert endpoints == [get_endpoint.to_dict()]

    async def test_import_rejects_malformed(self, client: TestClient):
        resp = await client.post("/api/import", json={"tests": "nope"})
        assert resp.status == 400
        resp = await client.post("/api/import", json=[1, 2])
        assert resp.status == 400


class TestWebSocket:
    async def test_subscriber_receives_updates_and_final_result(
        self, make_client, definition: LoadTestDefinition, get_endpoint: Endpoint
    ):
        client = await make_client(HANGING_ENGINE)
        run_id = await _start(client, definition, get_endpoint)

        async with client.ws_connect("/ws") as ws:
            await ws.send_json({"action": "subscribe", "resultId": run_id})
            first = await ws.receive_json(timeout=5)
            assert first["event"] == "testUpdate"
            assert first["result"]["id"] == run_id

            running = await _receive_until(ws, "running")
            assert running["id"] == run_id

            await client.post(f"/api/tests/cancel/{run_id}")
            final = await _receive_until(ws, "failed")
            assert "cancelled" in final["rawOutput"]

    async def test_malformed_message_gets_error_event(self, client: TestClient):
        async with client.ws_connect("/ws") as ws:
            await ws.send_str("not json")
            assert (await ws.receive_json(timeout=5))["event"] == "error"
            await ws.send_json({"action": "dance", "resultId": "x"})
            assert (await ws.receive_json(timeout=5))["event"] == "error"
