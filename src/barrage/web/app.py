"""aiohttp application: JSON API plus a WebSocket channel for live results.

Routes::

    GET    /api/endpoints              list endpoints
    POST   /api/endpoints              create or replace an endpoint
    DELETE /api/endpoints/{id}         delete an endpoint (also from every test)
    GET    /api/tests                  list load tests
    POST   /api/tests                  create or replace a load test
    DELETE /api/tests/{id}             delete a load test
    POST   /api/tests/run              start a run: {"test": ..., "endpoints": [...]}
    GET    /api/tests/result/{id}      one result
    GET    /api/tests/results          all results, newest first
    POST   /api/tests/cancel/{id}      cancel a running run
    GET    /api/export                 every stored list as one document
    POST   /api/import                 replace stored lists from a document
    GET    /ws                         subscribe / unsubscribe to live results
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import TYPE_CHECKING, Any

from aiohttp import WSMsgType, web

from barrage._internal.errors import (
    BarrageError,
    ConfigError,
    LaunchError,
    RunNotFoundError,
    StorageError,
)
from barrage._internal.logging import get_logger
from barrage.broadcast.fanout import Broadcaster, BroadcastLoop
from barrage.catalog.models import Endpoint, LoadTestDefinition
from barrage.engine.lifecycle import RunController
from barrage.engine.store import RunStore
from barrage.storage.repository import JsonRepository

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from barrage._internal.config import BarrageConfig
    from barrage.engine.launcher import EngineLauncher
    from barrage.metrics.models import TestResult

logger = get_logger("web.app")

CONTROLLER_KEY = web.AppKey("controller", RunController)
REPOSITORY_KEY = web.AppKey("repository", JsonRepository)
BROADCASTER_KEY = web.AppKey("broadcaster", Broadcaster)
BROADCAST_LOOP_KEY = web.AppKey("broadcast_loop", BroadcastLoop)

EXPORT_FILENAME = "barrage-data.json"


def _error(status: int, message: str, **extra: Any) -> web.Response:
    return web.json_response({"error": message, **extra}, status=status)


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Translate project errors into JSON error responses."""
    try:
        return await handler(request)
    except (ConfigError, StorageError) as exc:
        return _error(400, str(exc))
    except RunNotFoundError as exc:
        return _error(404, str(exc))
    except LaunchError as exc:
        return _error(500, str(exc), resultId=exc.run_id)
    except BarrageError as exc:
        logger.exception("Unhandled error for %s %s", request.method, request.path)
        return _error(500, str(exc))


async def _json_body(request: web.Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        msg = "Request body must be valid JSON"
        raise ConfigError(msg) from None


def _require_object(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        msg = "Invalid request body"
        raise ConfigError(msg)
    return data


# ---------------------------------------------------------------------------
# Endpoints and tests
# ---------------------------------------------------------------------------


async def list_endpoints(request: web.Request) -> web.Response:
    return web.json_response(request.app[REPOSITORY_KEY].load("endpoints"))


async def save_endpoint(request: web.Request) -> web.Response:
    endpoint = Endpoint.from_dict(_require_object(await _json_body(request)))
    if not request.app[REPOSITORY_KEY].upsert_endpoint(endpoint):
        return _error(500, "Could not save endpoint")
    return web.json_response(endpoint.to_dict())


async def delete_endpoint(request: web.Request) -> web.Response:
    if not request.app[REPOSITORY_KEY].delete_endpoint(request.match_info["id"]):
        return _error(404, "Endpoint not found")
    return web.json_response({"success": True})


async def list_tests(request: web.Request) -> web.Response:
    return web.json_response(request.app[REPOSITORY_KEY].load("tests"))


async def save_test(request: web.Request) -> web.Response:
    definition = LoadTestDefinition.from_dict(_require_object(await _json_body(request)))
    if not request.app[REPOSITORY_KEY].upsert_test(definition):
        return _error(500, "Could not save test")
    return web.json_response(definition.to_dict())


async def delete_test(request: web.Request) -> web.Response:
    if not request.app[REPOSITORY_KEY].delete_test(request.match_info["id"]):
        return _error(404, "Test not found")
    return web.json_response({"success": True})


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


async def run_test(request: web.Request) -> web.Response:
    """Start a run from the posted definition and endpoint list."""
    body = _require_object(await _json_body(request))
    test, endpoints = body.get("test"), body.get("endpoints")
    if not isinstance(test, dict) or not isinstance(endpoints, list):
        return _error(400, "Invalid request body")

    definition = LoadTestDefinition.from_dict(test)
    catalog = [Endpoint.from_dict(_require_object(item)) for item in endpoints]
    run_id = await request.app[CONTROLLER_KEY].compile_and_start(definition, catalog)
    return web.json_response({"resultId": run_id})


async def get_result(request: web.Request) -> web.Response:
    controller = request.app[CONTROLLER_KEY]
    result = await asyncio.to_thread(controller.get_result, request.match_info["id"])
    return web.json_response(result.to_dict())


async def list_results(request: web.Request) -> web.Response:
    results = await asyncio.to_thread(request.app[CONTROLLER_KEY].list_results)
    return web.json_response([r.to_dict() for r in results])


async def cancel_run(request: web.Request) -> web.Response:
    if not request.app[CONTROLLER_KEY].cancel(request.match_info["id"]):
        return _error(404, "Test not found or already completed")
    return web.json_response({"message": "Test cancelled successfully"})


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------


async def export_data(request: web.Request) -> web.Response:
    response = web.json_response(request.app[REPOSITORY_KEY].dump_all())
    response.headers["Content-Disposition"] = f'attachment; filename="{EXPORT_FILENAME}"'
    return response


async def import_data(request: web.Request) -> web.Response:
    counts = request.app[REPOSITORY_KEY].import_data(await _json_body(request))
    return web.json_response({"message": "Data imported successfully", "imported": counts})


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------


class SocketSubscriber:
    """Adapts a WebSocket connection to the broadcaster's subscriber protocol."""

    def __init__(self, ws: web.WebSocketResponse) -> None:
        self._ws = ws

    async def send(self, result: TestResult) -> None:
        if self._ws.closed:
            return
        await self._ws.send_json({"event": "testUpdate", "result": result.to_dict()})


async def _handle_ws_message(
    app: web.Application,
    ws: web.WebSocketResponse,
    subscriber: SocketSubscriber,
    raw: str,
) -> None:
    try:
        message = json.loads(raw)
    except ValueError:
        await ws.send_json({"event": "error", "error": "Message must be valid JSON"})
        return
    action = message.get("action") if isinstance(message, dict) else None
    run_id = message.get("resultId") if isinstance(message, dict) else None
    if action not in ("subscribe", "unsubscribe") or not isinstance(run_id, str):
        await ws.send_json({"event": "error", "error": "Expected {action, resultId}"})
        return

    broadcaster = app[BROADCASTER_KEY]
    if action == "unsubscribe":
        broadcaster.unsubscribe(run_id, subscriber)
        return

    broadcaster.subscribe(run_id, subscriber)
    with contextlib.suppress(RunNotFoundError):
        await subscriber.send(app[CONTROLLER_KEY].get_result(run_id))


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    """Accept subscribe/unsubscribe messages and stream ``testUpdate`` events."""
    ws = web.WebSocketResponse(heartbeat=30.0)
    await ws.prepare(request)
    subscriber = SocketSubscriber(ws)
    broadcaster = request.app[BROADCASTER_KEY]
    logger.debug("WebSocket client connected from %s", request.remote)
    try:
        async for msg in ws:
            if msg.type is WSMsgType.TEXT:
                await _handle_ws_message(request.app, ws, subscriber, msg.data)
            elif msg.type is WSMsgType.ERROR:
                logger.warning("WebSocket closed with error: %s", ws.exception())
    finally:
        broadcaster.unsubscribe_all(subscriber)
        logger.debug("WebSocket client disconnected")
    return ws


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


async def _background(app: web.Application) -> AsyncIterator[None]:
    app[BROADCAST_LOOP_KEY].start()
    yield
    await app[CONTROLLER_KEY].shutdown()
    await app[BROADCAST_LOOP_KEY].stop()


def create_app(
    config: BarrageConfig,
    *,
    launcher: EngineLauncher | None = None,
) -> web.Application:
    """Wire the repository, run controller and broadcaster into an app.

    Args:
        config: Process configuration.
        launcher: Engine launcher override, used by tests.

    Returns:
        The configured application; the broadcast loop starts with it.
    """
    repository = JsonRepository(config.data_dir)
    store = RunStore()
    broadcaster = Broadcaster(send_timeout=config.broadcast_interval)
    broadcast_loop = BroadcastLoop(
        store,
        broadcaster,
        interval=config.broadcast_interval,
        final_delay=config.final_broadcast_delay,
    )
    controller = RunController(
        config,
        store=store,
        repository=repository,
        launcher=launcher,
        on_terminal=broadcast_loop.publish_final,
    )

    app = web.Application(middlewares=[error_middleware])
    app[REPOSITORY_KEY] = repository
    app[BROADCASTER_KEY] = broadcaster
    app[BROADCAST_LOOP_KEY] = broadcast_loop
    app[CONTROLLER_KEY] = controller
    app.cleanup_ctx.append(_background)

    app.router.add_get("/api/endpoints", list_endpoints)
    app.router.add_post("/api/endpoints", save_endpoint)
    app.router.add_delete("/api/endpoints/{id}", delete_endpoint)
    app.router.add_get("/api/tests", list_tests)
    app.router.add_post("/api/tests", save_test)
    app.router.add_delete("/api/tests/{id}", delete_test)
    app.router.add_post("/api/tests/run", run_test)
    app.router.add_get("/api/tests/result/{id}", get_result)
    app.router.add_get("/api/tests/results", list_results)
    app.router.add_post("/api/tests/cancel/{id}", cancel_run)
    app.router.add_get("/api/export", export_data)
    app.router.add_post("/api/import", import_data)
    app.router.add_get("/ws", websocket_handler)
    return app
