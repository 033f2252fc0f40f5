"""Compile a load test definition into an engine run configuration.

The output mirrors the engine's JSON script format: one target, one phase,
and a single scenario whose flow has one step per selected endpoint. Steps
are keyed by the lower-case HTTP method::

    {"get": {"url": "/items?page=1", "name": "List Items", "headers": {...}}}
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from barrage._internal.errors import ConfigError
from barrage._internal.logging import get_logger
from barrage.catalog.models import ApiKeyPlacement, AuthType

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from barrage._internal.types import Headers, JsonDict, QueryParams
    from barrage.catalog.models import Endpoint, LoadTestDefinition

logger = get_logger("compiler.config")

SCENARIO_NAME = "API Load Test"
_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass(frozen=True)
class JsonBody:
    """A request body that parsed as JSON, sent as a structured payload."""

    value: Any


@dataclass(frozen=True)
class RawBody:
    """A request body sent verbatim because it is not valid JSON."""

    text: str


RequestBody = JsonBody | RawBody


def parse_body(text: str) -> RequestBody:
    """Interpret *text* as JSON, falling back to the raw string.

    Never raises: invalid JSON simply yields a :class:`RawBody`.
    """
    try:
        return JsonBody(json.loads(text))
    except ValueError:
        return RawBody(text)


@dataclass(frozen=True)
class Phase:
    """One arrival phase."""

    duration: float
    arrival_rate: float
    ramp_to: float | None = None

    def to_dict(self) -> JsonDict:
        out: JsonDict = {"duration": self.duration, "arrivalRate": self.arrival_rate}
        if self.ramp_to is not None:
            out["rampTo"] = self.ramp_to
        return out


@dataclass(frozen=True)
class FlowStep:
    """One request in the scenario flow.

    Attributes:
        method: Lower-case HTTP method, used as the step key.
        url: Path plus query relative to the run target.
        name: Endpoint display name.
        headers: Request headers, or None when there are none.
        query: Query-string parameters injected by API-key auth, or None.
        body: Request payload for POST/PUT/PATCH, or None.
    """

    method: str
    url: str
    name: str
    headers: Headers | None = None
    query: QueryParams | None = None
    body: RequestBody | None = None

    def to_dict(self) -> JsonDict:
        request: JsonDict = {"url": self.url, "name": self.name}
        if self.headers:
            request["headers"] = dict(self.headers)
        if self.query:
            request["qs"] = dict(self.query)
        if isinstance(self.body, JsonBody):
            request["json"] = self.body.value
        elif isinstance(self.body, RawBody):
            request["body"] = self.body.text
        return {self.method: request}


@dataclass(frozen=True)
class RunConfig:
    """Engine input derived from a definition; never mutated after creation.

    Attributes:
        target: Scheme and host shared by every step.
        phases: Arrival phases (exactly one per definition).
        steps: Flow steps, one per selected endpoint, in catalog order.
        max_vusers: Optional virtual user cap.
        max_latency: Optional latency threshold in milliseconds.
    """

    target: str
    phases: tuple[Phase, ...]
    steps: tuple[FlowStep, ...]
    max_vusers: int | None = None
    max_latency: float | None = None

    def to_dict(self) -> JsonDict:
        """Return the engine's JSON script form."""
        config: JsonDict = {
            "target": self.target,
            "phases": [phase.to_dict() for phase in self.phases],
        }
        if self.max_vusers is not None:
            config["maxVusers"] = self.max_vusers
        if self.max_latency is not None:
            config["ensure"] = {"maxLatency": self.max_latency}
        return {
            "config": config,
            "scenarios": [
                {
                    "name": SCENARIO_NAME,
                    "flow": [step.to_dict() for step in self.steps],
                }
            ],
        }


def _split_url(endpoint: Endpoint) -> tuple[str, str]:
    """Return ``(scheme://host, path?query)`` for an endpoint URL.

    Raises:
        ConfigError: If the URL is not absolute.
    """
    try:
        parts = urlsplit(endpoint.url)
    except ValueError:
        parts = None
    if parts is None or not parts.scheme or not parts.netloc:
        msg = f"Invalid URL format in endpoint: {endpoint.name or endpoint.id}"
        raise ConfigError(msg)
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return f"{parts.scheme}://{parts.netloc}", path


def _apply_auth(endpoint: Endpoint, headers: Headers, query: QueryParams) -> None:
    auth = endpoint.auth
    if auth.type is AuthType.BEARER:
        headers["Authorization"] = f"Bearer {auth.token or ''}"
    elif auth.type is AuthType.BASIC:
        raw = f"{auth.username or ''}:{auth.password or ''}".encode()
        headers["Authorization"] = f"Basic {base64.b64encode(raw).decode('ascii')}"
    elif auth.type is AuthType.API_KEY and auth.key:
        if auth.placement is ApiKeyPlacement.QUERY:
            query[auth.key] = auth.value or ""
        else:
            headers[auth.key] = auth.value or ""


def _build_step(endpoint: Endpoint) -> FlowStep:
    _, path = _split_url(endpoint)
    headers: Headers = dict(endpoint.headers)
    query: QueryParams = {}
    if endpoint.auth.type is not AuthType.NONE:
        _apply_auth(endpoint, headers, query)

    body: RequestBody | None = None
    if endpoint.body and endpoint.method.upper() in _BODY_METHODS:
        body = parse_body(endpoint.body)

    return FlowStep(
        method=endpoint.method.lower(),
        url=path,
        name=endpoint.name,
        headers=headers or None,
        query=query or None,
        body=body,
    )


def compile_run_config(
    definition: LoadTestDefinition,
    catalog: Iterable[Endpoint],
) -> RunConfig:
    """Build the engine configuration for *definition*.

    Endpoints are taken from *catalog* in iteration order, keeping only
    those whose id the definition selects. The result depends only on the
    two inputs.

    Args:
        definition: The load test to run.
        catalog: Every known endpoint.

    Returns:
        The compiled RunConfig.

    Raises:
        ConfigError: If no endpoints are selected, a selected URL is not an
            absolute URL, or the resulting flow is empty.
    """
    selected = [ep for ep in catalog if ep.id in definition.endpoint_ids]
    if not selected:
        msg = "No endpoints selected for the test"
        raise ConfigError(msg)

    target, _ = _split_url(selected[0])
    steps = tuple(_build_step(endpoint) for endpoint in selected)
    if not steps:
        msg = "No valid steps in the test flow"
        raise ConfigError(msg)

    settings = definition.settings
    config = RunConfig(
        target=target,
        phases=(Phase(settings.duration, settings.arrival_rate, settings.ramp_to),),
        steps=steps,
        max_vusers=settings.max_vusers,
        max_latency=settings.max_latency,
    )
    logger.debug("Compiled test %s: target=%s, steps=%d", definition.id, target, len(steps))
    return config


def write_run_config(config: RunConfig, path: Path) -> Path:
    """Serialize *config* as pretty-printed JSON at *path*.

    Args:
        config: The compiled configuration.
        path: Destination file; parent directories are created.

    Returns:
        The path written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
    logger.debug("Config file written: %s", path)
    return path
