"""Endpoint and load test definition dataclasses.

These are the user-authored inputs to a run. They are immutable once a run
starts and are (de)serialized with the camelCase keys used by the browser
and the persisted JSON files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from barrage._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from barrage._internal.types import Headers, JsonDict

__all__ = [
    "ApiKeyPlacement",
    "AuthSpec",
    "AuthType",
    "Endpoint",
    "LoadTestDefinition",
    "RunSettings",
]

HTTP_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"})


class AuthType(str, Enum):
    """Authentication scheme attached to an endpoint."""

    NONE = "None"
    BEARER = "Bearer"
    BASIC = "Basic"
    API_KEY = "API Key"


class ApiKeyPlacement(str, Enum):
    """Where an API key is sent."""

    HEADER = "header"
    QUERY = "query"


def _validate_positive(value: float, name: str) -> None:
    """Raise :class:`ConfigError` if *value* is not strictly positive.

    Args:
        value: The numeric value to validate.
        name: Parameter name used in the error message.

    Raises:
        ConfigError: If *value* is not > 0.
    """
    if value <= 0:
        msg = f"{name} must be positive, got {value}"
        raise ConfigError(msg)


def _require(data: Mapping[str, Any], key: str, kind: str) -> Any:
    try:
        return data[key]
    except KeyError:
        msg = f"{kind} is missing required field {key!r}"
        raise ConfigError(msg) from None


def _optional_number(data: Mapping[str, Any], key: str) -> float | None:
    value = data.get(key)
    if value in (None, "", 0):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        msg = f"{key} must be a number, got {value!r}"
        raise ConfigError(msg) from None


@dataclass(frozen=True)
class AuthSpec:
    """Authentication descriptor for an endpoint.

    Attributes:
        type: Which scheme applies.
        token: Bearer token, sent verbatim.
        username: Basic-auth user name.
        password: Basic-auth password.
        key: API key name (header name or query parameter name).
        value: API key value.
        placement: Whether the API key goes into headers or the query string.
    """

    type: AuthType = AuthType.NONE
    token: str | None = None
    username: str | None = None
    password: str | None = None
    key: str | None = None
    value: str | None = None
    placement: ApiKeyPlacement = ApiKeyPlacement.HEADER

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> AuthSpec:
        """Build from the wire form; a missing descriptor means no auth."""
        if not data:
            return cls()
        try:
            auth_type = AuthType(data.get("type", AuthType.NONE.value))
            placement = ApiKeyPlacement(data.get("in") or ApiKeyPlacement.HEADER.value)
        except ValueError as exc:
            msg = f"Invalid auth descriptor: {exc}"
            raise ConfigError(msg) from None
        return cls(
            type=auth_type,
            token=data.get("token"),
            username=data.get("username"),
            password=data.get("password"),
            key=data.get("key"),
            value=data.get("value"),
            placement=placement,
        )

    def to_dict(self) -> JsonDict:
        """Return the wire form, omitting unset fields."""
        out: JsonDict = {"type": self.type.value}
        for name in ("token", "username", "password", "key", "value"):
            attr = getattr(self, name)
            if attr is not None:
                out[name] = attr
        if self.type is AuthType.API_KEY:
            out["in"] = self.placement.value
        return out


@dataclass(frozen=True)
class Endpoint:
    """A user-defined HTTP endpoint.

    Attributes:
        id: Stable identifier referenced by load test definitions.
        name: Display name, reused as the flow step name.
        url: Absolute URL including scheme and host.
        method: Upper-case HTTP method.
        headers: Header mapping sent with every request.
        body: Raw request body text (may be JSON).
        auth: Authentication descriptor.
    """

    id: str
    name: str
    url: str
    method: str = "GET"
    headers: Headers = field(default_factory=dict)
    body: str = ""
    auth: AuthSpec = field(default_factory=AuthSpec)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Endpoint:
        """Build an endpoint from its wire form.

        Raises:
            ConfigError: If a required field is missing or the method is unknown.
        """
        method = str(data.get("method", "GET")).upper()
        if method not in HTTP_METHODS:
            msg = f"Unsupported HTTP method: {method!r}"
            raise ConfigError(msg)
        headers = data.get("headers") or {}
        return cls(
            id=str(_require(data, "id", "Endpoint")),
            name=str(data.get("name", "")),
            url=str(_require(data, "url", "Endpoint")),
            method=method,
            headers={str(k): str(v) for k, v in headers.items()},
            body=str(data.get("body") or ""),
            auth=AuthSpec.from_dict(data.get("auth")),
        )

    def to_dict(self) -> JsonDict:
        """Return the wire form."""
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "body": self.body,
            "auth": self.auth.to_dict(),
        }


@dataclass(frozen=True)
class RunSettings:
    """Load shape requested for a run.

    Attributes:
        duration: Phase duration in seconds.
        arrival_rate: New virtual users per second.
        ramp_to: Optional arrival rate reached at the end of the phase.
        max_vusers: Optional cap on concurrent virtual users.
        max_latency: Optional maximum acceptable latency in milliseconds.
    """

    duration: float
    arrival_rate: float
    ramp_to: float | None = None
    max_vusers: int | None = None
    max_latency: float | None = None

    def __post_init__(self) -> None:
        _validate_positive(self.duration, "duration")
        _validate_positive(self.arrival_rate, "arrival_rate")
        if self.ramp_to is not None:
            _validate_positive(self.ramp_to, "ramp_to")
        if self.max_vusers is not None:
            _validate_positive(self.max_vusers, "max_vusers")
        if self.max_latency is not None:
            _validate_positive(self.max_latency, "max_latency")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RunSettings:
        """Build settings from the wire ``config`` object."""
        try:
            duration = float(_require(data, "duration", "Test config"))
            arrival_rate = float(_require(data, "arrivalRate", "Test config"))
        except (TypeError, ValueError):
            msg = "duration and arrivalRate must be numbers"
            raise ConfigError(msg) from None
        max_vusers = _optional_number(data, "maxVusers")
        return cls(
            duration=duration,
            arrival_rate=arrival_rate,
            ramp_to=_optional_number(data, "rampTo"),
            max_vusers=int(max_vusers) if max_vusers is not None else None,
            max_latency=_optional_number(data, "maxLatency"),
        )

    def to_dict(self) -> JsonDict:
        """Return the wire ``config`` object, omitting unset options."""
        out: JsonDict = {"duration": self.duration, "arrivalRate": self.arrival_rate}
        if self.ramp_to is not None:
            out["rampTo"] = self.ramp_to
        if self.max_vusers is not None:
            out["maxVusers"] = self.max_vusers
        if self.max_latency is not None:
            out["maxLatency"] = self.max_latency
        return out


@dataclass(frozen=True)
class LoadTestDefinition:
    """A named bundle of endpoints plus the load shape to drive them with.

    Attributes:
        id: Stable identifier.
        name: Display name.
        endpoint_ids: Selected endpoint identifiers (order irrelevant).
        settings: Load shape for the run.
    """

    id: str
    name: str
    endpoint_ids: frozenset[str]
    settings: RunSettings

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LoadTestDefinition:
        """Build a definition from its wire form."""
        return cls(
            id=str(_require(data, "id", "Load test")),
            name=str(data.get("name", "")),
            endpoint_ids=frozenset(str(e) for e in data.get("endpoints") or ()),
            settings=RunSettings.from_dict(_require(data, "config", "Load test")),
        )

    def to_dict(self) -> JsonDict:
        """Return the wire form; endpoint ids are sorted for stable output."""
        return {
            "id": self.id,
            "name": self.name,
            "endpoints": sorted(self.endpoint_ids),
            "config": self.settings.to_dict(),
        }

    def without_endpoint(self, endpoint_id: str) -> LoadTestDefinition:
        """Return a copy that no longer references *endpoint_id*."""
        return LoadTestDefinition(
            id=self.id,
            name=self.name,
            endpoint_ids=self.endpoint_ids - {endpoint_id},
            settings=self.settings,
        )
