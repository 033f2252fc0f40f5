"""Shared type aliases for barrage."""

from __future__ import annotations

from typing import Any

# HTTP headers dictionary.
Headers = dict[str, str]

# Query-string parameters injected into a flow step.
QueryParams = dict[str, str]

# Decoded JSON object as exchanged with the engine, the browser and disk.
JsonDict = dict[str, Any]
