"""Flat-file persistence of endpoints, load tests and results.

Each kind is one pretty-printed JSON list under the data directory:
``endpoints.json``, ``tests.json`` and ``results.json``. Read failures fall
back to an empty list and write failures return False; both are logged.
Writes go through a temporary file and ``os.replace`` so a crash never
leaves a half-written list behind.
"""

from __future__ import annotations

import json
import os
import threading
from typing import TYPE_CHECKING, Any, Literal

from barrage._internal.errors import BarrageError, StorageError
from barrage._internal.logging import get_logger
from barrage.catalog.models import Endpoint, LoadTestDefinition
from barrage.metrics.models import TestResult

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from barrage._internal.types import JsonDict

logger = get_logger("storage.repository")

Kind = Literal["endpoints", "tests", "results"]
KINDS: tuple[Kind, ...] = ("endpoints", "tests", "results")

DEFAULT_RESULTS_CAP = 50


class JsonRepository:
    """JSON-file backed lists, one file per kind.

    Args:
        data_dir: Directory holding the files; created on first write.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir
        self._lock = threading.Lock()

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def path_for(self, kind: Kind) -> Path:
        return self._data_dir / f"{kind}.json"

    # ------------------------------------------------------------------
    # Raw lists
    # ------------------------------------------------------------------

    def load(self, kind: Kind) -> list[JsonDict]:
        """Return the stored list for *kind*, or ``[]`` if absent or unreadable."""
        path = self.path_for(kind)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Error reading from %s: %s", path, exc)
            return []
        if not isinstance(data, list):
            logger.error("Ignoring %s: expected a JSON list", path)
            return []
        return [item for item in data if isinstance(item, dict)]

    def save(self, kind: Kind, items: list[JsonDict]) -> bool:
        """Replace the stored list for *kind*.

        Returns:
            True on success, False if the file could not be written.
        """
        path = self.path_for(kind)
        tmp = path.with_suffix(".json.tmp")
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(items, indent=2), encoding="utf-8")
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Error writing to %s: %s", path, exc)
            return False
        return True

    def append_bounded(self, result: TestResult, cap: int = DEFAULT_RESULTS_CAP) -> bool:
        """Prepend *result* to the results list, keeping the newest *cap* entries.

        An older entry with the same id is replaced rather than duplicated.
        """
        with self._lock:
            results = [r for r in self.load("results") if r.get("id") != result.id]
            results.insert(0, result.to_dict())
            saved = self.save("results", results[:cap])
        if saved:
            logger.debug("Persisted result %s (%s)", result.id, result.status.value)
        return saved

    # ------------------------------------------------------------------
    # Typed access
    # ------------------------------------------------------------------

    def load_results(self) -> list[TestResult]:
        return [r for r in (self._parse(TestResult, item) for item in self.load("results")) if r]

    def load_endpoints(self) -> list[Endpoint]:
        return [e for e in (self._parse(Endpoint, item) for item in self.load("endpoints")) if e]

    def load_tests(self) -> list[LoadTestDefinition]:
        tests = (self._parse(LoadTestDefinition, item) for item in self.load("tests"))
        return [t for t in tests if t]

    def get_test(self, test_id: str) -> LoadTestDefinition | None:
        for test in self.load_tests():
            if test.id == test_id:
                return test
        return None

    def upsert_endpoint(self, endpoint: Endpoint) -> bool:
        """Insert *endpoint* or replace the stored one with the same id."""
        with self._lock:
            return self.save("endpoints", _upsert(self.load("endpoints"), endpoint.to_dict()))

    def delete_endpoint(self, endpoint_id: str) -> bool:
        """Delete an endpoint and remove it from every stored load test.

        Returns:
            False if no endpoint with that id exists.
        """
        with self._lock:
            endpoints = self.load("endpoints")
            remaining = [e for e in endpoints if e.get("id") != endpoint_id]
            if len(remaining) == len(endpoints):
                return False
            self.save("endpoints", remaining)
            tests = self.load("tests")
            for test in tests:
                test["endpoints"] = [e for e in test.get("endpoints") or [] if e != endpoint_id]
            self.save("tests", tests)
        logger.info("Deleted endpoint %s", endpoint_id)
        return True

    def upsert_test(self, definition: LoadTestDefinition) -> bool:
        """Insert *definition* or replace the stored one with the same id."""
        with self._lock:
            return self.save("tests", _upsert(self.load("tests"), definition.to_dict()))

    def delete_test(self, test_id: str) -> bool:
        """Delete a load test. Returns False if no test with that id exists."""
        with self._lock:
            tests = self.load("tests")
            remaining = [t for t in tests if t.get("id") != test_id]
            if len(remaining) == len(tests):
                return False
            self.save("tests", remaining)
        return True

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def dump_all(self) -> JsonDict:
        return {kind: self.load(kind) for kind in KINDS}

    def export_all(self, path: Path) -> bool:
        """Write every list into a single JSON document at *path*."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(self.dump_all(), indent=2), encoding="utf-8")
        except OSError as exc:
            logger.error("Error exporting data to %s: %s", path, exc)
            return False
        logger.info("Exported data to %s", path)
        return True

    def import_data(self, payload: Mapping[str, Any]) -> dict[str, int]:
        """Replace the stored lists present in *payload*.

        Kinds missing from *payload* are left untouched.

        Args:
            payload: Document shaped like :meth:`dump_all` output.

        Returns:
            Number of items imported per kind.

        Raises:
            StorageError: If the payload is malformed or a list cannot be saved.
        """
        if not isinstance(payload, dict):
            msg = "Import payload must be a JSON object"
            raise StorageError(msg)
        lists: dict[Kind, list[JsonDict]] = {}
        for kind in KINDS:
            items = payload.get(kind)
            if items is None:
                continue
            if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
                msg = f"'{kind}' must be a list of objects"
                raise StorageError(msg)
            lists[kind] = items

        counts: dict[str, int] = {}
        with self._lock:
            for kind, items in lists.items():
                if not self.save(kind, items):
                    msg = f"Could not save imported {kind}"
                    raise StorageError(msg)
                counts[kind] = len(items)
        logger.info("Imported data: %s", counts)
        return counts

    @staticmethod
    def _parse(model: Any, item: JsonDict) -> Any:
        try:
            return model.from_dict(item)
        except (BarrageError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping unreadable %s entry: %s", model.__name__, exc)
            return None


def _upsert(items: list[JsonDict], item: JsonDict) -> list[JsonDict]:
    for index, existing in enumerate(items):
        if existing.get("id") == item["id"]:
            items[index] = item
            return items
    items.append(item)
    return items
