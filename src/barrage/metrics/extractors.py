"""Tolerant metric extractors for engine text output.

Each metric family has an ordered tuple of extractors, from the strictest
``key: value`` form to last-resort heuristics. Every extractor is a pure
function of the accumulated log. When a pattern occurs several times the
last occurrence wins, since later engine reports supersede earlier ones.

Typical engine output::

    http.codes.200: ................................................ 118
    http.request_rate: ............................................. 2/sec
    http.requests: ................................................. 120
    http.response_time:
      min: ......................................................... 45
      median: ...................................................... 89.1
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

T = TypeVar("T")

_NUMBER = r"(\d+(?:\.\d+)?)"
_LATENCY_KEYS = ("min", "max", "median", "p95", "p99")


@dataclass(frozen=True)
class Extractor(Generic[T]):
    """A named extraction strategy.

    Attributes:
        name: Short label used in debug logs.
        func: Pure function returning the extracted value or None.
        fallback: Only consult this extractor while the stored value is
            still unset (zero or empty).
    """

    name: str
    func: Callable[[str], T | None]
    fallback: bool = False

    def __call__(self, log: str) -> T | None:
        return self.func(log)


def first_match(
    extractors: Sequence[Extractor[T]],
    log: str,
    *,
    include_fallbacks: bool = True,
) -> tuple[str, T] | None:
    """Run *extractors* in order and return the first non-empty result.

    Args:
        extractors: Ordered strategies for one metric family.
        log: Full accumulated output.
        include_fallbacks: Whether fallback extractors may run.

    Returns:
        ``(extractor_name, value)`` or None if nothing matched.
    """
    for extractor in extractors:
        if extractor.fallback and not include_fallbacks:
            continue
        value = extractor(log)
        if value is not None and value != {}:
            return extractor.name, value
    return None


# ---------------------------------------------------------------------------
# Pattern builders
# ---------------------------------------------------------------------------


def _label(label: str) -> str:
    """Regex for *label* not embedded in a longer dotted key."""
    return rf"(?<![\w.]){re.escape(label)}(?![\w.])"


def _exact(label: str) -> re.Pattern[str]:
    return re.compile(rf"{_label(label)}[ \t]*[:=][ \t]*{_NUMBER}", re.IGNORECASE)


def _loose(label: str) -> re.Pattern[str]:
    # "label: ........ 120" and "label 120" on a single line.
    return re.compile(rf"{_label(label)}[ \t:=.]*?{_NUMBER}", re.IGNORECASE)


def _last(patterns: Sequence[re.Pattern[str]], log: str) -> str | None:
    """Return group 1 of the last match of the first pattern that matches."""
    for pattern in patterns:
        last = None
        for match in pattern.finditer(log):
            last = match
        if last is not None:
            return last.group(1)
    return None


def _int_of(patterns: Sequence[re.Pattern[str]]) -> Callable[[str], int | None]:
    def extract(log: str) -> int | None:
        raw = _last(patterns, log)
        return int(float(raw)) if raw is not None else None

    return extract


def _float_of(patterns: Sequence[re.Pattern[str]]) -> Callable[[str], float | None]:
    def extract(log: str) -> float | None:
        raw = _last(patterns, log)
        return float(raw) if raw is not None else None

    return extract


def _mentioning(
    words: Sequence[str],
    excluded: Sequence[str] = (),
) -> Callable[[str], int | None]:
    """Last resort: first integer on the last line mentioning one of *words*."""

    def extract(log: str) -> int | None:
        found = None
        for line in log.splitlines():
            lowered = line.lower()
            if not any(word in lowered for word in words):
                continue
            if any(word in lowered for word in excluded):
                continue
            match = re.search(r"\d+", line)
            if match is not None and int(match.group()) > 0:
                found = int(match.group())
        return found

    return extract


def _keyed_counts(pattern: re.Pattern[str]) -> Callable[[str], dict[str, int] | None]:
    """Collect ``key -> count`` pairs, the last occurrence of each key winning."""

    def extract(log: str) -> dict[str, int] | None:
        counts = {match.group(1): int(match.group(2)) for match in pattern.finditer(log)}
        return counts or None

    return extract


# ---------------------------------------------------------------------------
# Scalar counters
# ---------------------------------------------------------------------------

REQUESTS_COMPLETED: tuple[Extractor[int], ...] = (
    Extractor(
        "requests:exact",
        _int_of(
            [
                _exact("http.requests"),
                _exact("requestsCompleted"),
                _exact("completed requests"),
                _exact("requests"),
            ]
        ),
    ),
    Extractor("requests:loose", _int_of([_loose("http.requests")])),
    Extractor(
        "requests:mention",
        _mentioning(["request"], excluded=["scenario", "rate", "timeout"]),
        fallback=True,
    ),
)

SCENARIOS_CREATED: tuple[Extractor[int], ...] = (
    Extractor(
        "created:exact",
        _int_of(
            [
                _exact("vusers.created"),
                _exact("scenarios.created"),
                _exact("scenariosCreated"),
            ]
        ),
    ),
    Extractor(
        "created:loose",
        _int_of([_loose("vusers.created"), _loose("scenarios.created")]),
    ),
)

SCENARIOS_COMPLETED: tuple[Extractor[int], ...] = (
    Extractor(
        "completed:exact",
        _int_of(
            [
                _exact("vusers.completed"),
                _exact("scenarios.completed"),
                _exact("scenariosCompleted"),
            ]
        ),
    ),
    Extractor(
        "completed:loose",
        _int_of([_loose("vusers.completed"), _loose("scenarios.completed")]),
    ),
)

REQUESTS_TIMED_OUT: tuple[Extractor[int], ...] = (
    Extractor(
        "timeouts:exact",
        _int_of([_exact("errors.ETIMEDOUT"), _exact("requestsTimedOut")]),
    ),
    Extractor("timeouts:loose", _int_of([_loose("errors.ETIMEDOUT")])),
)

SCENARIOS_AVOIDED: tuple[Extractor[int], ...] = (
    Extractor(
        "skipped:exact",
        _int_of([_exact("vusers.skipped"), _exact("scenariosAvoided")]),
    ),
    Extractor("skipped:loose", _int_of([_loose("vusers.skipped")])),
)

RPS_MEAN: tuple[Extractor[float], ...] = (
    Extractor(
        "rps:exact",
        _float_of(
            [
                _exact("http.request_rate"),
                _exact("request_rate"),
                _exact("rps"),
                _exact("requests per second"),
            ]
        ),
    ),
    Extractor("rps:loose", _float_of([_loose("http.request_rate"), _loose("rps")])),
    Extractor(
        "rps:mention",
        _mentioning(["request rate", "requests per second"]),
        fallback=True,
    ),
)


# ---------------------------------------------------------------------------
# Latency
# ---------------------------------------------------------------------------

_LATENCY_INLINE = (
    re.compile(
        r"latency:\s*\{\s*min:\s*" + _NUMBER + r",\s*max:\s*" + _NUMBER
        + r",\s*median:\s*" + _NUMBER + r",\s*p95:\s*" + _NUMBER
        + r",\s*p99:\s*" + _NUMBER,
        re.IGNORECASE,
    ),
    re.compile(
        r"min:\s*" + _NUMBER + r"\s+max:\s*" + _NUMBER + r"\s+median:\s*" + _NUMBER
        + r"\s+p95:\s*" + _NUMBER + r"\s+p99:\s*" + _NUMBER,
        re.IGNORECASE,
    ),
)

_RESPONSE_TIME_HEADER = re.compile(r"^[ \t]*http\.response_time:[ \t]*$", re.MULTILINE)
_INDENTED_FIELD = re.compile(r"^[ \t]+(\w+):[ \t.]*" + _NUMBER + r"\s*$")

_LATENCY_FIELD_PATTERNS = {
    "min": (_exact("min"), _exact("minimum")),
    "max": (_exact("max"), _exact("maximum")),
    "median": (_exact("median"), _exact("med")),
    "p95": (_exact("p95"), _exact("95th")),
    "p99": (_exact("p99"), _exact("99th")),
}


def _latency_inline(log: str) -> dict[str, float] | None:
    for pattern in _LATENCY_INLINE:
        last = None
        for match in pattern.finditer(log):
            last = match
        if last is not None:
            return {key: float(last.group(i + 1)) for i, key in enumerate(_LATENCY_KEYS)}
    return None


def _latency_block(log: str) -> dict[str, float] | None:
    """Read the indented fields under the last ``http.response_time:`` header."""
    headers = list(_RESPONSE_TIME_HEADER.finditer(log))
    if not headers:
        return None
    values: dict[str, float] = {}
    for line in log[headers[-1].end():].splitlines()[1:]:
        match = _INDENTED_FIELD.match(line)
        if match is None:
            break
        key = match.group(1).lower()
        if key in _LATENCY_KEYS:
            values[key] = float(match.group(2))
    return values or None


def _latency_fields(log: str) -> dict[str, float] | None:
    values: dict[str, float] = {}
    for key, patterns in _LATENCY_FIELD_PATTERNS.items():
        raw = _last(patterns, log)
        if raw is not None:
            values[key] = float(raw)
    return values or None


LATENCY: tuple[Extractor[dict[str, float]], ...] = (
    Extractor("latency:inline", _latency_inline),
    Extractor("latency:block", _latency_block),
    Extractor("latency:fields", _latency_fields),
)


# ---------------------------------------------------------------------------
# Histograms
# ---------------------------------------------------------------------------


def _codes_from_lines(log: str) -> dict[str, int] | None:
    counts: dict[str, int] = {}
    for line in log.splitlines():
        lowered = line.lower()
        if "codes" not in lowered or "scenario" in lowered:
            continue
        for code, count in re.findall(r"(?<!\d)(\d{3})\D+(\d+)", line):
            if 100 <= int(code) < 600:
                counts[code] = int(count)
    return counts or None


STATUS_CODES: tuple[Extractor[dict[str, int]], ...] = (
    Extractor(
        "codes:exact",
        _keyed_counts(re.compile(r"http\.codes\.(\d{3})[ \t]*[:=][ \t]*(\d+)")),
    ),
    Extractor(
        "codes:loose",
        _keyed_counts(re.compile(r"codes\.(\d{3})[ \t:=.]*?(\d+)")),
    ),
    Extractor(
        "codes:json",
        _keyed_counts(re.compile(r'"http\.codes\.(\d{3})"\s*:\s*(\d+)')),
    ),
    Extractor("codes:lines", _codes_from_lines),
)

_ERROR_LABEL = r"([A-Za-z_][\w-]*)"

ERRORS: tuple[Extractor[dict[str, int]], ...] = (
    Extractor(
        "errors:exact",
        _keyed_counts(re.compile(rf"(?<![\w.])errors\.{_ERROR_LABEL}[ \t]*[:=][ \t]*(\d+)")),
    ),
    Extractor(
        "errors:loose",
        _keyed_counts(re.compile(rf"(?<![\w.])errors\.{_ERROR_LABEL}[ \t:=.]*?(\d+)")),
    ),
    Extractor(
        "errors:json",
        _keyed_counts(re.compile(rf'"errors\.{_ERROR_LABEL}"\s*:\s*(\d+)')),
    ),
)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

_PROGRESS = re.compile(r"\[(\d{1,3})%\]|(\d{1,3})%\s*complete", re.IGNORECASE)


def extract_progress(chunk: str) -> int | None:
    """Return the last explicit percent-complete marker in *chunk*, capped at 100.

    Recognizes ``[40%]`` and ``40% complete``.
    """
    value = None
    for match in _PROGRESS.finditer(chunk):
        value = int(match.group(1) or match.group(2))
    if value is None:
        return None
    return min(value, 100)
