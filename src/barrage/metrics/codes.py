"""Normalization of status-code tokens found in engine output.

Engine output is sometimes truncated or garbled, so a "code" may arrive as
``http.codes.200``, ``20`` or ``299``. Tokens are mapped onto the standard
HTTP code space; anything that cannot be placed is dropped.

Two-digit values and non-standard three-digit codes are collapsed onto one
representative per class, so every unknown 4xx becomes 400.
"""

from __future__ import annotations

import re
from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

STANDARD_CODES = frozenset(
    {
        100, 101, 102, 103,
        200, 201, 202, 203, 204, 205, 206, 207, 208, 226,
        300, 301, 302, 303, 304, 305, 306, 307, 308,
        400, 401, 402, 403, 404, 405, 406, 407, 408, 409, 410,
        411, 412, 413, 414, 415, 416, 417, 418, 421, 422,
        423, 424, 425, 426, 428, 429, 431, 451,
        500, 501, 502, 503, 504, 505, 506, 507, 508, 510, 511,
    }
)  # fmt: skip

# Representative code per decade for two-digit tokens (10-19 -> 418, ...).
_TWO_DIGIT_DECADES = {1: 418, 2: 200, 3: 304, 4: 404, 5: 500}

# Representative code per class for non-standard three-digit codes.
_CLASS_BUCKETS = {1: 100, 2: 200, 3: 304, 4: 400, 5: 500}

_NON_DIGITS = re.compile(r"\D")


def normalize_code(token: str | int) -> str | None:
    """Map a status-code-like token onto a canonical code string.

    Args:
        token: Raw token, e.g. ``"http.codes.404"``, ``"45"`` or ``299``.

    Returns:
        The canonical three-digit code, or None if the token cannot be
        placed in [100, 600).
    """
    digits = _NON_DIGITS.sub("", str(token))
    if not digits:
        return None
    value = int(digits)

    if 10 <= value < 60:
        value = _TWO_DIGIT_DECADES[value // 10]
    if 100 <= value < 600 and value not in STANDARD_CODES:
        value = _CLASS_BUCKETS[value // 100]
    if not 100 <= value < 600:
        return None
    return str(value)


def normalize_codes(codes: Mapping[str, int]) -> dict[str, int]:
    """Normalize every key of a code histogram, summing collisions.

    Args:
        codes: Raw code token -> count.

    Returns:
        Canonical code -> summed count. Unplaceable tokens are dropped.
    """
    merged: dict[str, int] = defaultdict(int)
    for token, count in codes.items():
        code = normalize_code(token)
        if code is not None:
            merged[code] += int(count)
    return dict(merged)
