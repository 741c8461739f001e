"""Parsing of CLI argument values.

This module translates raw flag values (durations, comma separated id
lists) into the types the core works with. Invalid input raises ValueError
with a message suitable for the user.
"""

from __future__ import annotations

import math
import re
from datetime import timedelta

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration such as "1h", "30s", "1h30m" or "250ms".

    A bare number is read as seconds.

    Raises:
        ValueError: If value is not a valid, non-negative duration.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if seconds < 0:
            raise ValueError(f"duration must not be negative: {value!r}")
        return _to_timedelta(seconds, value)

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r} (expected e.g. 1h, 30m, 90s, 500ms)")
    return _to_timedelta(total, value)


def _to_timedelta(seconds: float, value: str) -> timedelta:
    if not math.isfinite(seconds):
        raise ValueError(f"invalid duration: {value!r}")
    try:
        return timedelta(seconds=seconds)
    except OverflowError as exc:
        raise ValueError(f"duration out of range: {value!r}") from exc


def parse_id_list(value: str | None) -> list[str]:
    """Split a comma separated list of ids, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
