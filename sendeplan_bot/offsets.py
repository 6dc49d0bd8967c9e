from __future__ import annotations

import math
import re
from datetime import timedelta


DEFAULT_OFFSET = "2h"

_OFFSET_RE = re.compile(r"^(?P<num>\d+(?:\.\d+)?|\.\d+)\s*(?P<unit>[dhm]?)$", flags=re.IGNORECASE)

_UNIT_MINUTES = {
    "d": 24 * 60,
    "h": 60,
    "m": 1,
    "": 60,  # bare numbers are hours
}


class OffsetError(ValueError):
    pass


def offset_minutes(literal: str) -> int:
    m = _OFFSET_RE.match((literal or "").strip())
    if not m:
        raise OffsetError(f"invalid notification offset: {literal!r}")
    value = float(m.group("num"))
    factor = _UNIT_MINUTES[m.group("unit").lower()]
    return int(math.floor(value * factor + 0.5))


def parse_offset(literal: str) -> timedelta:
    return timedelta(minutes=offset_minutes(literal))


def parse_offsets(text: str) -> list[str]:
    """Validate a comma separated list of offsets and return the literals."""
    literals = [part.strip() for part in (text or "").split(",") if part.strip()]
    if not literals:
        raise OffsetError("no notification offset given")
    for literal in literals:
        offset_minutes(literal)
    return literals


def format_offset(literal_or_minutes: str | int) -> str:
    if isinstance(literal_or_minutes, str):
        minutes = offset_minutes(literal_or_minutes)
    else:
        minutes = int(literal_or_minutes)

    if minutes >= 24 * 60:
        return f"{_trim(minutes / (24 * 60))}d"
    if minutes >= 60:
        return f"{_trim(minutes / 60)}h"
    return f"{minutes}m"


def _trim(value: float) -> str:
    rounded = round(value, 1)
    if rounded == int(rounded):
        return str(int(rounded))
    return str(rounded)
