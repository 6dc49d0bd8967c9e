from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo


_ISO_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CLOCK_RE = re.compile(r"(?<!\d)(\d{1,2}):(\d{2})(?!\d)")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def today_in(tz: ZoneInfo, now: datetime | None = None) -> date:
    now = now or now_utc()
    return now.astimezone(tz).date()


def is_iso_day(value: str) -> bool:
    if not _ISO_DAY_RE.match(value or ""):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def day_range(start: date, days: int) -> list[str]:
    return [(start + timedelta(days=i)).isoformat() for i in range(days)]


def parse_clock(text: str) -> str | None:
    """Find the first H:MM / HH:MM in text and return it zero padded."""
    m = _CLOCK_RE.search(text or "")
    if not m:
        return None
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


def add_hours_to_clock(clock: str, hours: int) -> str:
    h, m = (int(x) for x in clock.split(":"))
    return f"{(h + hours) % 24:02d}:{m:02d}"


def one_line(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 1] + "…"
