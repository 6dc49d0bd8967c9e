from __future__ import annotations

from datetime import date, timedelta

from sendeplan_bot.storage.db import Storage
from sendeplan_bot.storage.types import ShowRow


DEFAULT_FEED_DAYS = 7
MAX_FEED_DAYS = 30


def clamp_feed_days(days: int | str | None) -> int:
    if days is None or days == "":
        return DEFAULT_FEED_DAYS
    try:
        value = int(days)
    except (TypeError, ValueError):
        return DEFAULT_FEED_DAYS
    return max(1, min(MAX_FEED_DAYS, value))


def feed_date_range(days: int | str | None, today: date) -> tuple[str, str]:
    """First and last ISO day of a feed: yesterday through today + days."""
    n = clamp_feed_days(days)
    return (today - timedelta(days=1)).isoformat(), (today + timedelta(days=n)).isoformat()


async def load_feed_shows(storage: Storage, station: str, days: int | str | None, today: date) -> list[ShowRow]:
    date_from, date_to = feed_date_range(days, today)
    return await storage.get_shows(station, date_from=date_from, date_to=date_to)
