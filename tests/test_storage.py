from __future__ import annotations

from datetime import date

import pytest

from sendeplan_bot.offsets import OffsetError
from sendeplan_bot.storage.db import Storage
from sendeplan_bot.storage.errors import StorageError, StorageUnavailableError
from sendeplan_bot.storage.types import NewShow, ScrapedShow

from conftest import STATION


def _show(day: str, start: str, dj: str = "DJ Alpha", title: str = "Mix", end: str = "10:00") -> NewShow:
    return NewShow(day=day, station_domain=STATION, dj=dj, title=title, start_time=start, end_time=end, style="Techno")


async def test_connect_reports_fresh_store(tmp_path):
    path = tmp_path / "nested" / "db.sqlite"

    s1 = Storage(path)
    assert await s1.connect() is True
    assert s1.available
    await s1.close()

    s2 = Storage(path)
    assert await s2.connect() is False
    await s2.close()


async def test_connect_on_garbage_file_is_degraded(tmp_path):
    path = tmp_path / "broken.db"
    path.write_bytes(b"this is not a sqlite database" * 100)

    s = Storage(path)
    with pytest.raises(StorageUnavailableError):
        await s.connect()

    assert not s.available
    assert s.unavailable_reason
    assert await s.health_check() is False


async def test_upsert_items_is_idempotent(storage):
    batch = [_show("2025-01-15", "08:00"), _show("2025-01-15", "10:00", dj="DJ Beta")]

    assert await storage.upsert_items(batch) == 2
    assert await storage.upsert_items(batch) == 0
    assert await storage.count_shows(STATION) == 2


async def test_duplicate_keeps_first_write(storage):
    first = _show("2025-01-15", "08:00")
    await storage.upsert_items([first])
    before = await storage.get_shows(STATION, day="2025-01-15")

    await storage.upsert_items([first])
    after = await storage.get_shows(STATION, day="2025-01-15")

    assert before == after


async def test_shows_ordered_by_day_start_then_insertion(storage):
    await storage.upsert_items(
        [
            _show("2025-01-16", "06:00", dj="DJ C"),
            _show("2025-01-15", "20:00", dj="DJ B"),
            _show("2025-01-15", "08:00", dj="DJ A1"),
            _show("2025-01-15", "08:00", dj="DJ A2"),
        ]
    )

    rows = await storage.get_shows(STATION)

    assert [r.dj for r in rows] == ["DJ A1", "DJ A2", "DJ B", "DJ C"]


async def test_exact_day_wins_over_range(storage):
    await storage.upsert_items([_show("2025-01-14", "08:00"), _show("2025-01-15", "08:00"), _show("2025-01-16", "08:00")])

    exact = await storage.get_shows(STATION, day="2025-01-15", date_from="2025-01-14", date_to="2025-01-16")
    ranged = await storage.get_shows(STATION, date_from="2025-01-15", date_to="2025-01-16")

    assert [r.day for r in exact] == ["2025-01-15"]
    assert [r.day for r in ranged] == ["2025-01-15", "2025-01-16"]


async def test_store_day_records_empty_days(storage):
    inserted = await storage.store_day(STATION, "2025-01-15", [])

    assert inserted == 0
    days = await storage.get_days(STATION)
    assert [d.day for d in days] == ["2025-01-15"]


async def test_store_day_writes_day_and_shows(storage):
    shows = [ScrapedShow(dj="DJ Alpha", title="Mix", start="08:00", end="10:00", style="Techno")]

    assert await storage.store_day(STATION, "2025-01-15", shows) == 1
    assert await storage.store_day(STATION, "2025-01-15", shows) == 0

    (row,) = await storage.get_shows(STATION, day="2025-01-15")
    assert (row.dj, row.start_time, row.end_time) == ("DJ Alpha", "08:00", "10:00")
    assert len(await storage.get_days(STATION, date_from="2025-01-15", date_to="2025-01-15")) == 1


async def test_retention_boundary(storage):
    today = date(2025, 3, 16)
    await storage.upsert_items([_show("2025-01-15", "08:00"), _show("2025-01-16", "08:00"), _show("2025-03-16", "08:00")])
    await storage.upsert_day(STATION, "2025-01-15")
    await storage.upsert_day(STATION, "2025-01-16")

    removed = await storage.cleanup_retention(60, today)

    assert removed["shows"] == 1
    assert [r.day for r in await storage.get_shows(STATION)] == ["2025-01-16", "2025-03-16"]
    assert [d.day for d in await storage.get_days(STATION)] == ["2025-01-16"]


async def test_retention_removes_sent_notifications(storage):
    await storage.upsert_user(1, first_name="Ada")
    await storage.upsert_items([_show("2025-01-15", "08:00")])
    (show,) = await storage.get_shows(STATION)
    await storage.mark_notification_sent(1, show.id, "upcoming_show_2h")

    removed = await storage.cleanup_retention(60, date(2025, 3, 16))

    assert removed["notifications"] == 1
    assert not await storage.is_notification_sent(1, show.id, "upcoming_show_2h")


async def test_station_rows(storage):
    await storage.upsert_station("hardbase.fm", "Hardbase.FM", enabled=False)
    await storage.mark_station_scraped(STATION)

    stations = {s.domain: s for s in await storage.get_stations()}

    assert not stations["hardbase.fm"].enabled
    assert stations[STATION].last_scraped is not None
    assert (await storage.get_station("nope.fm")) is None


async def test_users_and_preferences(storage):
    assert await storage.upsert_user(42, username="ada", first_name="Ada") is True
    assert await storage.upsert_user(42, username="ada2", first_name="Ada") is False
    assert (await storage.get_user(42)).username == "ada2"

    prefs = await storage.ensure_preferences(42, "Europe/Berlin")
    assert prefs.notification_times == ["2h"]

    await storage.set_preferences(42, ["30m", "1d"], "Europe/Berlin")
    assert (await storage.get_preferences(42)).notification_times == ["30m", "1d"]

    # ensure does not overwrite existing preferences
    assert (await storage.ensure_preferences(42, "Europe/Berlin")).notification_times == ["30m", "1d"]

    with pytest.raises(OffsetError):
        await storage.set_preferences(42, ["soon"], "Europe/Berlin")
    assert (await storage.get_preferences(42)).notification_times == ["30m", "1d"]


async def test_ensure_preferences_raises_when_row_cannot_be_read_back(storage, monkeypatch):
    await storage.upsert_user(7, first_name="Bo")

    async def nothing(telegram_id):
        return None

    monkeypatch.setattr(storage, "get_preferences", nothing)

    with pytest.raises(StorageError):
        await storage.ensure_preferences(7, "Europe/Berlin")


async def test_inactive_users_are_not_listed(storage):
    await storage.upsert_user(1)
    await storage.upsert_user(2, is_active=False)

    assert [u.telegram_id for u in await storage.get_active_users()] == [1]


async def test_favorites(storage):
    await storage.upsert_user(7)

    assert await storage.add_favorite(7, STATION, "DJ Alpha") is True
    assert await storage.add_favorite(7, STATION, "DJ Alpha") is False
    (fav,) = await storage.get_favorites(7)
    assert (await storage.get_favorite(fav.id)) == fav

    assert await storage.remove_favorite(7, STATION, "DJ Alpha") is True
    assert await storage.remove_favorite(7, STATION, "DJ Alpha") is False
    assert await storage.get_favorites(7) == []


async def test_dj_directory_search(storage):
    await storage.upsert_dj(STATION, "DJ Cloud Seven", "Max Mustermann")
    await storage.upsert_dj("housetime.fm", "DJ TiRa")
    await storage.upsert_dj(STATION, "DJ Gone", is_active=False)

    assert [d.dj_name for d in await storage.search_djs("cloud")] == ["DJ Cloud Seven"]
    assert [d.dj_name for d in await storage.search_djs("mustermann")] == ["DJ Cloud Seven"]
    assert [d.dj_name for d in await storage.search_djs("dj")] == ["DJ TiRa", "DJ Cloud Seven"]
    assert await storage.search_djs("gone") == []
    assert await storage.search_djs("  ") == []

    hit = (await storage.search_djs("tira"))[0]
    assert (await storage.get_dj(hit.id)).station_domain == "housetime.fm"


async def test_notification_marking_is_idempotent(storage):
    await storage.upsert_user(1)
    await storage.upsert_items([_show("2025-01-15", "08:00")])
    (show,) = await storage.get_shows(STATION)

    assert not await storage.is_notification_sent(1, show.id, "upcoming_show_2h")
    assert await storage.mark_notification_sent(1, show.id, "upcoming_show_2h") is True
    assert await storage.mark_notification_sent(1, show.id, "upcoming_show_2h") is False
    assert await storage.is_notification_sent(1, show.id, "upcoming_show_2h")
    assert not await storage.is_notification_sent(1, show.id, "upcoming_show_30m")
