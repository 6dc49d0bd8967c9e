from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from sendeplan_bot.jobs.scheduler import RunCoordinator, ValidationError, scrape_window
from sendeplan_bot.stations import StationCatalog
from sendeplan_bot.storage.db import Storage
from sendeplan_bot.storage.errors import StorageError
from sendeplan_bot.storage.types import NewShow, ScrapedShow, ScrapeResult
from sendeplan_bot.utils import today_in

from conftest import STATION


TZ = "Europe/Berlin"


class FakeScraper:
    def __init__(self, fail: set[tuple[str, str]] | None = None, gate: asyncio.Event | None = None) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail = fail or set()
        self.gate = gate

    async def scrape_schedule(self, station: str, day: str) -> ScrapeResult:
        self.calls.append((station, day))
        if self.gate is not None:
            await self.gate.wait()
        if (station, day) in self.fail:
            return ScrapeResult(station=station, day=day, success=False, error="HTTP_ERROR: 503")
        show = ScrapedShow(dj="DJ Alpha", title=f"Mix {day}", start="08:00", end="10:00", style="Techno")
        return ScrapeResult(station=station, day=day, shows=[show])


def _coordinator(storage, scraper, stations=(STATION, "housetime.fm"), **kwargs) -> RunCoordinator:
    return RunCoordinator(
        storage=storage,
        scraper=scraper,
        stations=list(stations),
        catalog=StationCatalog(),
        timezone=TZ,
        cron_schedule=kwargs.pop("cron_schedule", "0 */2 * * *"),
        retention_days=kwargs.pop("retention_days", 60),
        **kwargs,
    )


def _recent_dates(n: int = 3) -> list[str]:
    # retention runs after every scrape, so stored days must be recent
    return scrape_window(today_in(ZoneInfo(TZ)))[:n]


def test_window_is_yesterday_plus_five():
    today = datetime(2025, 1, 15).date()

    assert scrape_window(today) == [
        "2025-01-14",
        "2025-01-15",
        "2025-01-16",
        "2025-01-17",
        "2025-01-18",
        "2025-01-19",
        "2025-01-20",
    ]


async def test_full_run_walks_stations_then_dates(storage):
    scraper = FakeScraper()
    coordinator = _coordinator(storage, scraper)

    report = await coordinator.run()

    window = scrape_window(today_in(ZoneInfo(TZ)))
    assert scraper.calls == [(STATION, d) for d in window] + [("housetime.fm", d) for d in window]
    assert report.units_ok == 14
    assert report.units_failed == 0
    assert report.shows_inserted == 14
    assert not coordinator.active
    stations = {s.domain: s for s in await storage.get_stations()}
    assert stations[STATION].last_scraped is not None


async def test_failed_unit_does_not_abort_run(storage):
    dates = _recent_dates()
    scraper = FakeScraper(fail={(STATION, dates[1])})
    coordinator = _coordinator(storage, scraper)

    report = await coordinator.run(dates=dates)

    assert len(scraper.calls) == 6
    assert report.units_ok == 5
    assert report.units_failed == 1
    assert [d.day for d in await storage.get_days(STATION)] == [dates[0], dates[2]]
    assert [d.day for d in await storage.get_days("housetime.fm")] == dates


async def test_concurrent_triggers_are_dropped(storage):
    gate = asyncio.Event()
    scraper = FakeScraper(gate=gate)
    coordinator = _coordinator(storage, scraper, stations=[STATION])

    first = asyncio.create_task(coordinator.run(dates=["2025-01-15"]))
    await asyncio.sleep(0)
    while not scraper.calls:
        await asyncio.sleep(0.01)

    assert coordinator.active
    assert await coordinator.run(dates=["2025-01-16"]) is None
    assert coordinator.trigger_now(dates=["2025-01-16"]) is False

    gate.set()
    report = await first

    assert report is not None
    assert coordinator.runs_started == 1
    assert coordinator.runs_dropped == 2
    assert scraper.calls == [(STATION, "2025-01-15")]
    assert not coordinator.active


async def test_trigger_now_validates_input(storage):
    coordinator = _coordinator(storage, FakeScraper())

    with pytest.raises(ValidationError):
        coordinator.trigger_now(station="unknown.fm")
    with pytest.raises(ValidationError):
        coordinator.trigger_now(dates=["2025-13-01"])
    with pytest.raises(ValidationError):
        coordinator.trigger_now(dates=["2025-1-5"])

    assert coordinator.runs_started == 0
    assert not coordinator.active


async def test_trigger_now_runs_in_background(storage):
    scraper = FakeScraper()
    coordinator = _coordinator(storage, scraper)

    assert coordinator.trigger_now(station="housetime.fm", dates=["2025-01-15", "2025-01-16"]) is True
    report = await coordinator.background_task

    assert scraper.calls == [("housetime.fm", "2025-01-15"), ("housetime.fm", "2025-01-16")]
    assert report.units_ok == 2
    assert not coordinator.active


async def test_unavailable_storage_skips_run(tmp_path):
    storage = Storage(tmp_path / "never-opened.db")
    scraper = FakeScraper()
    coordinator = _coordinator(storage, scraper)

    assert await coordinator.run() is None
    assert scraper.calls == []
    assert not coordinator.active


async def test_retention_runs_after_scrape(storage):
    old_day = (today_in(ZoneInfo(TZ)) - timedelta(days=90)).isoformat()
    await storage.upsert_items(
        [NewShow(day=old_day, station_domain=STATION, dj="DJ Old", title="Old", start_time="08:00", end_time="10:00", style="x")]
    )
    coordinator = _coordinator(storage, FakeScraper(), stations=[STATION])

    await coordinator.run(dates=["2025-01-15"])

    assert await storage.get_shows(STATION, day=old_day) == []


async def test_store_failure_is_retried_wholesale(storage, monkeypatch):
    real = storage.store_day
    attempts = {"n": 0}

    async def flaky_store_day(station, day, shows):
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise StorageError("database is locked")
        return await real(station, day, shows)

    monkeypatch.setattr(storage, "store_day", flaky_store_day)
    coordinator = _coordinator(storage, FakeScraper(), stations=[STATION])
    (day,) = _recent_dates(1)

    report = await coordinator.run(dates=[day])

    assert attempts["n"] == 2
    assert report.units_ok == 1
    assert len(await storage.get_shows(STATION, day=day)) == 1


def test_store_retry_backs_off_from_half_a_second():
    policy = RunCoordinator._store_unit.retry

    assert policy.wait.multiplier == 0.5
    assert policy.wait.max == 5
    assert policy.stop.max_attempt_number == 3


async def test_rerun_of_same_day_inserts_nothing_new(storage):
    class ThreeShowScraper(FakeScraper):
        async def scrape_schedule(self, station: str, day: str) -> ScrapeResult:
            self.calls.append((station, day))
            shows = [
                ScrapedShow(dj="DJ C", title="Late", start="20:00", end="22:00", style="Trance"),
                ScrapedShow(dj="DJ A", title="Early", start="08:00", end="10:00", style="Techno"),
                ScrapedShow(dj="DJ B", title="Noon", start="12:00", end="14:00", style="House"),
            ]
            return ScrapeResult(station=station, day=day, shows=shows)

    coordinator = _coordinator(storage, ThreeShowScraper(), stations=[STATION])
    (day,) = _recent_dates(1)

    first = await coordinator.run(dates=[day])
    second = await coordinator.run(dates=[day])

    assert first.shows_inserted == 3
    assert second.shows_inserted == 0
    rows = await storage.get_shows(STATION, day=day)
    assert [r.start_time for r in rows] == ["08:00", "12:00", "20:00"]


async def test_disabled_station_is_skipped(storage):
    await storage.upsert_station("housetime.fm", "Housetime.FM", enabled=False)
    scraper = FakeScraper()
    coordinator = _coordinator(storage, scraper)

    await coordinator.run(dates=["2025-01-15"])

    assert scraper.calls == [(STATION, "2025-01-15")]


async def test_failure_hook_sees_consecutive_count(storage):
    counts: list[int] = []

    async def hook(count: int) -> None:
        counts.append(count)

    dates = ["2025-01-14", "2025-01-15", "2025-01-16"]
    scraper = FakeScraper(fail={(STATION, d) for d in dates[:2]})
    coordinator = _coordinator(storage, scraper, stations=[STATION], on_unit_failure=hook)

    await coordinator.run(dates=dates)

    assert counts == [1, 2]
    assert coordinator.consecutive_failed_units == 0


def test_next_run_follows_cron_in_station_timezone(tmp_path):
    coordinator = _coordinator(Storage(tmp_path / "x.db"), FakeScraper())
    tz = ZoneInfo(TZ)

    nxt = coordinator.next_run_at(datetime(2025, 1, 15, 9, 30, tzinfo=tz))

    assert nxt == datetime(2025, 1, 15, 10, 0, tzinfo=tz)


async def test_status_shape(storage):
    coordinator = _coordinator(storage, FakeScraper(), stations=[STATION])
    assert coordinator.status()["last_run"] is None

    await coordinator.run(dates=["2025-01-15"])
    status = coordinator.status()

    assert status["active"] is False
    assert status["next_run_at"] is not None
    assert status["last_run"]["units_ok"] == 1
    assert status["runs_started"] == 1
