from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from apscheduler.triggers.cron import CronTrigger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from sendeplan_bot.crawler.service import ScraperService
from sendeplan_bot.metrics.metrics import Metrics
from sendeplan_bot.stations import StationCatalog
from sendeplan_bot.storage.db import Storage
from sendeplan_bot.storage.errors import StorageError
from sendeplan_bot.storage.types import ScrapedShow
from sendeplan_bot.utils import day_range, is_iso_day, now_utc, today_in


logger = logging.getLogger(__name__)


WINDOW_DAYS_BEFORE = 1
WINDOW_DAYS = 7


class ValidationError(ValueError):
    pass


@dataclass
class RunReport:
    started_at: str
    dates: list[str]
    stations: list[str]
    finished_at: str | None = None
    units_ok: int = 0
    units_failed: int = 0
    shows_extracted: int = 0
    shows_inserted: int = 0
    failures: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def scrape_window(today: date) -> list[str]:
    """Yesterday through today+5."""
    return day_range(today - timedelta(days=WINDOW_DAYS_BEFORE), WINDOW_DAYS)


class RunCoordinator:
    """Runs scrape passes over all stations, one at a time.

    A trigger that arrives while a run is in progress is dropped, not
    queued. Each (station, day) unit fails on its own without stopping
    the run.
    """

    def __init__(
        self,
        storage: Storage,
        scraper: ScraperService,
        stations: Sequence[str],
        catalog: StationCatalog,
        timezone: str,
        cron_schedule: str,
        retention_days: int,
        metrics: Metrics | None = None,
        on_unit_failure: Callable[[int], Awaitable[None]] | None = None,
    ) -> None:
        self._storage = storage
        self._scraper = scraper
        self._stations = list(stations)
        self._catalog = catalog
        self._tz = ZoneInfo(timezone)
        self._trigger = CronTrigger.from_crontab(cron_schedule, timezone=self._tz)
        self._retention_days = retention_days
        self._metrics = metrics
        self._on_unit_failure = on_unit_failure

        self._running = False
        self._background: asyncio.Task | None = None
        self.runs_started = 0
        self.runs_dropped = 0
        self.consecutive_failed_units = 0
        self.last_report: RunReport | None = None

    @property
    def active(self) -> bool:
        return self._running

    @property
    def stations(self) -> list[str]:
        return list(self._stations)

    @property
    def background_task(self) -> asyncio.Task | None:
        return self._background

    def _try_enter(self) -> bool:
        # check and set happen without an await in between
        if self._running:
            self.runs_dropped += 1
            if self._metrics is not None:
                self._metrics.runs_dropped_total.inc()
            logger.info("scrape run already in progress, trigger dropped")
            return False
        self._running = True
        self.runs_started += 1
        if self._metrics is not None:
            self._metrics.runs_started_total.inc()
            self._metrics.run_active.set(1)
        return True

    def _leave(self) -> None:
        self._running = False
        if self._metrics is not None:
            self._metrics.run_active.set(0)

    async def sync_stations(self) -> None:
        """Make sure every configured station has a row, keeping its enabled flag."""
        existing = {row.domain: row for row in await self._storage.get_stations()}
        for domain in self._stations:
            row = existing.get(domain)
            await self._storage.upsert_station(
                domain,
                self._catalog.name(domain),
                enabled=row.enabled if row is not None else True,
            )

    async def run(self, dates: Sequence[str] | None = None, stations: Sequence[str] | None = None) -> RunReport | None:
        if not self._try_enter():
            return None
        return await self._run_entered(dates, stations)

    def trigger_now(self, station: str | None = None, dates: Sequence[str] | None = None) -> bool:
        """Start an on-demand run in the background.

        Input is validated before anything else. Returns False when a run
        is already in progress and the trigger was dropped.
        """
        stations = self._validate_station(station)
        checked_dates = self._validate_dates(dates)
        if not self._try_enter():
            return False
        self._background = asyncio.create_task(self._run_entered(checked_dates, stations), name="scrape_now")
        return True

    def _validate_station(self, station: str | None) -> list[str] | None:
        if station is None:
            return None
        key = station.strip().lower()
        if key not in self._stations:
            raise ValidationError(f"unknown station: {station}")
        return [key]

    def _validate_dates(self, dates: Sequence[str] | None) -> list[str] | None:
        if not dates:
            return None
        out: list[str] = []
        for d in dates:
            if not is_iso_day(d):
                raise ValidationError(f"invalid date (expected YYYY-MM-DD): {d}")
            out.append(d)
        return out

    async def _run_entered(self, dates: Sequence[str] | None, stations: Sequence[str] | None) -> RunReport | None:
        started = time.perf_counter()
        try:
            return await self._run_all(dates, stations)
        except Exception:
            logger.exception("scrape run failed")
            return None
        finally:
            self._leave()
            if self._metrics is not None:
                self._metrics.run_duration_seconds.observe(time.perf_counter() - started)

    async def _run_all(self, dates: Sequence[str] | None, stations: Sequence[str] | None) -> RunReport | None:
        if not self._storage.available:
            logger.warning("storage unavailable (%s), scrape run skipped", self._storage.unavailable_reason)
            return None

        today = today_in(self._tz)
        run_dates = list(dates) if dates else scrape_window(today)
        run_stations = list(stations) if stations else list(self._stations)
        report = RunReport(started_at=now_utc().isoformat(), dates=run_dates, stations=run_stations)
        logger.info("scrape run started: %s stations, dates %s..%s", len(run_stations), run_dates[0], run_dates[-1])

        known = {row.domain: row for row in await self._storage.get_stations()}
        for station in run_stations:
            row = known.get(station)
            if row is None:
                await self._storage.upsert_station(station, self._catalog.name(station))
            elif not row.enabled:
                logger.info("station %s is disabled, skipped", station)
                continue

            for day in run_dates:
                await self._scrape_unit(station, day, report)
            await self._storage.mark_station_scraped(station)

        try:
            await self._storage.cleanup_retention(self._retention_days, today)
        except StorageError:
            logger.exception("retention cleanup failed")

        report.finished_at = now_utc().isoformat()
        self.last_report = report
        logger.info(
            "scrape run finished: units ok=%s failed=%s shows extracted=%s inserted=%s",
            report.units_ok,
            report.units_failed,
            report.shows_extracted,
            report.shows_inserted,
        )
        return report

    async def _scrape_unit(self, station: str, day: str, report: RunReport) -> None:
        result = await self._scraper.scrape_schedule(station, day)
        if not result.success:
            if self._metrics is not None:
                self._metrics.fetch_fail_total.labels(station=station).inc()
            report.failures.append(f"{station} {day}: {result.error}")
            await self._unit_done(False, report)
            return

        if self._metrics is not None:
            self._metrics.fetch_success_total.labels(station=station).inc()
            self._metrics.shows_extracted_total.inc(len(result.shows))
        report.shows_extracted += len(result.shows)

        try:
            inserted = await self._store_unit(station, day, result.shows)
        except StorageError as e:
            logger.error("storing station=%s day=%s failed: %s", station, day, e)
            report.failures.append(f"{station} {day}: {e}")
            await self._unit_done(False, report)
            return

        if self._metrics is not None:
            self._metrics.shows_inserted_total.inc(inserted)
        report.shows_inserted += inserted
        await self._unit_done(True, report)

    @retry(
        retry=retry_if_exception_type(StorageError),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(multiplier=0.5, max=5),
        reraise=True,
    )
    async def _store_unit(self, station: str, day: str, shows: list[ScrapedShow]) -> int:
        return await self._storage.store_day(station, day, shows)

    async def _unit_done(self, ok: bool, report: RunReport) -> None:
        if ok:
            report.units_ok += 1
            self.consecutive_failed_units = 0
        else:
            report.units_failed += 1
            self.consecutive_failed_units += 1

        if self._metrics is not None:
            self._metrics.set_consecutive("scrape", self.consecutive_failed_units)
        if not ok and self._on_unit_failure is not None:
            try:
                await self._on_unit_failure(self.consecutive_failed_units)
            except Exception:
                logger.exception("unit failure hook failed")

    def next_run_at(self, now: datetime | None = None) -> datetime | None:
        now = (now or now_utc()).astimezone(self._tz)
        return self._trigger.get_next_fire_time(None, now)

    async def serve(self, run_at_startup: bool = True) -> None:
        if run_at_startup:
            await self.run()
        while True:
            nxt = self.next_run_at()
            if nxt is None:
                logger.warning("cron schedule has no further fire times, scrape loop stopped")
                return
            delay = max(1.0, (nxt - now_utc()).total_seconds())
            logger.debug("next scrape run at %s", nxt.isoformat())
            await asyncio.sleep(delay)
            await self.run()

    def status(self) -> dict:
        nxt = self.next_run_at()
        return {
            "active": self._running,
            "next_run_at": nxt.isoformat() if nxt is not None else None,
            "last_run": self.last_report.as_dict() if self.last_report is not None else None,
            "runs_started": self.runs_started,
            "runs_dropped": self.runs_dropped,
            "consecutive_failed_units": self.consecutive_failed_units,
        }
