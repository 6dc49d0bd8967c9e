from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

import httpx
from telegram import Bot

from sendeplan_bot.config import Config
from sendeplan_bot.crawler.errors import FetchError
from sendeplan_bot.crawler.http_fetcher import ScheduleFetcher
from sendeplan_bot.crawler.service import ScraperService
from sendeplan_bot.jobs.notifier import NotificationMatcher
from sendeplan_bot.jobs.scheduler import RunCoordinator
from sendeplan_bot.metrics.metrics import Metrics, RuntimeStats, write_status_json
from sendeplan_bot.ratelimit import MinIntervalLimiter
from sendeplan_bot.stations import StationCatalog
from sendeplan_bot.storage.db import Storage
from sendeplan_bot.storage.errors import StorageError, StorageUnavailableError
from sendeplan_bot.telegram.alerts import maybe_send_consecutive_failure_alert
from sendeplan_bot.telegram.dispatch import TelegramDispatcher


logger = logging.getLogger(__name__)


DJ_DIRECTORY_INTERVAL_SECONDS = 24 * 3600
STATUS_INTERVAL_SECONDS = 30


@dataclass
class AppContext:
    config: Config
    storage: Storage
    scraper: ScraperService
    coordinator: RunCoordinator
    catalog: StationCatalog
    metrics: Metrics
    runtime_stats: RuntimeStats
    request_limiter: MinIntervalLimiter
    notifier: NotificationMatcher | None = None
    tasks: list[asyncio.Task] = field(default_factory=list)

    def health(self) -> dict:
        storage_status = "ok" if self.storage.available else "degraded"
        return {
            "status": storage_status,
            "storage": {
                "status": storage_status,
                "reason": None if self.storage.available else self.storage.unavailable_reason,
            },
        }

    async def refresh_dj_directory(self) -> int:
        """Pull the team pages of all stations into the DJ directory."""
        if not self.storage.available:
            logger.warning("storage unavailable, DJ directory refresh skipped")
            return 0

        stored = 0
        for station in self.config.stations:
            try:
                members = await self.scraper.scrape_team(station)
            except FetchError as e:
                logger.warning("team page fetch failed station=%s err=%s", station, e)
                continue
            for m in members:
                try:
                    await self.storage.upsert_dj(station, m.dj_name, m.real_name, m.is_active)
                    stored += 1
                except StorageError as e:
                    logger.warning("storing DJ %s failed: %s", m.dj_name, e)
        logger.info("DJ directory refreshed: %s entries", stored)
        return stored


async def build_app_context(
    config: Config,
    bot: Bot | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AppContext:
    storage = Storage(config.sqlite_path)
    try:
        await storage.connect()
    except StorageUnavailableError as e:
        # keep running; writes are skipped and health reports degraded
        logger.error("storage unavailable: %s", e)

    metrics = Metrics()
    if config.metrics_enabled:
        metrics.start_server(config.metrics_bind, config.metrics_port)

    request_limiter = MinIntervalLimiter(min_interval_seconds=config.request_delay_seconds)
    fetcher = ScheduleFetcher(
        limiter=request_limiter,
        timeout_seconds=config.http_timeout_seconds,
        user_agent=config.user_agent,
        proxy=config.scraper_proxy,
        transport=transport,
    )
    scraper = ScraperService(fetcher)
    catalog = StationCatalog.from_file(config.stations_file)

    on_unit_failure = None
    if bot is not None and config.alert_chat_id:

        async def on_unit_failure(count: int) -> None:
            await maybe_send_consecutive_failure_alert(bot, config.alert_chat_id, "Sendeplan-Abruf", count, config.alert_n_fetch)

    coordinator = RunCoordinator(
        storage=storage,
        scraper=scraper,
        stations=config.stations,
        catalog=catalog,
        timezone=config.timezone,
        cron_schedule=config.cron_schedule,
        retention_days=config.retention_days,
        metrics=metrics,
        on_unit_failure=on_unit_failure,
    )
    if storage.available:
        await coordinator.sync_stations()

    notifier = None
    if bot is not None:
        notifier = NotificationMatcher(
            storage=storage,
            dispatcher=TelegramDispatcher(bot),
            timezone=config.timezone,
            catalog=catalog,
            metrics=metrics,
        )

    return AppContext(
        config=config,
        storage=storage,
        scraper=scraper,
        coordinator=coordinator,
        catalog=catalog,
        metrics=metrics,
        runtime_stats=RuntimeStats(),
        request_limiter=request_limiter,
        notifier=notifier,
    )


async def start_background_jobs(ctx: AppContext) -> None:
    async def scrape_job() -> None:
        try:
            await ctx.coordinator.serve()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("scrape job failed")

    async def notify_job() -> None:
        while True:
            try:
                await ctx.notifier.run_once()
                ctx.runtime_stats.last_notify_ts = time.time()
            except Exception:
                logger.exception("notify job failed")
            await asyncio.sleep(ctx.config.notify_interval_seconds)

    async def dj_directory_job() -> None:
        while True:
            try:
                await ctx.refresh_dj_directory()
            except Exception:
                logger.exception("DJ directory job failed")
            await asyncio.sleep(DJ_DIRECTORY_INTERVAL_SECONDS)

    async def status_job() -> None:
        while True:
            try:
                write_status(ctx)
            except Exception:
                logger.exception("status job failed")
            await asyncio.sleep(STATUS_INTERVAL_SECONDS)

    ctx.tasks = [
        asyncio.create_task(scrape_job(), name="scrape_job"),
        asyncio.create_task(status_job(), name="status_job"),
    ]
    if ctx.notifier is not None:
        ctx.tasks.append(asyncio.create_task(notify_job(), name="notify_job"))
        ctx.tasks.append(asyncio.create_task(dj_directory_job(), name="dj_directory_job"))


async def stop_background_jobs(ctx: AppContext) -> None:
    for t in ctx.tasks:
        t.cancel()
    await asyncio.gather(*ctx.tasks, return_exceptions=True)
    ctx.tasks = []

    await ctx.scraper.aclose()
    await ctx.storage.close()


def write_status(ctx: AppContext) -> None:
    stats = ctx.runtime_stats
    coordinator = ctx.coordinator

    stats.consecutive_failed_units = coordinator.consecutive_failed_units
    stats.next_request_allowed_in_seconds = ctx.request_limiter.next_allowed_in_seconds()

    ctx.metrics.set_consecutive("scrape", stats.consecutive_failed_units)

    data = {
        "health": ctx.health(),
        "scrape": coordinator.status(),
        "notify": {
            "enabled": ctx.notifier is not None,
            "active": ctx.notifier.active if ctx.notifier is not None else False,
            "last_check_ts": stats.last_notify_ts,
        },
        "request_next_allowed_in_seconds": stats.next_request_allowed_in_seconds,
    }
    write_status_json(ctx.config.status_json_path, data)
