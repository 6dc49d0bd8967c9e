from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo

from sendeplan_bot.metrics.metrics import Metrics
from sendeplan_bot.offsets import DEFAULT_OFFSET, OffsetError, parse_offset
from sendeplan_bot.stations import StationCatalog
from sendeplan_bot.storage.db import Storage
from sendeplan_bot.storage.errors import StorageError
from sendeplan_bot.storage.types import FavoriteRow, ShowRow
from sendeplan_bot.utils import now_utc, one_line, parse_clock


logger = logging.getLogger(__name__)


FIRE_WINDOW = timedelta(minutes=15)
KIND_PREFIX = "upcoming_show_"

_DJ_PREFIX = re.compile(r"^dj\s+", flags=re.IGNORECASE)


class Dispatcher(Protocol):
    async def dispatch(self, user_id: int, show: ShowRow, station_name: str, offset: str) -> None: ...


def normalize_dj_name(name: str) -> str:
    return _DJ_PREFIX.sub("", one_line(name)).lower()


def presenter_matches(favorite: str, presenter: str) -> bool:
    """Loose DJ name comparison.

    Case-insensitive substring in either direction, or equality once a
    leading "DJ " is dropped. Empty names never match.
    """
    fav = one_line(favorite).lower()
    dj = one_line(presenter).lower()
    if not fav or not dj:
        return False
    if fav in dj or dj in fav:
        return True
    a, b = normalize_dj_name(favorite), normalize_dj_name(presenter)
    return bool(a) and a == b


def notification_kind(literal: str) -> str:
    return KIND_PREFIX + literal


def show_start(show: ShowRow, tz: ZoneInfo) -> datetime | None:
    clock = parse_clock(show.start_time)
    if clock is None:
        return None
    try:
        day = date.fromisoformat(show.day)
    except ValueError:
        return None
    hours, minutes = (int(x) for x in clock.split(":"))
    return datetime.combine(day, time(hours, minutes), tzinfo=tz)


def is_due(start: datetime, offset: timedelta, now: datetime, window: timedelta = FIRE_WINDOW) -> bool:
    alert_at = start - offset
    return alert_at <= now < alert_at + window


class NotificationMatcher:
    def __init__(
        self,
        storage: Storage,
        dispatcher: Dispatcher,
        timezone: str,
        catalog: StationCatalog | None = None,
        metrics: Metrics | None = None,
        window: timedelta = FIRE_WINDOW,
    ) -> None:
        self._storage = storage
        self._dispatcher = dispatcher
        self._tz = ZoneInfo(timezone)
        self._catalog = catalog or StationCatalog()
        self._metrics = metrics
        self._window = window
        self._running = False

    @property
    def active(self) -> bool:
        return self._running

    async def run_once(self, now: datetime | None = None) -> int:
        """Send every reminder that is due at ``now``. Returns how many were sent."""
        if self._running:
            logger.info("notification check already in progress, skipped")
            return 0
        self._running = True
        try:
            return await self._check_all(now or now_utc())
        finally:
            self._running = False

    async def _check_all(self, now: datetime) -> int:
        today = now.astimezone(self._tz).date()
        date_from = today.isoformat()
        date_to = (today + timedelta(days=1)).isoformat()

        fired = 0
        for user in await self._storage.get_active_users():
            try:
                fired += await self._check_user(user.telegram_id, now, date_from, date_to)
            except Exception:
                logger.exception("notification check failed for user %s", user.telegram_id)

        if fired:
            logger.info("sent %s show reminders", fired)
        return fired

    async def _check_user(self, user_id: int, now: datetime, date_from: str, date_to: str) -> int:
        prefs = await self._storage.get_preferences(user_id)
        if prefs is None:
            logger.warning("user %s has no notification preferences, skipped", user_id)
            return 0

        favorites = await self._storage.get_favorites(user_id)
        if not favorites:
            return 0

        fired = 0
        for fav in favorites:
            try:
                fired += await self._check_favorite(user_id, fav, prefs.notification_times, now, date_from, date_to)
            except Exception:
                logger.exception("notification check failed for user %s favorite %s", user_id, fav.dj_name)
        return fired

    async def _check_favorite(
        self,
        user_id: int,
        fav: FavoriteRow,
        offsets: list[str],
        now: datetime,
        date_from: str,
        date_to: str,
    ) -> int:
        fired = 0
        shows = await self._storage.get_shows(fav.station_domain, date_from=date_from, date_to=date_to)
        for show in shows:
            if not presenter_matches(fav.dj_name, show.dj):
                continue
            start = show_start(show, self._tz)
            if start is None:
                logger.warning("show %s has an unreadable start time %r", show.id, show.start_time)
                continue

            for literal in offsets:
                try:
                    offset = parse_offset(literal)
                except OffsetError:
                    logger.warning("user %s has an invalid offset %r", user_id, literal)
                    continue
                if not is_due(start, offset, now, self._window):
                    continue

                kind = notification_kind(literal)
                if await self._storage.is_notification_sent(user_id, show.id, kind):
                    continue
                if await self._send(user_id, show, literal, kind):
                    fired += 1
        return fired

    async def _send(self, user_id: int, show: ShowRow, literal: str, kind: str) -> bool:
        try:
            await self._dispatcher.dispatch(user_id, show, self._catalog.name(show.station_domain), literal)
        except Exception as e:
            logger.warning("reminder to user=%s show=%s failed: %s", user_id, show.id, e)
            if self._metrics is not None:
                self._metrics.notifications_failed_total.inc()
            return False

        try:
            await self._storage.mark_notification_sent(user_id, show.id, kind)
        except StorageError as e:
            logger.error("recording reminder user=%s show=%s kind=%s failed: %s", user_id, show.id, kind, e)
        if self._metrics is not None:
            self._metrics.notifications_sent_total.inc()
        logger.info("reminder sent user=%s show=%s kind=%s", user_id, show.id, kind)
        return True

    async def send_test(self, user_id: int) -> None:
        """Send a made-up reminder so users can see what one looks like."""
        prefs = await self._storage.get_preferences(user_id)
        literal = prefs.notification_times[0] if prefs and prefs.notification_times else DEFAULT_OFFSET
        favorites = await self._storage.get_favorites(user_id)
        station = favorites[0].station_domain if favorites else "technobase.fm"
        dj = favorites[0].dj_name if favorites else "DJ Test"

        start = now_utc().astimezone(self._tz) + parse_offset(literal)
        show = ShowRow(
            id=0,
            day=start.date().isoformat(),
            station_domain=station,
            dj=dj,
            title="Test-Benachrichtigung",
            start_time=start.strftime("%H:%M"),
            end_time=(start + timedelta(hours=2)).strftime("%H:%M"),
            style="Test",
            created_at=now_utc().isoformat(),
        )
        await self._dispatcher.dispatch(user_id, show, self._catalog.name(station), literal)
