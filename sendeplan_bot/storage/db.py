from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable
from datetime import date, timedelta
from pathlib import Path

import aiosqlite

from sendeplan_bot.offsets import DEFAULT_OFFSET, offset_minutes
from sendeplan_bot.storage.errors import StorageError, StorageUnavailableError
from sendeplan_bot.storage.schema import SCHEMA_SQL
from sendeplan_bot.storage.types import (
    DayRow,
    DjRow,
    FavoriteRow,
    NewShow,
    Preferences,
    ScrapedShow,
    ShowRow,
    StationRow,
    UserRow,
)
from sendeplan_bot.utils import now_utc


logger = logging.getLogger(__name__)


_SHOW_COLUMNS = "id, day, station_domain, dj, title, start_time, end_time, style, created_at"

_INSERT_SHOW_SQL = (
    "INSERT INTO shows(day, station_domain, dj, title, start_time, end_time, style, created_at) "
    "VALUES(?, ?, ?, ?, ?, ?, ?, ?) "
    "ON CONFLICT(day, station_domain, dj, title, start_time, end_time) DO NOTHING"
)

_UPSERT_DAY_SQL = (
    "INSERT INTO days(station_domain, day, scraped_at) VALUES(?, ?, ?) "
    "ON CONFLICT(station_domain, day) DO UPDATE SET scraped_at=excluded.scraped_at"
)


def _station_row(row) -> StationRow:
    return StationRow(
        domain=row["domain"],
        name=row["name"],
        enabled=bool(row["enabled"]),
        last_scraped=row["last_scraped"],
    )


def _user_row(row) -> UserRow:
    return UserRow(
        telegram_id=int(row["telegram_id"]),
        username=row["username"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        language_code=row["language_code"],
        is_active=bool(row["is_active"]),
    )


def _dj_row(row) -> DjRow:
    return DjRow(
        id=int(row["id"]),
        station_domain=row["station_domain"],
        dj_name=row["dj_name"],
        real_name=row["real_name"],
        is_active=bool(row["is_active"]),
    )


class Storage:
    def __init__(self, sqlite_path: Path):
        self._path = sqlite_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._unavailable_reason: str | None = "not connected"

    @property
    def available(self) -> bool:
        return self._db is not None and self._unavailable_reason is None

    @property
    def unavailable_reason(self) -> str | None:
        return self._unavailable_reason

    async def connect(self) -> bool:
        """Open (or create) the database and apply the schema.

        Returns True when a fresh database file was created. Raises
        StorageUnavailableError when the location is unusable or the file
        is not a valid database; the store then stays in degraded state.
        """
        fresh = not self._path.exists()
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            db = await aiosqlite.connect(self._path.as_posix())
        except (OSError, aiosqlite.Error) as e:
            self._unavailable_reason = f"cannot open {self._path}: {e}"
            raise StorageUnavailableError(self._unavailable_reason) from e

        try:
            db.row_factory = aiosqlite.Row
            await db.executescript(SCHEMA_SQL)
            await db.commit()
        except aiosqlite.Error as e:
            await db.close()
            self._unavailable_reason = f"cannot initialize {self._path}: {e}"
            raise StorageUnavailableError(self._unavailable_reason) from e

        self._db = db
        self._unavailable_reason = None
        logger.info("%s store at %s", "created new" if fresh else "opened existing", self._path)
        return fresh

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            self._unavailable_reason = "closed"

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageUnavailableError(self._unavailable_reason or "storage not connected")
        return self._db

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._lock:
                cursor = await self._conn().execute("SELECT 1")
                await cursor.fetchone()
            return True
        except aiosqlite.Error:
            logger.exception("storage health check failed")
            return False

    # Stations

    async def upsert_station(self, domain: str, name: str | None, enabled: bool = True) -> None:
        async with self._lock:
            conn = self._conn()
            now = now_utc().isoformat()
            await conn.execute(
                "INSERT INTO stations(domain, name, enabled, created_at, updated_at) VALUES(?, ?, ?, ?, ?) "
                "ON CONFLICT(domain) DO UPDATE SET name=excluded.name, enabled=excluded.enabled, updated_at=excluded.updated_at",
                (domain, name, 1 if enabled else 0, now, now),
            )
            await conn.commit()

    async def get_stations(self) -> list[StationRow]:
        async with self._lock:
            cursor = await self._conn().execute(
                "SELECT domain, name, enabled, last_scraped FROM stations ORDER BY domain"
            )
            rows = await cursor.fetchall()
            return [_station_row(r) for r in rows]

    async def get_station(self, domain: str) -> StationRow | None:
        async with self._lock:
            cursor = await self._conn().execute(
                "SELECT domain, name, enabled, last_scraped FROM stations WHERE domain=?",
                (domain,),
            )
            row = await cursor.fetchone()
            return _station_row(row) if row is not None else None

    async def mark_station_scraped(self, domain: str) -> None:
        async with self._lock:
            conn = self._conn()
            now = now_utc().isoformat()
            await conn.execute(
                "UPDATE stations SET last_scraped=?, updated_at=? WHERE domain=?",
                (now, now, domain),
            )
            await conn.commit()

    # Days and shows

    async def upsert_day(self, station: str, day: str, scraped_at: str | None = None) -> None:
        async with self._lock:
            conn = self._conn()
            await conn.execute(_UPSERT_DAY_SQL, (station, day, scraped_at or now_utc().isoformat()))
            await conn.commit()

    async def get_days(self, station: str, date_from: str | None = None, date_to: str | None = None) -> list[DayRow]:
        sql = "SELECT station_domain, day, scraped_at FROM days WHERE station_domain=?"
        args: list = [station]
        if date_from:
            sql += " AND day >= ?"
            args.append(date_from)
        if date_to:
            sql += " AND day <= ?"
            args.append(date_to)
        sql += " ORDER BY day"

        async with self._lock:
            cursor = await self._conn().execute(sql, tuple(args))
            rows = await cursor.fetchall()
            return [DayRow(**dict(r)) for r in rows]

    async def _insert_shows_locked(self, conn: aiosqlite.Connection, shows: Iterable[NewShow], now: str) -> int:
        inserted = 0
        for s in shows:
            cursor = await conn.execute(
                _INSERT_SHOW_SQL,
                (s.day, s.station_domain, s.dj, s.title, s.start_time, s.end_time, s.style, now),
            )
            inserted += max(0, cursor.rowcount)
        return inserted

    async def upsert_items(self, shows: Iterable[NewShow]) -> int:
        """Insert a batch of shows in one transaction.

        Rows whose slot key already exists are skipped silently. Returns
        the number of new rows. On failure nothing of the batch is kept.
        """
        shows = list(shows)
        async with self._lock:
            conn = self._conn()
            try:
                inserted = await self._insert_shows_locked(conn, shows, now_utc().isoformat())
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise StorageError(f"upsert of {len(shows)} shows failed: {e}") from e
        return inserted

    async def store_day(self, station: str, day: str, shows: list[ScrapedShow], scraped_at: str | None = None) -> int:
        """Record a completed fetch of (station, day) together with its shows."""
        rows = [NewShow.from_scraped(station, day, s) for s in shows]
        async with self._lock:
            conn = self._conn()
            now = now_utc().isoformat()
            try:
                await conn.execute(_UPSERT_DAY_SQL, (station, day, scraped_at or now))
                inserted = await self._insert_shows_locked(conn, rows, now)
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise StorageError(f"storing {station} {day} failed: {e}") from e
        return inserted

    async def get_shows(
        self,
        station: str,
        day: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> list[ShowRow]:
        """Shows of one station ordered by (day, start_time, id).

        An exact ``day`` wins over a range. Without either, every show of
        the station is returned.
        """
        sql = f"SELECT {_SHOW_COLUMNS} FROM shows WHERE station_domain=?"
        args: list = [station]
        if day:
            sql += " AND day = ?"
            args.append(day)
        else:
            if date_from:
                sql += " AND day >= ?"
                args.append(date_from)
            if date_to:
                sql += " AND day <= ?"
                args.append(date_to)
        sql += " ORDER BY day, start_time, id"

        async with self._lock:
            try:
                cursor = await self._conn().execute(sql, tuple(args))
                rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                raise StorageError(f"show query failed: {e}") from e
            return [ShowRow(**dict(r)) for r in rows]

    async def get_show(self, show_id: int) -> ShowRow | None:
        async with self._lock:
            cursor = await self._conn().execute(f"SELECT {_SHOW_COLUMNS} FROM shows WHERE id=?", (show_id,))
            row = await cursor.fetchone()
            return ShowRow(**dict(row)) if row is not None else None

    async def count_shows(self, station: str | None = None) -> int:
        async with self._lock:
            if station:
                cursor = await self._conn().execute("SELECT COUNT(1) AS n FROM shows WHERE station_domain=?", (station,))
            else:
                cursor = await self._conn().execute("SELECT COUNT(1) AS n FROM shows")
            row = await cursor.fetchone()
            return int(row["n"] if row is not None else 0)

    async def cleanup_retention(self, retention_days: int, today: date) -> dict[str, int]:
        """Delete shows and day records dated ``today - retention_days`` or older."""
        cutoff = (today - timedelta(days=retention_days)).isoformat()
        async with self._lock:
            conn = self._conn()
            try:
                c1 = await conn.execute(
                    "DELETE FROM notifications_sent WHERE show_id IN (SELECT id FROM shows WHERE day <= ?)",
                    (cutoff,),
                )
                c2 = await conn.execute("DELETE FROM shows WHERE day <= ?", (cutoff,))
                c3 = await conn.execute("DELETE FROM days WHERE day <= ?", (cutoff,))
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise StorageError(f"retention cleanup failed: {e}") from e

        removed = {"notifications": c1.rowcount, "shows": c2.rowcount, "days": c3.rowcount}
        logger.info("retention cleanup (<= %s): %s", cutoff, removed)
        return removed

    # Bot users

    async def upsert_user(
        self,
        telegram_id: int,
        username: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        language_code: str = "de",
        is_active: bool = True,
    ) -> bool:
        """Create or refresh a bot user. Returns True when the user is new."""
        async with self._lock:
            conn = self._conn()
            now = now_utc().isoformat()
            cursor = await conn.execute("SELECT 1 FROM users WHERE telegram_id=?", (telegram_id,))
            existed = (await cursor.fetchone()) is not None
            await conn.execute(
                "INSERT INTO users(telegram_id, username, first_name, last_name, language_code, is_active, created_at, updated_at) "
                "VALUES(?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(telegram_id) DO UPDATE SET username=excluded.username, first_name=excluded.first_name, "
                "last_name=excluded.last_name, language_code=excluded.language_code, is_active=excluded.is_active, "
                "updated_at=excluded.updated_at",
                (telegram_id, username, first_name, last_name, language_code or "de", 1 if is_active else 0, now, now),
            )
            await conn.commit()
            return not existed

    async def get_user(self, telegram_id: int) -> UserRow | None:
        async with self._lock:
            cursor = await self._conn().execute("SELECT * FROM users WHERE telegram_id=?", (telegram_id,))
            row = await cursor.fetchone()
            return _user_row(row) if row is not None else None

    async def get_active_users(self) -> list[UserRow]:
        async with self._lock:
            cursor = await self._conn().execute("SELECT * FROM users WHERE is_active=1 ORDER BY telegram_id")
            rows = await cursor.fetchall()
            return [_user_row(r) for r in rows]

    # Preferences

    async def get_preferences(self, telegram_id: int) -> Preferences | None:
        async with self._lock:
            cursor = await self._conn().execute(
                "SELECT telegram_id, notification_times_json, timezone FROM user_preferences WHERE telegram_id=?",
                (telegram_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None

        try:
            times = json.loads(row["notification_times_json"])
        except (TypeError, ValueError):
            logger.warning("unreadable notification times for user %s, using default", telegram_id)
            times = [DEFAULT_OFFSET]
        if not isinstance(times, list) or not times:
            times = [DEFAULT_OFFSET]

        return Preferences(
            telegram_id=int(row["telegram_id"]),
            notification_times=[str(t) for t in times],
            timezone=row["timezone"],
        )

    async def set_preferences(self, telegram_id: int, notification_times: list[str], timezone: str) -> None:
        """Replace the user's preferences. Offsets are validated first."""
        times = [t.strip() for t in notification_times if t and t.strip()]
        if not times:
            raise ValueError("at least one notification offset is required")
        for t in times:
            offset_minutes(t)

        async with self._lock:
            conn = self._conn()
            await conn.execute(
                "INSERT INTO user_preferences(telegram_id, notification_times_json, timezone, updated_at) VALUES(?, ?, ?, ?) "
                "ON CONFLICT(telegram_id) DO UPDATE SET notification_times_json=excluded.notification_times_json, "
                "timezone=excluded.timezone, updated_at=excluded.updated_at",
                (telegram_id, json.dumps(times, ensure_ascii=False), timezone, now_utc().isoformat()),
            )
            await conn.commit()

    async def ensure_preferences(self, telegram_id: int, timezone: str) -> Preferences:
        async with self._lock:
            conn = self._conn()
            await conn.execute(
                "INSERT OR IGNORE INTO user_preferences(telegram_id, notification_times_json, timezone, updated_at) "
                "VALUES(?, ?, ?, ?)",
                (telegram_id, json.dumps([DEFAULT_OFFSET]), timezone, now_utc().isoformat()),
            )
            await conn.commit()
        prefs = await self.get_preferences(telegram_id)
        if prefs is None:
            raise StorageError(f"preferences for user {telegram_id} missing after insert")
        return prefs

    # Favorites

    async def add_favorite(self, telegram_id: int, station: str, dj_name: str) -> bool:
        async with self._lock:
            conn = self._conn()
            cursor = await conn.execute(
                "INSERT INTO favorite_djs(telegram_id, station_domain, dj_name, created_at) VALUES(?, ?, ?, ?) "
                "ON CONFLICT(telegram_id, station_domain, dj_name) DO NOTHING",
                (telegram_id, station, dj_name, now_utc().isoformat()),
            )
            await conn.commit()
            return cursor.rowcount > 0

    async def remove_favorite(self, telegram_id: int, station: str, dj_name: str) -> bool:
        async with self._lock:
            conn = self._conn()
            cursor = await conn.execute(
                "DELETE FROM favorite_djs WHERE telegram_id=? AND station_domain=? AND dj_name=?",
                (telegram_id, station, dj_name),
            )
            await conn.commit()
            return cursor.rowcount > 0

    async def get_favorites(self, telegram_id: int) -> list[FavoriteRow]:
        async with self._lock:
            cursor = await self._conn().execute(
                "SELECT id, telegram_id, station_domain, dj_name FROM favorite_djs "
                "WHERE telegram_id=? ORDER BY station_domain, dj_name",
                (telegram_id,),
            )
            rows = await cursor.fetchall()
            return [FavoriteRow(**dict(r)) for r in rows]

    async def get_favorite(self, favorite_id: int) -> FavoriteRow | None:
        async with self._lock:
            cursor = await self._conn().execute(
                "SELECT id, telegram_id, station_domain, dj_name FROM favorite_djs WHERE id=?",
                (favorite_id,),
            )
            row = await cursor.fetchone()
            return FavoriteRow(**dict(row)) if row is not None else None

    # DJ directory

    async def upsert_dj(self, station: str, dj_name: str, real_name: str | None = None, is_active: bool = True) -> None:
        async with self._lock:
            conn = self._conn()
            await conn.execute(
                "INSERT INTO djs(station_domain, dj_name, real_name, is_active, last_updated) VALUES(?, ?, ?, ?, ?) "
                "ON CONFLICT(station_domain, dj_name) DO UPDATE SET real_name=excluded.real_name, "
                "is_active=excluded.is_active, last_updated=excluded.last_updated",
                (station, dj_name, real_name, 1 if is_active else 0, now_utc().isoformat()),
            )
            await conn.commit()

    async def get_djs(self, station: str | None = None) -> list[DjRow]:
        sql = "SELECT * FROM djs WHERE is_active=1"
        args: tuple = ()
        if station:
            sql += " AND station_domain=?"
            args = (station,)
        sql += " ORDER BY station_domain, dj_name"
        async with self._lock:
            cursor = await self._conn().execute(sql, args)
            rows = await cursor.fetchall()
            return [_dj_row(r) for r in rows]

    async def get_dj(self, dj_id: int) -> DjRow | None:
        async with self._lock:
            cursor = await self._conn().execute("SELECT * FROM djs WHERE id=?", (dj_id,))
            row = await cursor.fetchone()
            return _dj_row(row) if row is not None else None

    async def search_djs(self, query: str, station: str | None = None) -> list[DjRow]:
        needle = (query or "").strip().lower()
        if not needle:
            return []
        return [
            dj
            for dj in await self.get_djs(station)
            if needle in dj.dj_name.lower() or (dj.real_name and needle in dj.real_name.lower())
        ]

    # Sent notifications

    async def is_notification_sent(self, telegram_id: int, show_id: int, kind: str) -> bool:
        async with self._lock:
            cursor = await self._conn().execute(
                "SELECT 1 FROM notifications_sent WHERE telegram_id=? AND show_id=? AND kind=?",
                (telegram_id, show_id, kind),
            )
            return (await cursor.fetchone()) is not None

    async def mark_notification_sent(self, telegram_id: int, show_id: int, kind: str) -> bool:
        """Record a sent notification. Returns False if it was already recorded."""
        async with self._lock:
            conn = self._conn()
            try:
                cursor = await conn.execute(
                    "INSERT OR IGNORE INTO notifications_sent(telegram_id, show_id, kind, sent_at) VALUES(?, ?, ?, ?)",
                    (telegram_id, show_id, kind, now_utc().isoformat()),
                )
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise StorageError(f"recording notification failed: {e}") from e
            return cursor.rowcount > 0
