from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ScrapedShow:
    dj: str
    title: str
    start: str
    end: str
    style: str


@dataclass(frozen=True)
class ScrapeResult:
    station: str
    day: str
    shows: list[ScrapedShow] = field(default_factory=list)
    success: bool = True
    error: str | None = None


@dataclass(frozen=True)
class TeamMember:
    dj_name: str
    real_name: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class StationRow:
    domain: str
    name: str | None
    enabled: bool
    last_scraped: str | None


@dataclass(frozen=True)
class DayRow:
    station_domain: str
    day: str
    scraped_at: str


@dataclass(frozen=True)
class ShowRow:
    id: int
    day: str
    station_domain: str
    dj: str
    title: str
    start_time: str
    end_time: str
    style: str
    created_at: str


@dataclass(frozen=True)
class NewShow:
    day: str
    station_domain: str
    dj: str
    title: str
    start_time: str
    end_time: str
    style: str

    @classmethod
    def from_scraped(cls, station: str, day: str, show: ScrapedShow) -> "NewShow":
        return cls(
            day=day,
            station_domain=station,
            dj=show.dj,
            title=show.title,
            start_time=show.start,
            end_time=show.end,
            style=show.style,
        )


@dataclass(frozen=True)
class UserRow:
    telegram_id: int
    username: str | None
    first_name: str | None
    last_name: str | None
    language_code: str
    is_active: bool


@dataclass(frozen=True)
class Preferences:
    telegram_id: int
    notification_times: list[str]
    timezone: str


@dataclass(frozen=True)
class FavoriteRow:
    id: int
    telegram_id: int
    station_domain: str
    dj_name: str


@dataclass(frozen=True)
class DjRow:
    id: int
    station_domain: str
    dj_name: str
    real_name: str | None
    is_active: bool
