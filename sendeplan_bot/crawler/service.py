from __future__ import annotations

import logging

from sendeplan_bot.crawler.errors import ERROR_PARSE_FAIL, FetchError
from sendeplan_bot.crawler.http_fetcher import ScheduleFetcher
from sendeplan_bot.crawler.parser import parse_shows
from sendeplan_bot.crawler.team_parser import parse_team_page
from sendeplan_bot.storage.types import ScrapeResult, TeamMember


logger = logging.getLogger(__name__)


class ScraperService:
    def __init__(self, fetcher: ScheduleFetcher) -> None:
        self._fetcher = fetcher

    async def scrape_schedule(self, station: str, day: str) -> ScrapeResult:
        """Fetch and extract one (station, day) page.

        Fetch and parse failures do not raise; they come back as a result
        with ``success=False`` and the error text.
        """
        try:
            html = await self._fetcher.fetch_schedule(station, day)
        except FetchError as e:
            logger.warning("fetch failed station=%s day=%s err=%s", station, day, e)
            return ScrapeResult(station=station, day=day, success=False, error=str(e))

        try:
            shows = parse_shows(html)
        except Exception as e:
            logger.warning("parse failed station=%s day=%s err=%s", station, day, e)
            return ScrapeResult(station=station, day=day, success=False, error=f"{ERROR_PARSE_FAIL}: {e}")

        logger.info("found %s shows for %s on %s", len(shows), station, day)
        return ScrapeResult(station=station, day=day, shows=shows, success=True)

    async def scrape_team(self, station: str) -> list[TeamMember]:
        html = await self._fetcher.fetch_team(station)
        members = parse_team_page(html)
        logger.info("found %s DJs on %s team page", len(members), station)
        return members

    async def aclose(self) -> None:
        await self._fetcher.aclose()
