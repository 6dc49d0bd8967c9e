from __future__ import annotations

import logging
import time

import httpx

from sendeplan_bot.crawler.errors import FetchError, ERROR_HTTP, ERROR_TIMEOUT, ERROR_UNKNOWN
from sendeplan_bot.ratelimit import MinIntervalLimiter


logger = logging.getLogger(__name__)


SCHEDULE_PATH = "/sendeplan"
DAY_TIME_SUFFIX = "%2000:00:00"


def build_schedule_url(station: str, day: str) -> str:
    return f"https://www.{station}{SCHEDULE_PATH}?day={day}{DAY_TIME_SUFFIX}"


def build_team_url(station: str) -> str:
    return f"https://www.{station}/team"


def browser_headers(user_agent: str) -> dict[str, str]:
    # The stations serve a reduced page to clients without a browser profile.
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "de-DE,de;q=0.9,en;q=0.8",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
    }


def _redact_detail(detail: str) -> str:
    detail = detail.strip()
    if len(detail) > 240:
        detail = detail[:240] + "…"
    return detail


class ScheduleFetcher:
    def __init__(
        self,
        limiter: MinIntervalLimiter,
        timeout_seconds: int,
        user_agent: str,
        proxy: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._limiter = limiter
        self._timeout_seconds = timeout_seconds
        self.proxy = proxy or None

        client_kwargs: dict = {
            "follow_redirects": True,
            "timeout": httpx.Timeout(timeout_seconds),
            "headers": browser_headers(user_agent),
        }
        if self.proxy:
            client_kwargs["proxy"] = self.proxy
            logger.info("using upstream proxy %s", self.proxy)
        if transport is not None:
            client_kwargs["transport"] = transport

        self._client = httpx.AsyncClient(**client_kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_schedule(self, station: str, day: str) -> str:
        return await self.fetch(build_schedule_url(station, day))

    async def fetch_team(self, station: str) -> str:
        return await self.fetch(build_team_url(station))

    async def fetch(self, url: str) -> str:
        await self._limiter.acquire()
        started = time.perf_counter()

        try:
            resp = await self._client.get(url)
        except httpx.TimeoutException as e:
            raise FetchError(ERROR_TIMEOUT, _redact_detail(str(e) or "timeout"), url=url) from e
        except httpx.TransportError as e:
            raise FetchError(ERROR_HTTP, _redact_detail(str(e)), url=url) from e
        except Exception as e:  # pragma: no cover
            raise FetchError(ERROR_UNKNOWN, _redact_detail(str(e)), url=url) from e

        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.debug("GET %s -> %s in %sms", url, resp.status_code, duration_ms)

        if not resp.is_success:
            raise FetchError(
                ERROR_HTTP,
                f"{resp.status_code} {resp.reason_phrase}".strip(),
                status_code=resp.status_code,
                url=url,
            )

        return resp.text
