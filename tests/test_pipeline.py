from __future__ import annotations

import asyncio
import dataclasses
import json

import httpx

from sendeplan_bot.config import load_config
from sendeplan_bot.jobs.pipeline import build_app_context, start_background_jobs, stop_background_jobs, write_status
from sendeplan_bot.telegram.alerts import maybe_send_consecutive_failure_alert
from sendeplan_bot.telegram.dispatch import TelegramDispatcher
from sendeplan_bot.storage.types import ShowRow

from html_fixtures import TECHNOBASE_2025_01_15


TEAM_PAGE = """
<html><body>
  <h2>Resident DJs</h2>
  <ul><li>DJ Alpha ### Anna Alpha</li><li>Beta</li></ul>
</body></html>
"""


class FakeBot:
    def __init__(self) -> None:
        self.messages: list[dict] = []

    async def send_message(self, **kwargs) -> None:
        self.messages.append(kwargs)


def _config(tmp_path, **overrides):
    base = load_config()
    return dataclasses.replace(
        base,
        stations=("technobase.fm",),
        stations_file=tmp_path / "stations.yaml",
        sqlite_path=tmp_path / "db" / "schedule.db",
        status_json_path=tmp_path / "status.json",
        request_delay_seconds=0.0,
        metrics_enabled=False,
        **overrides,
    )


def _transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/team":
            return httpx.Response(200, text=TEAM_PAGE)
        return httpx.Response(200, text=TECHNOBASE_2025_01_15)

    return httpx.MockTransport(handler)


async def test_context_end_to_end(tmp_path):
    ctx = await build_app_context(_config(tmp_path), transport=_transport())
    try:
        assert ctx.health() == {"status": "ok", "storage": {"status": "ok", "reason": None}}
        assert [s.name for s in await ctx.storage.get_stations()] == ["Technobase.FM"]

        report = await ctx.coordinator.run(dates=["2025-01-15"])
        assert report.shows_inserted == 3

        assert await ctx.refresh_dj_directory() == 2
        assert [d.dj_name for d in await ctx.storage.search_djs("alpha")] == ["DJ Alpha"]

        write_status(ctx)
        data = json.loads((tmp_path / "status.json").read_text(encoding="utf-8"))
        assert data["health"]["status"] == "ok"
        assert data["scrape"]["last_run"]["shows_inserted"] == 3
        assert data["notify"]["enabled"] is False
    finally:
        await stop_background_jobs(ctx)


async def test_unusable_database_gives_degraded_health(tmp_path):
    config = _config(tmp_path)
    config = dataclasses.replace(config, sqlite_path=tmp_path)

    ctx = await build_app_context(config, transport=_transport())
    try:
        health = ctx.health()
        assert health["status"] == "degraded"
        assert health["storage"]["reason"]
        assert await ctx.coordinator.run() is None
        assert await ctx.refresh_dj_directory() == 0
    finally:
        await stop_background_jobs(ctx)


async def test_alert_only_on_threshold_edge():
    bot = FakeBot()

    assert await maybe_send_consecutive_failure_alert(bot, 99, "Sendeplan-Abruf", 9, 10) is False
    assert await maybe_send_consecutive_failure_alert(bot, 99, "Sendeplan-Abruf", 10, 10) is True
    assert await maybe_send_consecutive_failure_alert(bot, 99, "Sendeplan-Abruf", 11, 10) is False
    assert await maybe_send_consecutive_failure_alert(bot, 0, "Sendeplan-Abruf", 10, 10) is False

    assert len(bot.messages) == 1
    assert bot.messages[0]["chat_id"] == 99


async def test_dispatcher_sends_html_reminder():
    bot = FakeBot()
    show = ShowRow(
        id=1,
        day="2025-01-15",
        station_domain="technobase.fm",
        dj="DJ <Alpha>",
        title="Evening",
        start_time="18:00",
        end_time="20:00",
        style="Techno",
        created_at="2025-01-15T00:00:00+00:00",
    )

    await TelegramDispatcher(bot).dispatch(7, show, "Technobase.FM", "30m")

    (msg,) = bot.messages
    assert msg["chat_id"] == 7
    assert msg["parse_mode"] == "HTML"
    assert "DJ &lt;Alpha&gt;" in msg["text"]
    assert "30m vorher" in msg["text"]
    assert "18:00 - 20:00" in msg["text"]


async def test_notify_job_runs_when_bot_is_present(tmp_path):
    ctx = await build_app_context(_config(tmp_path), bot=FakeBot(), transport=_transport())
    try:
        assert ctx.notifier is not None
        await start_background_jobs(ctx)
        for _ in range(200):
            if ctx.runtime_stats.last_notify_ts is not None:
                break
            await asyncio.sleep(0.01)

        assert ctx.runtime_stats.last_notify_ts is not None
        assert {t.get_name() for t in ctx.tasks} >= {"notify_job", "dj_directory_job"}
    finally:
        await stop_background_jobs(ctx)
