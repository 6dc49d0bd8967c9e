from __future__ import annotations

import pytest

from sendeplan_bot.storage.db import Storage


STATION = "technobase.fm"


@pytest.fixture
async def storage(tmp_path):
    s = Storage(tmp_path / "schedule.db")
    await s.connect()
    await s.upsert_station(STATION, "Technobase.FM")
    await s.upsert_station("housetime.fm", "Housetime.FM")
    yield s
    await s.close()
