from __future__ import annotations

import logging

from telegram import Bot
from telegram.constants import ParseMode

from sendeplan_bot.storage.types import ShowRow
from sendeplan_bot.telegram.render import render_reminder


logger = logging.getLogger(__name__)


class TelegramDispatcher:
    """Delivers show reminders as HTML messages. Send errors propagate."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def dispatch(self, user_id: int, show: ShowRow, station_name: str, offset: str) -> None:
        await self._bot.send_message(
            chat_id=user_id,
            text=render_reminder(show, station_name, offset),
            parse_mode=ParseMode.HTML,
            disable_web_page_preview=True,
        )
