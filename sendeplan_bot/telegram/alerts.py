from __future__ import annotations

import logging

from telegram import Bot


logger = logging.getLogger(__name__)


async def maybe_send_consecutive_failure_alert(
    bot: Bot,
    alert_chat_id: int,
    name: str,
    count: int,
    threshold: int,
) -> bool:
    if threshold <= 0 or not alert_chat_id:
        return False
    if count != threshold:
        # only alert on the edge to avoid spamming
        return False

    text = (
        f"Warnung: {name} ist {count}x in Folge fehlgeschlagen (Schwelle {threshold}). "
        "Bitte Logs und Erreichbarkeit der Sendeplan-Seiten prüfen."
    )
    try:
        await bot.send_message(chat_id=alert_chat_id, text=text)
    except Exception:
        logger.exception("failed to send alert")
        return False
    return True
