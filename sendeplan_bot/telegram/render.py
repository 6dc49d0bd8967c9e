from __future__ import annotations

import html
from collections.abc import Callable, Iterable

from sendeplan_bot.offsets import format_offset
from sendeplan_bot.storage.types import DjRow, FavoriteRow, ShowRow
from sendeplan_bot.utils import truncate


MAX_MESSAGE_CHARS = 3800

COMMANDS_HELP = (
    "/djs - Deine Lieblings-DJs anzeigen\n"
    "/adddj &lt;Name&gt; - DJ hinzufügen\n"
    "/removedj &lt;Name&gt; - DJ entfernen\n"
    "/notify &lt;Zeiten&gt; - Benachrichtigungszeiten ändern\n"
    "/schedule - Heutigen Sendeplan anzeigen\n"
    "/test - Test-Benachrichtigung senden\n"
    "/help - Hilfe anzeigen"
)


def _escape_text(s: str | None) -> str:
    return html.escape(s or "")


def _format_offsets(literals: Iterable[str]) -> str:
    return ", ".join(format_offset(t) for t in literals)


def render_reminder(show: ShowRow, station_name: str, offset: str | None = None) -> str:
    time_info = f" ({_escape_text(format_offset(offset))} vorher)" if offset else ""
    lines = [
        f"🎵 <b>Show-Erinnerung{time_info}!</b>",
        "",
        f"<b>{_escape_text(show.dj)}</b> legt um <b>{_escape_text(show.start_time)}</b> "
        f"auf <b>{_escape_text(station_name)}</b> auf!",
        "",
        f"🎧 <b>Show:</b> {_escape_text(show.title)}",
        f"🎭 <b>Style:</b> {_escape_text(show.style)}",
        f"⏰ <b>Zeit:</b> {_escape_text(show.start_time)} - {_escape_text(show.end_time)}",
    ]
    return truncate("\n".join(lines), MAX_MESSAGE_CHARS)


def render_welcome(first_name: str | None, offsets: list[str], favorite_count: int) -> str:
    return (
        "🎵 <b>Willkommen beim Sendeplan-Bot!</b>\n\n"
        f"Hallo {_escape_text(first_name or 'DJ-Fan')}! 👋\n\n"
        "Ich benachrichtige dich, wenn deine Lieblings-DJs on air gehen.\n\n"
        "<b>Deine aktuellen Einstellungen:</b>\n"
        f"• Benachrichtigung: {_escape_text(_format_offsets(offsets))} vor Show-Start\n"
        f"• Lieblings-DJs: {favorite_count} ausgewählt\n\n"
        "<b>Verfügbare Befehle:</b>\n"
        f"{COMMANDS_HELP}"
    )


def render_help(station_names: Iterable[str]) -> str:
    stations = "\n".join(f"• {_escape_text(n)}" for n in station_names)
    return (
        "❓ <b>Sendeplan-Bot - Hilfe</b>\n\n"
        f"{COMMANDS_HELP}\n\n"
        "<b>Beispiele:</b>\n"
        "• /adddj Cloud Seven\n"
        "• /removedj Cloud Seven\n"
        "• /notify 30m, 4h, 1d\n\n"
        "Teile des DJ-Namens reichen, z.B. \"Cloud\" statt \"DJ Cloud Seven\".\n\n"
        f"<b>Unterstützte Stationen:</b>\n{stations}"
    )


def render_favorites(favorites: list[FavoriteRow], station_name: Callable[[str], str]) -> str:
    if not favorites:
        return (
            "🎧 Du hast noch keine Lieblings-DJs ausgewählt.\n\n"
            "Verwende /adddj &lt;Name&gt; um DJs hinzuzufügen."
        )

    by_station: dict[str, list[FavoriteRow]] = {}
    for fav in favorites:
        by_station.setdefault(fav.station_domain, []).append(fav)

    lines = ["🎧 <b>Deine Lieblings-DJs:</b>", ""]
    for station, favs in by_station.items():
        lines.append(f"<b>{_escape_text(station_name(station))}:</b>")
        lines.extend(f"• {_escape_text(f.dj_name)}" for f in favs)
        lines.append("")
    lines.append("Verwende /removedj &lt;Name&gt; um DJs zu entfernen.")
    return truncate("\n".join(lines), MAX_MESSAGE_CHARS)


def render_dj_added(dj: DjRow | FavoriteRow, station_name: str) -> str:
    return f"✅ <b>{_escape_text(dj.dj_name)}</b> zu deinen Lieblings-DJs hinzugefügt!\n\nStation: {_escape_text(station_name)}"


def render_dj_removed(dj_name: str) -> str:
    return f"✅ <b>{_escape_text(dj_name)}</b> aus deinen Lieblings-DJs entfernt!"


def render_schedule(matches: list[tuple[FavoriteRow, list[ShowRow]]], station_name: Callable[[str], str]) -> str:
    blocks: list[str] = []
    for fav, shows in matches:
        if not shows:
            continue
        lines = [f"<b>{_escape_text(fav.dj_name)}</b> ({_escape_text(station_name(fav.station_domain))}):"]
        lines.extend(f"• {_escape_text(s.start_time)} - {_escape_text(s.title)}" for s in shows)
        blocks.append("\n".join(lines))

    if not blocks:
        return (
            "📅 <b>Heutiger Sendeplan:</b>\n\n"
            "Keine Shows deiner Lieblings-DJs heute.\n\n"
            "Verwende /adddj um mehr DJs hinzuzufügen!"
        )
    text = "📅 <b>Heutiger Sendeplan für deine Lieblings-DJs:</b>\n\n" + "\n\n".join(blocks)
    return truncate(text, MAX_MESSAGE_CHARS)


def render_notify_updated(offsets: list[str]) -> str:
    return (
        "✅ Benachrichtigungseinstellung aktualisiert!\n\n"
        f"Du wirst jetzt {_escape_text(_format_offsets(offsets))} vor Show-Start benachrichtigt."
    )


NOTIFY_USAGE = (
    "❌ Ungültiges Zeitformat!\n\n"
    "<b>Gültige Formate:</b>\n"
    "• <code>30m</code> - 30 Minuten\n"
    "• <code>4.5h</code> - 4,5 Stunden\n"
    "• <code>1d</code> - 1 Tag\n"
    "• <code>30m, 4h, 1d</code> - mehrere Zeiten (kommagetrennt)"
)
