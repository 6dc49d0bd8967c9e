from __future__ import annotations

import html
import logging
import re
from zoneinfo import ZoneInfo

from telegram import BotCommand, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, ContextTypes

from sendeplan_bot.jobs.notifier import presenter_matches
from sendeplan_bot.jobs.scheduler import ValidationError
from sendeplan_bot.offsets import OffsetError, parse_offsets
from sendeplan_bot.storage.types import Preferences
from sendeplan_bot.telegram.render import (
    NOTIFY_USAGE,
    render_dj_added,
    render_dj_removed,
    render_favorites,
    render_help,
    render_notify_updated,
    render_schedule,
    render_welcome,
)
from sendeplan_bot.utils import today_in


logger = logging.getLogger(__name__)


MAX_CHOICES = 20

BOT_COMMANDS = [
    BotCommand("waobot", "🎵 Sendeplan-Bot starten"),
    BotCommand("djs", "🎧 Meine Lieblings-DJs anzeigen"),
    BotCommand("adddj", "➕ DJ zu Favoriten hinzufügen"),
    BotCommand("removedj", "➖ DJ aus Favoriten entfernen"),
    BotCommand("notify", "⏰ Benachrichtigungszeiten ändern"),
    BotCommand("schedule", "📅 Heutiger Sendeplan"),
    BotCommand("test", "🔔 Test-Benachrichtigung"),
    BotCommand("help", "❓ Hilfe anzeigen"),
]

_ADD_DJ_RE = re.compile(r"^add_dj:(?P<dj_id>\d+)$")
_REMOVE_DJ_RE = re.compile(r"^remove_dj:(?P<fav_id>\d+)$")

STORAGE_DOWN_TEXT = "❌ Die Datenbank ist gerade nicht verfügbar. Bitte später erneut versuchen."


def _get_ctx(application: Application):
    ctx = application.bot_data.get("ctx")
    if ctx is None:
        raise RuntimeError("app context not initialized")
    return ctx


def _is_admin(update: Update, admin_user_id: int) -> bool:
    u = update.effective_user
    return u is not None and u.id == admin_user_id


async def _reply(update: Update, text: str, **kwargs) -> None:
    await update.effective_message.reply_text(text, parse_mode=ParseMode.HTML, **kwargs)


async def _ensure_user(ctx, update: Update) -> Preferences | None:
    """Create or refresh the sender as a bot user and return their preferences."""
    u = update.effective_user
    if u is None:
        return None
    if not ctx.storage.available:
        await _reply(update, STORAGE_DOWN_TEXT)
        return None

    created = await ctx.storage.upsert_user(
        u.id,
        username=u.username,
        first_name=u.first_name,
        last_name=u.last_name,
        language_code=u.language_code or "de",
    )
    if created:
        logger.info("new bot user %s", u.id)
    return await ctx.storage.ensure_preferences(u.id, ctx.config.timezone)


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    prefs = await _ensure_user(ctx, update)
    if prefs is None:
        return
    favorites = await ctx.storage.get_favorites(prefs.telegram_id)
    await _reply(update, render_welcome(update.effective_user.first_name, prefs.notification_times, len(favorites)))


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    await _reply(update, render_help(ctx.catalog.name(s) for s in ctx.config.stations))


async def cmd_djs(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    prefs = await _ensure_user(ctx, update)
    if prefs is None:
        return
    favorites = await ctx.storage.get_favorites(prefs.telegram_id)
    await _reply(update, render_favorites(favorites, ctx.catalog.name))


async def cmd_adddj(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    prefs = await _ensure_user(ctx, update)
    if prefs is None:
        return

    query = " ".join(context.args or []).strip()
    if not query:
        await _reply(update, "Verwendung: /adddj &lt;Name&gt;\nBeispiel: /adddj DJ Cloud Seven")
        return

    hits = await ctx.storage.search_djs(query)
    if not hits:
        await _reply(
            update,
            f"❌ Keine DJs gefunden für \"{html.escape(query)}\".\n\nVersuche es mit einem anderen Namen oder /help.",
        )
        return

    if len(hits) == 1:
        dj = hits[0]
        await ctx.storage.add_favorite(prefs.telegram_id, dj.station_domain, dj.dj_name)
        await _reply(update, render_dj_added(dj, ctx.catalog.name(dj.station_domain)))
        return

    keyboard = InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(f"{dj.dj_name} ({ctx.catalog.name(dj.station_domain)})", callback_data=f"add_dj:{dj.id}")]
            for dj in hits[:MAX_CHOICES]
        ]
    )
    await _reply(update, f"🔍 Mehrere DJs gefunden für \"{html.escape(query)}\":\n\nWähle einen aus:", reply_markup=keyboard)


async def cmd_removedj(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    prefs = await _ensure_user(ctx, update)
    if prefs is None:
        return

    query = " ".join(context.args or []).strip().lower()
    if not query:
        await _reply(update, "Verwendung: /removedj &lt;Name&gt;")
        return

    matches = [f for f in await ctx.storage.get_favorites(prefs.telegram_id) if query in f.dj_name.lower()]
    if not matches:
        await _reply(update, "❌ Kein passender Lieblings-DJ gefunden.\n\nVerwende /djs für deine aktuelle Liste.")
        return

    if len(matches) == 1:
        fav = matches[0]
        await ctx.storage.remove_favorite(prefs.telegram_id, fav.station_domain, fav.dj_name)
        await _reply(update, render_dj_removed(fav.dj_name))
        return

    keyboard = InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(f"{f.dj_name} ({ctx.catalog.name(f.station_domain)})", callback_data=f"remove_dj:{f.id}")]
            for f in matches[:MAX_CHOICES]
        ]
    )
    await _reply(update, "🔍 Mehrere Lieblings-DJs gefunden.\n\nWähle einen zum Entfernen:", reply_markup=keyboard)


async def cmd_notify(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    prefs = await _ensure_user(ctx, update)
    if prefs is None:
        return

    try:
        literals = parse_offsets(" ".join(context.args or []))
    except OffsetError:
        await _reply(update, NOTIFY_USAGE)
        return

    await ctx.storage.set_preferences(prefs.telegram_id, literals, prefs.timezone)
    await _reply(update, render_notify_updated(literals))


async def cmd_schedule(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    prefs = await _ensure_user(ctx, update)
    if prefs is None:
        return

    favorites = await ctx.storage.get_favorites(prefs.telegram_id)
    if not favorites:
        await _reply(update, render_favorites([], ctx.catalog.name))
        return

    today = today_in(ZoneInfo(ctx.config.timezone)).isoformat()
    matches = []
    for fav in favorites:
        shows = await ctx.storage.get_shows(fav.station_domain, day=today)
        matches.append((fav, [s for s in shows if presenter_matches(fav.dj_name, s.dj)]))
    await _reply(update, render_schedule(matches, ctx.catalog.name))


async def cmd_test(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    prefs = await _ensure_user(ctx, update)
    if prefs is None or ctx.notifier is None:
        return

    try:
        await ctx.notifier.send_test(prefs.telegram_id)
    except Exception as e:
        logger.warning("test notification for %s failed: %s", prefs.telegram_id, e)
        await _reply(update, "❌ Test-Benachrichtigung konnte nicht gesendet werden.")
        return
    await _reply(update, "✅ Test-Benachrichtigung gesendet.")


async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    if not _is_admin(update, ctx.config.admin_user_id):
        return

    health = ctx.health()
    status = ctx.coordinator.status()
    last = status["last_run"]
    lines = [
        f"health={health['status']}",
        f"storage={health['storage']['status']} {health['storage']['reason'] or ''}".rstrip(),
        f"run_active={status['active']}",
        f"next_run_at={status['next_run_at']}",
        f"runs_started={status['runs_started']} runs_dropped={status['runs_dropped']}",
        f"consecutive_failed_units={status['consecutive_failed_units']}",
    ]
    if last is not None:
        lines.append(
            f"last_run={last['started_at']} ok={last['units_ok']} failed={last['units_failed']} "
            f"extracted={last['shows_extracted']} inserted={last['shows_inserted']}"
        )
    await update.effective_message.reply_text("\n".join(lines))


async def cmd_scrape(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    if not _is_admin(update, ctx.config.admin_user_id):
        return

    args = list(context.args or [])
    station = None
    if args and not re.match(r"^\d", args[0]):
        station = args.pop(0)

    try:
        accepted = ctx.coordinator.trigger_now(station=station, dates=args or None)
    except ValidationError as e:
        await update.effective_message.reply_text(f"Ungültige Eingabe: {e}")
        return

    await update.effective_message.reply_text(
        "Scrape gestartet" if accepted else "Ein Scrape läuft bereits, Anfrage verworfen"
    )


async def on_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if query is None:
        return

    ctx = _get_ctx(context.application)
    prefs = await _ensure_user(ctx, update)
    if prefs is None:
        await query.answer()
        return

    data = query.data or ""

    m = _ADD_DJ_RE.match(data)
    if m:
        dj = await ctx.storage.get_dj(int(m.group("dj_id")))
        if dj is None:
            await query.answer("DJ nicht gefunden", show_alert=True)
            return
        await ctx.storage.add_favorite(prefs.telegram_id, dj.station_domain, dj.dj_name)
        await query.answer(f"✅ {dj.dj_name} hinzugefügt!")
        try:
            await query.edit_message_text(render_dj_added(dj, ctx.catalog.name(dj.station_domain)), parse_mode=ParseMode.HTML)
        except Exception:
            logger.exception("failed to update add_dj message")
        return

    m = _REMOVE_DJ_RE.match(data)
    if m:
        fav = await ctx.storage.get_favorite(int(m.group("fav_id")))
        if fav is None or fav.telegram_id != prefs.telegram_id:
            await query.answer("Lieblings-DJ nicht gefunden", show_alert=True)
            return
        await ctx.storage.remove_favorite(prefs.telegram_id, fav.station_domain, fav.dj_name)
        await query.answer(f"✅ {fav.dj_name} entfernt!")
        try:
            await query.edit_message_text(render_dj_removed(fav.dj_name), parse_mode=ParseMode.HTML)
        except Exception:
            logger.exception("failed to update remove_dj message")
        return

    await query.answer("Unbekannte Aktion", show_alert=True)


async def _on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.exception("telegram handler error", exc_info=context.error)


def register_handlers(app: Application) -> None:
    app.add_error_handler(_on_error)

    app.add_handler(CommandHandler(["start", "waobot"], cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("djs", cmd_djs))
    app.add_handler(CommandHandler("adddj", cmd_adddj))
    app.add_handler(CommandHandler("removedj", cmd_removedj))
    app.add_handler(CommandHandler("notify", cmd_notify))
    app.add_handler(CommandHandler("schedule", cmd_schedule))
    app.add_handler(CommandHandler("test", cmd_test))
    app.add_handler(CommandHandler("status", cmd_status))
    app.add_handler(CommandHandler("scrape", cmd_scrape))

    app.add_handler(CallbackQueryHandler(on_callback))
