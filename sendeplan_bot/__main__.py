from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from dotenv import load_dotenv
from telegram import Update
from telegram.ext import Application, ApplicationBuilder

from sendeplan_bot.config import Config, load_config
from sendeplan_bot.logging_setup import setup_logging
from sendeplan_bot.jobs.pipeline import build_app_context, start_background_jobs, stop_background_jobs
from sendeplan_bot.telegram.bot import BOT_COMMANDS, register_handlers


logger = logging.getLogger(__name__)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sendeplan-bot")
    parser.add_argument(
        "--env",
        default=".env",
        help="Path to .env file (default: .env).",
    )
    return parser.parse_args()


def _run_with_telegram(config: Config) -> None:
    async def post_init(application: Application) -> None:
        ctx = await build_app_context(config, bot=application.bot)
        application.bot_data["ctx"] = ctx
        await application.bot.set_my_commands(BOT_COMMANDS)
        await start_background_jobs(ctx)
        logger.info("bot started")

    async def post_shutdown(application: Application) -> None:
        ctx = application.bot_data.get("ctx")
        if ctx is not None:
            await stop_background_jobs(ctx)
        logger.info("bot stopped")

    application = (
        ApplicationBuilder()
        .token(config.bot_token)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    register_handlers(application)

    application.run_polling(
        allowed_updates=Update.ALL_TYPES,
        close_loop=False,
    )


async def _run_headless(config: Config) -> None:
    ctx = await build_app_context(config)
    await start_background_jobs(ctx)
    logger.info("scraper started without telegram")
    try:
        await asyncio.Event().wait()
    finally:
        await stop_background_jobs(ctx)
        logger.info("scraper stopped")


def main() -> None:
    args = _parse_args()
    env_path = Path(args.env)
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()

    config = load_config()
    setup_logging(config.log_level, config.log_file)

    if config.telegram_enabled:
        _run_with_telegram(config)
        return

    try:
        asyncio.run(_run_headless(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
