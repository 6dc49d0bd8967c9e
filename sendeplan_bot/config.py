from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os


def _env_str(name: str, default: str | None = None) -> str:
    value = os.getenv(name)
    if value is None:
        if default is None:
            raise RuntimeError(f"Missing required env: {name}")
        return default
    return value


def _env_int(name: str, default: int | None = None) -> int:
    value = os.getenv(name)
    if value is None:
        if default is None:
            raise RuntimeError(f"Missing required env: {name}")
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    return float(value)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip().lower()
    return value in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = _env_str(name, default)
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Config:
    # Stations
    stations: tuple[str, ...]
    stations_file: Path

    # Scheduling
    cron_schedule: str
    timezone: str
    retention_days: int
    notify_interval_seconds: int

    # Fetching
    scraper_proxy: str
    http_timeout_seconds: int
    request_delay_seconds: float
    user_agent: str

    # Storage
    sqlite_path: Path

    # Telegram
    telegram_enabled: bool
    bot_token: str
    admin_user_id: int
    alert_chat_id: int
    alert_n_fetch: int

    # Metrics
    metrics_enabled: bool
    metrics_bind: str
    metrics_port: int
    status_json_path: Path

    # Logging
    log_level: str
    log_file: str


def load_config() -> Config:
    telegram_enabled = _env_bool("TELEGRAM_ENABLED", False)
    return Config(
        stations=_env_list("STATIONS", "technobase.fm"),
        stations_file=Path(_env_str("STATIONS_FILE", "config/stations.yaml")),
        cron_schedule=_env_str("CRON_SCHEDULE", "0 */2 * * *"),
        timezone=_env_str("TIMEZONE", "Europe/Berlin"),
        retention_days=_env_int("RETENTION_DAYS", 60),
        notify_interval_seconds=_env_int("NOTIFY_INTERVAL_SECONDS", 900),
        scraper_proxy=_env_str("SCRAPER_PROXY", ""),
        http_timeout_seconds=_env_int("HTTP_TIMEOUT_SECONDS", 30),
        request_delay_seconds=_env_float("REQUEST_DELAY_SECONDS", 2.0),
        user_agent=_env_str(
            "USER_AGENT",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
        ),
        sqlite_path=Path(_env_str("SQLITE_PATH", "data/schedule.db")),
        telegram_enabled=telegram_enabled,
        bot_token=_env_str("BOT_TOKEN") if telegram_enabled else _env_str("BOT_TOKEN", ""),
        admin_user_id=_env_int("ADMIN_USER_ID", 0),
        alert_chat_id=_env_int("ALERT_CHAT_ID", 0),
        alert_n_fetch=_env_int("ALERT_N_FETCH", 10),
        metrics_enabled=_env_bool("METRICS_ENABLED", False),
        metrics_bind=_env_str("METRICS_BIND", "127.0.0.1"),
        metrics_port=_env_int("METRICS_PORT", 9109),
        status_json_path=Path(_env_str("STATUS_JSON_PATH", "data/status.json")),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        log_file=_env_str("LOG_FILE", ""),
    )
