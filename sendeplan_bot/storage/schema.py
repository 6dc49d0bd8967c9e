from __future__ import annotations

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS stations (
  domain TEXT PRIMARY KEY,
  name TEXT,
  enabled INTEGER NOT NULL DEFAULT 1,
  last_scraped TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS days (
  station_domain TEXT NOT NULL,
  day TEXT NOT NULL,
  scraped_at TEXT NOT NULL,
  PRIMARY KEY (station_domain, day),
  FOREIGN KEY(station_domain) REFERENCES stations(domain) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS ix_days_day ON days(day);

CREATE TABLE IF NOT EXISTS shows (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  day TEXT NOT NULL,
  station_domain TEXT NOT NULL,
  dj TEXT NOT NULL,
  title TEXT NOT NULL,
  start_time TEXT NOT NULL,
  end_time TEXT NOT NULL,
  style TEXT NOT NULL,
  created_at TEXT NOT NULL,
  FOREIGN KEY(station_domain) REFERENCES stations(domain) ON DELETE CASCADE
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_shows_slot ON shows(day, station_domain, dj, title, start_time, end_time);
CREATE INDEX IF NOT EXISTS ix_shows_station_day_start ON shows(station_domain, day, start_time);

CREATE TABLE IF NOT EXISTS users (
  telegram_id INTEGER PRIMARY KEY,
  username TEXT,
  first_name TEXT,
  last_name TEXT,
  language_code TEXT NOT NULL DEFAULT 'de',
  is_active INTEGER NOT NULL DEFAULT 1,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS ix_users_active ON users(is_active);

CREATE TABLE IF NOT EXISTS user_preferences (
  telegram_id INTEGER PRIMARY KEY,
  notification_times_json TEXT NOT NULL,
  timezone TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  FOREIGN KEY(telegram_id) REFERENCES users(telegram_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS favorite_djs (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  telegram_id INTEGER NOT NULL,
  station_domain TEXT NOT NULL,
  dj_name TEXT NOT NULL,
  created_at TEXT NOT NULL,
  FOREIGN KEY(telegram_id) REFERENCES users(telegram_id) ON DELETE CASCADE
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_favorite_djs ON favorite_djs(telegram_id, station_domain, dj_name);

CREATE TABLE IF NOT EXISTS djs (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  station_domain TEXT NOT NULL,
  dj_name TEXT NOT NULL,
  real_name TEXT,
  is_active INTEGER NOT NULL DEFAULT 1,
  last_updated TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_djs_station_name ON djs(station_domain, dj_name);

CREATE TABLE IF NOT EXISTS notifications_sent (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  telegram_id INTEGER NOT NULL,
  show_id INTEGER NOT NULL,
  kind TEXT NOT NULL,
  sent_at TEXT NOT NULL,
  FOREIGN KEY(telegram_id) REFERENCES users(telegram_id) ON DELETE CASCADE,
  FOREIGN KEY(show_id) REFERENCES shows(id) ON DELETE CASCADE
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_notifications_sent ON notifications_sent(telegram_id, show_id, kind);
CREATE INDEX IF NOT EXISTS ix_notifications_sent_show ON notifications_sent(show_id);
"""
