from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


logger = logging.getLogger(__name__)


@dataclass
class RuntimeStats:
    last_notify_ts: float | None = None
    consecutive_failed_units: int = 0
    next_request_allowed_in_seconds: float | None = None


class Metrics:
    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        r = self.registry

        self.runs_started_total = Counter("scrape_runs_started_total", "Scrape runs started", registry=r)
        self.runs_dropped_total = Counter("scrape_runs_dropped_total", "Scrape triggers dropped while busy", registry=r)
        self.run_active = Gauge("scrape_run_active", "1 while a scrape run is in progress", registry=r)
        self.run_duration_seconds = Histogram(
            "scrape_run_duration_seconds",
            "Scrape run duration",
            buckets=(5, 15, 30, 60, 120, 300, 600, 1200),
            registry=r,
        )

        self.fetch_success_total = Counter("fetch_success_total", "Schedule page fetch success", ["station"], registry=r)
        self.fetch_fail_total = Counter("fetch_fail_total", "Schedule page fetch failures", ["station"], registry=r)
        self.shows_extracted_total = Counter("shows_extracted_total", "Shows extracted from pages", registry=r)
        self.shows_inserted_total = Counter("shows_inserted_total", "New shows stored", registry=r)

        self.notifications_sent_total = Counter("notifications_sent_total", "Sent show reminders", registry=r)
        self.notifications_failed_total = Counter("notifications_failed_total", "Failed show reminders", registry=r)

        self.consecutive_failures = Gauge("consecutive_failures", "Consecutive failures", ["type"], registry=r)

    def start_server(self, bind: str, port: int) -> None:
        start_http_server(port, addr=bind, registry=self.registry)
        logger.info("metrics server started at %s:%s", bind, port)

    def set_consecutive(self, typ: str, value: int) -> None:
        self.consecutive_failures.labels(type=typ).set(value)


def write_status_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    tmp.replace(path)
