from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

from .log import get_logger
from .model import ScanReport

log = get_logger(__name__)

INTERVAL_KEY = "scheduledScanInterval"
LAST_SCAN_KEY = "lastScheduledScan"
BADGE_KEY = "badge"
DAY_S = 24 * 60 * 60


class Scheduler:
    """Persisted scan schedule.

    The host's timer (cron, a systemd timer) runs `rotmarks scheduled-scan`
    periodically; `is_due` decides whether a scan actually happens.
    """

    def __init__(self, kv, *, clock: Callable[[], float] = time.time):
        self.kv = kv
        self.clock = clock

    def set_schedule(self, days: int) -> None:
        days = int(days)
        if days < 0:
            raise ValueError("schedule interval cannot be negative")
        if days > 0:
            self.kv.set(INTERVAL_KEY, days)
            log.info("Scheduled scan every %d day(s).", days)
        else:
            self.kv.remove(INTERVAL_KEY)
            log.info("Scheduled scan disabled.")

    def get_schedule(self) -> Dict[str, Any]:
        return {
            "intervalDays": int(self.kv.get(INTERVAL_KEY, 0) or 0),
            "lastScan": self.kv.get(LAST_SCAN_KEY),
        }

    def is_due(self, now: Optional[float] = None) -> bool:
        sched = self.get_schedule()
        if sched["intervalDays"] <= 0:
            return False
        last = sched["lastScan"]
        if not last:
            return True
        now_s = self.clock() if now is None else now
        return now_s - int(last["timestamp"]) / 1000 >= sched["intervalDays"] * DAY_S

    def record_scheduled_scan(self, report: ScanReport) -> None:
        self.kv.set(
            LAST_SCAN_KEY,
            {
                "timestamp": int(self.clock() * 1000),
                "fixed": len(report.fixed),
                "broken": len(report.broken),
                "unchanged": report.unchanged,
            },
        )
        self.update_badge(len(report.fixed) + len(report.broken))

    def update_badge(self, issue_count: int) -> None:
        self.kv.set(BADGE_KEY, str(issue_count) if issue_count > 0 else "")

    def badge(self) -> str:
        return self.kv.get(BADGE_KEY, "") or ""
