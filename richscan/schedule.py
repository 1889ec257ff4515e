"""Cron-driven trigger for recurring scan passes."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from croniter import croniter

from richscan.scanner import ScanEngine, ScanError


_LOGGER = logging.getLogger("richscan.schedule")


def next_run(expression: str, after: datetime) -> datetime:
    return croniter(expression, after).get_next(datetime)


def validate_schedule(expression: str) -> bool:
    return bool(expression) and croniter.is_valid(expression)


def run_scan_safely(engine: ScanEngine, trigger: str) -> None:
    """Run a non-blocking pass and log the outcome; the service keeps running on failure."""

    _LOGGER.info("scan triggered by=%s", trigger)
    try:
        result = engine.scan(blocking=False)
    except ScanError as exc:
        _LOGGER.error(
            "scan failed by=%s height=%s last_scanned=%s error=%s",
            trigger,
            exc.height,
            exc.last_scanned_height,
            exc,
        )
        return
    except Exception:
        _LOGGER.exception("scan crashed by=%s", trigger)
        return
    if result is not None:
        _LOGGER.info("scan finished by=%s result=%s", trigger, result.to_dict())


class CronScheduler:
    """Runs ``engine.scan`` on a background thread at each cron fire time (UTC)."""

    def __init__(
        self,
        engine: ScanEngine,
        expression: str,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if not validate_schedule(expression):
            raise ValueError(f"Invalid cron schedule: {expression!r}")
        self.engine = engine
        self.expression = expression
        self._now = now
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="richscan-cron", daemon=True)
        self._thread.start()
        _LOGGER.info("cron scheduler started schedule=%s next=%s", self.expression, self.next_fire())

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)

    def next_fire(self) -> datetime:
        return next_run(self.expression, self._now())

    def _loop(self) -> None:
        last_fire: Optional[datetime] = None
        while not self._stop.is_set():
            now = self._now()
            # never re-fire the same slot when the wait wakes a little early
            fire_at = next_run(self.expression, max(now, last_fire) if last_fire else now)
            last_fire = fire_at
            wait = max((fire_at - self._now()).total_seconds(), 0.0)
            if self._stop.wait(wait):
                break
            run_scan_safely(self.engine, trigger=f"cron@{fire_at.isoformat()}")
