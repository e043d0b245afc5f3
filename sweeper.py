"""
Auto-logout sweeper.

At each bell time in the schedule everybody still checked in is checked
out. The check is level-triggered: something polls tick() at least once a
minute and the sweep fires when the local time of day equals a scheduled
HH:MM that has not already fired today.
"""
from __future__ import annotations

import atexit
import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ledger import CheckoutActor, StorageUnavailable, utc_now

logger = logging.getLogger(__name__)


def parse_schedule(raw) -> List[str]:
    """Accept 'HH:MM,HH:MM' or a list of strings; return sorted, de-duplicated HH:MM values."""
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    times = set()
    for item in items:
        item = item.strip()
        if not item:
            continue
        try:
            parsed = datetime.strptime(item, "%H:%M")
        except ValueError:
            raise ValueError(f"Invalid auto-logout time {item!r}; expected HH:MM") from None
        times.add(parsed.strftime("%H:%M"))
    if not times:
        raise ValueError("Auto-logout schedule is empty")
    return sorted(times)


class AutoLogoutSweeper:

    def __init__(self, sweep: Callable[[], int], times, tz="America/New_York",
                 clock: Callable[[], datetime] = utc_now):
        self.sweep = sweep
        self.times = parse_schedule(times)
        self.tz = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)
        self.clock = clock
        self.last_fired_slot: Optional[str] = None
        self._lock = threading.Lock()

    def local_now(self, now: Optional[datetime] = None) -> datetime:
        return (now or self.clock()).astimezone(self.tz)

    def time_of_day(self, now: Optional[datetime] = None) -> str:
        return self.local_now(now).strftime("%H:%M")

    def slot_key(self, now: Optional[datetime] = None) -> str:
        local = self.local_now(now)
        return f"{local.date().isoformat()} {local.strftime('%H:%M')}"

    def is_logout_time(self, now: Optional[datetime] = None) -> bool:
        return self.time_of_day(now) in self.times

    def next_scheduled_time(self, now: Optional[datetime] = None) -> Tuple[str, bool]:
        """Next slot strictly after now as (HH:MM, is_tomorrow)."""
        current = self.time_of_day(now)
        for slot in self.times:
            if slot > current:
                return slot, False
        return self.times[0], True

    def tick(self, now: Optional[datetime] = None) -> Optional[int]:
        """
        Fire the sweep if now is a scheduled slot that has not fired yet.
        Returns the number of sessions closed, or None when nothing ran.
        """
        local = self.local_now(now)
        current = local.strftime("%H:%M")
        if current not in self.times:
            return None

        slot_key = self.slot_key(local)
        with self._lock:
            if self.last_fired_slot == slot_key:
                return None
            logger.info("Auto-logout slot %s reached", current)
            try:
                count = self.sweep()
            except StorageUnavailable as e:
                # Not marked as fired, so the next poll within this minute retries.
                logger.error("Auto-logout at %s failed: %s", current, e)
                return None
            self.last_fired_slot = slot_key
        logger.info("Auto-logout at %s checked out %d member(s)", current, count)
        return count

    def schedule_info(self, now: Optional[datetime] = None) -> dict:
        next_slot, tomorrow = self.next_scheduled_time(now)
        return {
            "currentTime": self.time_of_day(now),
            "timezone": self.tz.key,
            "scheduledTimes": list(self.times),
            "nextLogoutTime": f"{next_slot} (tomorrow)" if tomorrow else next_slot,
            "isLogoutTime": self.is_logout_time(now),
            "lastFiredSlot": self.last_fired_slot,
        }


def build_sweeper(app) -> AutoLogoutSweeper:
    """Sweeper bound to the app's ledger; the sweep itself runs inside an app context."""
    def sweep():
        with app.app_context():
            ledger = app.extensions["presence_ledger"]
            return ledger.force_checkout_all(actor=CheckoutActor.SCHEDULER)

    return AutoLogoutSweeper(
        sweep,
        app.config["AUTO_LOGOUT_TIMES"],
        tz=app.config["CHECKIN_TIMEZONE"],
    )


def add_poll_job(scheduler, sweeper: AutoLogoutSweeper, poll_seconds: int):
    if not 1 <= poll_seconds <= 60:
        raise ValueError("AUTO_LOGOUT_POLL_SECONDS must be between 1 and 60")
    scheduler.add_job(
        sweeper.tick,
        IntervalTrigger(seconds=poll_seconds),
        id='auto-logout-poll',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )


def start_scheduler(app):
    """
    Start the in-process poll for the web dyno / local development.
    Returns None without starting anything when auto-logout is disabled
    or the app is under test.
    """
    if not app.config.get("AUTO_LOGOUT_ENABLED") or app.config.get("TESTING"):
        return None
    sweeper = app.extensions["auto_logout_sweeper"]
    scheduler = BackgroundScheduler(timezone=sweeper.tz)
    add_poll_job(scheduler, sweeper, app.config["AUTO_LOGOUT_POLL_SECONDS"])
    scheduler.start()
    app.extensions["auto_logout_scheduler"] = scheduler
    atexit.register(shutdown_scheduler, app)
    app.logger.info(
        "Auto-logout scheduler started (%s, every %ss)",
        ", ".join(sweeper.times), app.config["AUTO_LOGOUT_POLL_SECONDS"],
    )
    return scheduler


def shutdown_scheduler(app):
    scheduler = app.extensions.pop("auto_logout_scheduler", None)
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
