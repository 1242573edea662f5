# scheduler.py
import asyncio
import logging
import zoneinfo
from dataclasses import dataclass

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

import recurrence
from config import (
    DELIVERY_TIMEOUT_SECONDS, DISPATCH_CONCURRENCY, MISSED_THRESHOLD_MINUTES,
    SCHEDULER_TIMEZONE, WEEKLY_REPORT_DAY, WEEKLY_REPORT_HOUR,
)
from dispatcher import TriggerDispatcher
from misses import MissDetector
from reports import WeeklyReporter
from streaks import StreakLedger

logger = logging.getLogger(__name__)


@dataclass
class TickSummary:
    scanned: int = 0
    due: int = 0
    dispatched: int = 0
    missed: int = 0
    skipped: bool = False


class ReminderScheduler:
    """Runs the minute scan and the weekly report on an AsyncIOScheduler."""

    def __init__(self, store, delivery, timezone=SCHEDULER_TIMEZONE,
                 weekly_day=WEEKLY_REPORT_DAY, weekly_hour=WEEKLY_REPORT_HOUR,
                 concurrency=DISPATCH_CONCURRENCY, delivery_timeout=DELIVERY_TIMEOUT_SECONDS,
                 threshold_minutes=MISSED_THRESHOLD_MINUTES):
        self.store = store
        self.ledger = StreakLedger(store)
        self.dispatcher = TriggerDispatcher(store, delivery, concurrency, delivery_timeout)
        self.miss_detector = MissDetector(store, self.ledger, delivery, threshold_minutes, delivery_timeout)
        self.reporter = WeeklyReporter(store, delivery, delivery_timeout)
        self.timezone = zoneinfo.ZoneInfo(timezone)
        self.weekly_day = weekly_day
        self.weekly_hour = weekly_hour
        self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        self._tick_lock = asyncio.Lock()
        self._weekly_lock = asyncio.Lock()

    async def run_minute_tick(self, now=None):
        summary = TickSummary()
        if self._tick_lock.locked():
            logger.warning("Previous minute tick still running, skipping this one")
            summary.skipped = True
            return summary

        async with self._tick_lock:
            now = now or recurrence.utcnow()
            try:
                reminders = self.store.list_active_reminders()
            except Exception:
                logger.exception("Error loading active reminders")
                reminders = []
            summary.scanned = len(reminders)

            due = []
            for reminder in reminders:
                try:
                    if recurrence.is_due(reminder, now):
                        due.append(reminder)
                except Exception:
                    logger.exception(f"Error evaluating reminder {reminder.id}, skipping")
            summary.due = len(due)
            if due:
                summary.dispatched = await self.dispatcher.dispatch_all(due, now)

            try:
                summary.missed = await self.miss_detector.run(now)
            except Exception:
                logger.exception("Error checking missed reminders")

        if summary.due or summary.missed:
            logger.info(f"Minute tick: scanned={summary.scanned} due={summary.due} "
                        f"dispatched={summary.dispatched} missed={summary.missed}")
        return summary

    async def run_weekly_tick(self, now=None):
        if self._weekly_lock.locked():
            logger.warning("Weekly report run already in progress, skipping")
            return 0
        async with self._weekly_lock:
            try:
                return await self.reporter.run(now)
            except Exception:
                logger.exception("Weekly report error")
                return 0

    def start(self):
        self.scheduler.add_job(
            self.run_minute_tick, CronTrigger(second=0, timezone=self.timezone),
            id="minute_tick", max_instances=1, coalesce=True, replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_weekly_tick,
            CronTrigger(day_of_week=self.weekly_day, hour=self.weekly_hour, minute=0, timezone=self.timezone),
            id="weekly_report", max_instances=1, coalesce=True, replace_existing=True,
        )
        self.scheduler.start()
        logger.info("Reminder scheduler initialized - checking every minute")
        logger.info(f"Weekly report scheduled on {self.weekly_day} at {self.weekly_hour:02d}:00 ({self.timezone.key})")

    async def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        # let an in-flight tick finish its writes
        async with self._tick_lock:
            pass
        logger.info("Reminder scheduler stopped")
