# misses.py
import asyncio
import datetime
import logging

import recurrence
from config import DELIVERY_TIMEOUT_SECONDS, MISSED_THRESHOLD_MINUTES
from models import COMPLETION_MISSED

logger = logging.getLogger(__name__)


class MissDetector:
    def __init__(self, store, ledger, delivery, threshold_minutes=MISSED_THRESHOLD_MINUTES,
                 delivery_timeout=DELIVERY_TIMEOUT_SECONDS):
        self.store = store
        self.ledger = ledger
        self.delivery = delivery
        self.threshold = datetime.timedelta(minutes=threshold_minutes)
        self.delivery_timeout = delivery_timeout

    async def run(self, now=None):
        """Record every overdue, unacknowledged trigger as missed. Returns the count."""
        now = now or recurrence.utcnow()
        logs = self.store.list_unacknowledged_logs(now - self.threshold)
        missed = 0
        for log in logs:
            try:
                if await self.mark_missed(log, now):
                    missed += 1
            except Exception:
                logger.exception(f"Error marking log {log.id} as missed")
        return missed

    async def mark_missed(self, log, now=None):
        now = now or recurrence.utcnow()
        inserted = self.store.insert_completion_if_absent(
            log.id, log.reminder_id, log.user_id, log.triggered_at, COMPLETION_MISSED, completed_at=now,
        )
        if not inserted:
            return False

        self.ledger.update_streak(log.reminder_id, log.user_id, completed=False, now=now)
        try:
            await asyncio.wait_for(self.delivery.send_missed(log), timeout=self.delivery_timeout)
        except Exception as e:
            logger.error(f"Missed notification for log {log.id} failed: {e!r}")
        logger.info(f"Marked as missed: log {log.id} reminder {log.reminder_id} for user {log.user_id}")
        return True
