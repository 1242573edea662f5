# dispatcher.py
import asyncio
import logging

import recurrence
from config import DELIVERY_TIMEOUT_SECONDS, DISPATCH_CONCURRENCY
from models import LOG_FAILED, LOG_SENT

logger = logging.getLogger(__name__)


class TriggerDispatcher:
    def __init__(self, store, delivery, concurrency=DISPATCH_CONCURRENCY,
                 delivery_timeout=DELIVERY_TIMEOUT_SECONDS):
        self.store = store
        self.delivery = delivery
        self.concurrency = concurrency
        self.delivery_timeout = delivery_timeout

    async def dispatch(self, reminder, now=None):
        """Deliver one due reminder and record the firing. Returns the log id."""
        now = now or recurrence.utcnow()
        status = LOG_SENT
        try:
            await asyncio.wait_for(self.delivery.send_reminder(reminder), timeout=self.delivery_timeout)
        except asyncio.TimeoutError:
            status = LOG_FAILED
            logger.error(f"Delivery of reminder {reminder.id} timed out after {self.delivery_timeout}s")
        except Exception as e:
            status = LOG_FAILED
            logger.error(f"Delivery of reminder {reminder.id} failed: {e}")

        log_id = self.store.record_trigger(reminder.id, reminder.user_id, status, now)
        logger.info(f"Triggered reminder {reminder.id} '{reminder.title}' for user {reminder.user_id} "
                    f"(log {log_id}, {status})")
        return log_id

    async def dispatch_all(self, reminders, now=None):
        """Dispatch a batch with bounded concurrency; returns the number recorded."""
        now = now or recurrence.utcnow()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(reminder):
            async with semaphore:
                try:
                    await self.dispatch(reminder, now)
                    return True
                except Exception:
                    logger.exception(f"Error dispatching reminder {reminder.id}")
                    return False

        results = await asyncio.gather(*(_one(r) for r in reminders))
        return sum(results)
