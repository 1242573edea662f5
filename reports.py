# reports.py
import asyncio
import datetime
import logging

import recurrence
from config import DELIVERY_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

REPORT_WINDOW = datetime.timedelta(days=7)
TOP_STREAKS = 5


def build_report(stats, streaks):
    total = stats["total"]
    completion_rate = round(stats["completed"] / total * 100, 1) if total else 0.0
    ranked = [
        {
            "reminder_id": s.reminder_id,
            "title": s.reminder.title,
            "current_streak": s.current_streak,
            "longest_streak": s.longest_streak,
        }
        for s in streaks
    ]
    return {
        "total": total,
        "completed": stats["completed"],
        "missed": stats["missed"],
        "completion_rate": completion_rate,
        "total_streak": sum(s["current_streak"] or 0 for s in ranked),
        "longest_streak": ranked[0] if ranked else None,
        "streaks": ranked[:TOP_STREAKS],
    }


class WeeklyReporter:
    def __init__(self, store, delivery, delivery_timeout=DELIVERY_TIMEOUT_SECONDS):
        self.store = store
        self.delivery = delivery
        self.delivery_timeout = delivery_timeout

    async def run(self, now=None):
        """Send last week's report to every user with activity. Returns reports sent."""
        now = now or recurrence.utcnow()
        sent = 0
        for user in self.store.list_users():
            try:
                if await self.send_for_user(user, now):
                    sent += 1
            except Exception:
                logger.exception(f"Error generating weekly report for user {user.id}")
        logger.info(f"Weekly reports sent: {sent}")
        return sent

    async def send_for_user(self, user, now):
        week_start = now - REPORT_WINDOW
        stats = self.store.aggregate_completions(user.id, week_start)
        if stats["total"] == 0:
            return False

        report = build_report(stats, self.store.list_streaks(user.id))
        await asyncio.wait_for(self.delivery.send_weekly_report(user, report), timeout=self.delivery_timeout)
        self.store.save_weekly_report(
            user.id, week_start, now, stats, report["completion_rate"], report, sent_at=recurrence.utcnow(),
        )
        logger.info(f"Weekly report sent to user {user.id}")
        return True
