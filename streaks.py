# streaks.py
import logging

import recurrence

logger = logging.getLogger(__name__)


def apply_event(streak, completed, now):
    if completed:
        streak.current_streak = (streak.current_streak or 0) + 1
        streak.longest_streak = max(streak.longest_streak or 0, streak.current_streak)
        streak.last_completed = now
    else:
        streak.current_streak = 0
        streak.longest_streak = streak.longest_streak or 0
    streak.last_updated = now
    return streak


class StreakLedger:
    """Per-reminder completion streaks.

    Does not deduplicate events: the caller must only report an occurrence
    after winning the completion insert for its trigger log.
    """

    def __init__(self, store):
        self.store = store

    def update_streak(self, reminder_id, user_id, completed, now=None):
        if self.store.get_reminder(reminder_id) is None:
            logger.warning(f"Streak update for unknown reminder {reminder_id}, skipping")
            return None
        now = now or recurrence.utcnow()
        # No await between load and save, so event-loop callers cannot interleave here.
        streak = self.store.get_or_create_streak(user_id, reminder_id)
        apply_event(streak, completed, now)
        streak = self.store.save_streak(streak)
        logger.info(
            f"Streak for reminder {reminder_id} (user {user_id}): "
            f"current={streak.current_streak} longest={streak.longest_streak}"
        )
        return streak
