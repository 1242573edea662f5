# completions.py
import logging
from dataclasses import dataclass
from typing import Optional

import recurrence
from models import COMPLETION_COMPLETED, StreakState

logger = logging.getLogger(__name__)

COMPLETED = "completed"
ALREADY_RECORDED = "already_recorded"
NOT_FOUND = "not_found"


@dataclass
class CompletionResult:
    outcome: str
    log_id: Optional[int] = None
    reminder_id: Optional[int] = None
    streak: Optional[StreakState] = None


def on_user_completion(store, ledger, log_id, user_id, now=None):
    """Record that the user acted on a trigger and extend the streak.

    Races the miss detector for the same log; whoever inserts the completion
    first decides the outcome.
    """
    now = now or recurrence.utcnow()
    log = store.get_trigger_log(log_id)
    if log is None or log.user_id != user_id:
        return CompletionResult(NOT_FOUND, log_id=log_id)

    inserted = store.insert_completion_if_absent(
        log.id, log.reminder_id, user_id, log.triggered_at, COMPLETION_COMPLETED, completed_at=now,
    )
    if not inserted:
        return CompletionResult(ALREADY_RECORDED, log_id=log.id, reminder_id=log.reminder_id)

    streak = ledger.update_streak(log.reminder_id, user_id, completed=True, now=now)
    logger.info(f"User {user_id} completed reminder {log.reminder_id} (log {log.id})")
    return CompletionResult(COMPLETED, log_id=log.id, reminder_id=log.reminder_id, streak=streak)


def complete_latest(store, ledger, reminder_id, user_id, now=None):
    """Complete the newest open trigger of a reminder (the "Done" button)."""
    log = store.find_open_log(reminder_id, user_id)
    if log is None:
        if store.has_trigger_log(reminder_id, user_id):
            return CompletionResult(ALREADY_RECORDED, reminder_id=reminder_id)
        return CompletionResult(NOT_FOUND, reminder_id=reminder_id)
    return on_user_completion(store, ledger, log.id, user_id, now=now)
