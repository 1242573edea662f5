# store.py
import logging

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import contains_eager, joinedload

import recurrence
from database import SessionLocal
from models import (
    COMPLETION_COMPLETED, COMPLETION_MISSED, LOG_SENT, Completion, Reminder,
    StreakState, TriggerLog, User, WeeklyReport,
)

logger = logging.getLogger(__name__)


class ReminderStore:
    """SQLAlchemy-backed reminder, trigger log, completion and streak store.

    Every method opens its own session and returns detached objects; sessions
    are created with ``expire_on_commit=False`` so the returned rows stay
    readable.
    """

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    # --- users / reminders ---

    def create_user(self, user_id, name="", timezone="UTC"):
        db = self.session_factory()
        try:
            user = db.get(User, user_id)
            if user is None:
                user = User(id=user_id, name=name, timezone=timezone)
                db.add(user)
                db.commit()
            return user
        finally:
            db.close()

    def get_user(self, user_id):
        db = self.session_factory()
        try:
            return db.get(User, user_id)
        finally:
            db.close()

    def set_user_timezone(self, user_id, timezone):
        db = self.session_factory()
        try:
            result = db.execute(update(User).where(User.id == user_id).values(timezone=timezone))
            db.commit()
            return result.rowcount > 0
        finally:
            db.close()

    def list_users(self):
        db = self.session_factory()
        try:
            return list(db.execute(select(User).order_by(User.id)).scalars())
        finally:
            db.close()

    def create_reminder(self, user_id, title, reminder_time, recurrence_type,
                        weekly_days=None, description=None, is_active=True):
        recurrence.validate(recurrence_type, reminder_time, weekly_days)
        db = self.session_factory()
        try:
            reminder = Reminder(
                user_id=user_id,
                title=title,
                description=description,
                reminder_time=reminder_time,
                recurrence_type=recurrence_type,
                weekly_days=sorted(weekly_days) if weekly_days else None,
                is_active=is_active,
            )
            db.add(reminder)
            db.commit()
            return reminder
        finally:
            db.close()

    def get_reminder(self, reminder_id):
        db = self.session_factory()
        try:
            return db.execute(
                select(Reminder).options(joinedload(Reminder.owner)).where(Reminder.id == reminder_id)
            ).scalar_one_or_none()
        finally:
            db.close()

    def list_active_reminders(self):
        db = self.session_factory()
        try:
            stmt = (
                select(Reminder)
                .join(Reminder.owner)
                .options(contains_eager(Reminder.owner))
                .where(Reminder.is_active == True)  # noqa: E712
                .order_by(Reminder.id)
            )
            return list(db.execute(stmt).scalars())
        finally:
            db.close()

    # --- trigger log ---

    def update_last_triggered(self, reminder_id, timestamp):
        db = self.session_factory()
        try:
            db.execute(update(Reminder).where(Reminder.id == reminder_id).values(last_triggered=timestamp))
            db.commit()
        finally:
            db.close()

    def append_trigger_log(self, reminder_id, user_id, status, triggered_at=None):
        db = self.session_factory()
        try:
            log = TriggerLog(
                reminder_id=reminder_id,
                user_id=user_id,
                triggered_at=triggered_at or recurrence.utcnow(),
                status=status,
            )
            db.add(log)
            db.commit()
            return log.id
        finally:
            db.close()

    def record_trigger(self, reminder_id, user_id, status, triggered_at):
        """Append the trigger log row and stamp last_triggered in one transaction."""
        db = self.session_factory()
        try:
            log = TriggerLog(reminder_id=reminder_id, user_id=user_id, triggered_at=triggered_at, status=status)
            db.add(log)
            db.execute(update(Reminder).where(Reminder.id == reminder_id).values(last_triggered=triggered_at))
            db.commit()
            return log.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get_trigger_log(self, log_id):
        db = self.session_factory()
        try:
            return db.execute(
                select(TriggerLog)
                .options(joinedload(TriggerLog.reminder), joinedload(TriggerLog.owner))
                .where(TriggerLog.id == log_id)
            ).scalar_one_or_none()
        finally:
            db.close()

    def _open_logs(self):
        return (
            select(TriggerLog)
            .join(Reminder, TriggerLog.reminder_id == Reminder.id)
            .outerjoin(Completion, Completion.log_id == TriggerLog.id)
            .where(Completion.id.is_(None))
            .options(joinedload(TriggerLog.reminder), joinedload(TriggerLog.owner))
        )

    def list_unacknowledged_logs(self, older_than):
        db = self.session_factory()
        try:
            stmt = (
                self._open_logs()
                .where(TriggerLog.status == LOG_SENT)
                .where(TriggerLog.triggered_at <= older_than)
                .order_by(TriggerLog.triggered_at)
            )
            return list(db.execute(stmt).scalars())
        finally:
            db.close()

    def list_pending_logs(self, user_id, limit=50):
        db = self.session_factory()
        try:
            stmt = (
                self._open_logs()
                .where(TriggerLog.user_id == user_id)
                .order_by(TriggerLog.triggered_at.desc())
                .limit(limit)
            )
            return list(db.execute(stmt).scalars())
        finally:
            db.close()

    def find_open_log(self, reminder_id, user_id):
        """Newest trigger log of the reminder that has no completion yet."""
        db = self.session_factory()
        try:
            stmt = (
                self._open_logs()
                .where(TriggerLog.reminder_id == reminder_id, TriggerLog.user_id == user_id)
                .order_by(TriggerLog.triggered_at.desc(), TriggerLog.id.desc())
                .limit(1)
            )
            return db.execute(stmt).scalars().first()
        finally:
            db.close()

    def has_trigger_log(self, reminder_id, user_id):
        db = self.session_factory()
        try:
            stmt = select(TriggerLog.id).where(TriggerLog.reminder_id == reminder_id, TriggerLog.user_id == user_id)
            return db.execute(stmt.limit(1)).first() is not None
        finally:
            db.close()

    # --- completions ---

    def insert_completion_if_absent(self, log_id, reminder_id, user_id, scheduled_time, status, completed_at=None):
        """Insert the single completion row for a trigger log.

        Returns False when a completion for ``log_id`` already exists,
        including when a concurrent writer wins on the unique constraint.
        """
        db = self.session_factory()
        try:
            existing = db.execute(select(Completion.id).where(Completion.log_id == log_id)).first()
            if existing:
                return False
            db.add(Completion(
                reminder_id=reminder_id,
                user_id=user_id,
                log_id=log_id,
                completed_at=completed_at or recurrence.utcnow(),
                scheduled_time=scheduled_time,
                status=status,
            ))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.debug(f"Completion for log {log_id} already recorded")
                return False
            return True
        finally:
            db.close()

    def completion_history(self, reminder_id, user_id, limit=100):
        db = self.session_factory()
        try:
            stmt = (
                select(Completion)
                .where(Completion.reminder_id == reminder_id, Completion.user_id == user_id)
                .order_by(Completion.scheduled_time.desc())
                .limit(limit)
            )
            return list(db.execute(stmt).scalars())
        finally:
            db.close()

    def aggregate_completions(self, user_id, since):
        db = self.session_factory()
        try:
            row = db.execute(
                select(
                    func.count(Completion.id),
                    func.sum(case((Completion.status == COMPLETION_COMPLETED, 1), else_=0)),
                    func.sum(case((Completion.status == COMPLETION_MISSED, 1), else_=0)),
                ).where(Completion.user_id == user_id, Completion.scheduled_time >= since)
            ).one()
            total, completed, missed = row
            return {"total": total or 0, "completed": completed or 0, "missed": missed or 0}
        finally:
            db.close()

    # --- streaks ---

    def get_or_create_streak(self, user_id, reminder_id):
        db = self.session_factory()
        try:
            stmt = select(StreakState).where(StreakState.user_id == user_id, StreakState.reminder_id == reminder_id)
            streak = db.execute(stmt).scalar_one_or_none()
            if streak is not None:
                return streak
            streak = StreakState(user_id=user_id, reminder_id=reminder_id, current_streak=0, longest_streak=0)
            db.add(streak)
            try:
                db.commit()
            except IntegrityError:
                # created by someone else in the meantime
                db.rollback()
                streak = db.execute(stmt).scalar_one()
            return streak
        finally:
            db.close()

    def save_streak(self, streak):
        db = self.session_factory()
        try:
            merged = db.merge(streak)
            db.commit()
            return merged
        finally:
            db.close()

    def list_streaks(self, user_id):
        db = self.session_factory()
        try:
            stmt = (
                select(StreakState)
                .join(Reminder, StreakState.reminder_id == Reminder.id)
                .options(joinedload(StreakState.reminder))
                .where(StreakState.user_id == user_id)
                .order_by(StreakState.current_streak.desc(), StreakState.id)
            )
            return list(db.execute(stmt).scalars())
        finally:
            db.close()

    # --- weekly reports ---

    def save_weekly_report(self, user_id, week_start, week_end, stats, completion_rate, report_data, sent_at):
        db = self.session_factory()
        try:
            report = WeeklyReport(
                user_id=user_id,
                week_start=week_start,
                week_end=week_end,
                total_reminders=stats["total"],
                completed_count=stats["completed"],
                missed_count=stats["missed"],
                completion_rate=completion_rate,
                report_data=report_data,
                sent_at=sent_at,
            )
            db.add(report)
            db.commit()
            return report
        finally:
            db.close()
