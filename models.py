# models.py
from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String,
    Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base

LOG_SENT = "sent"
LOG_FAILED = "failed"

COMPLETION_COMPLETED = "completed"
COMPLETION_MISSED = "missed"

RECURRENCE_DAILY = "daily"
RECURRENCE_WEEKLY = "weekly"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)  # Telegram user id, doubles as chat id
    name = Column(String, nullable=False, default="")
    timezone = Column(String, nullable=False, default="UTC")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    reminders = relationship("Reminder", back_populates="owner")


class Reminder(Base):
    __tablename__ = "reminders"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    reminder_time = Column(String, nullable=False)      # "HH:MM" in the owner's timezone
    recurrence_type = Column(String, nullable=False)    # daily, weekly
    weekly_days = Column(JSON)                          # [0..6], 0 = Sunday
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    last_triggered = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    owner = relationship("User", back_populates="reminders")


class TriggerLog(Base):
    __tablename__ = "reminder_logs"
    id = Column(Integer, primary_key=True)
    reminder_id = Column(Integer, ForeignKey("reminders.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    triggered_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False, default=LOG_SENT)  # sent, failed

    reminder = relationship("Reminder")
    owner = relationship("User")
    completion = relationship("Completion", back_populates="log", uselist=False)

    __table_args__ = (
        Index("ix_reminder_logs_status_triggered", "status", "triggered_at"),
    )


class Completion(Base):
    __tablename__ = "reminder_completions"
    id = Column(Integer, primary_key=True)
    reminder_id = Column(Integer, ForeignKey("reminders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    log_id = Column(Integer, ForeignKey("reminder_logs.id", ondelete="SET NULL"))
    completed_at = Column(DateTime(timezone=True), nullable=False)
    scheduled_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False, default=COMPLETION_COMPLETED)  # completed, missed

    log = relationship("TriggerLog", back_populates="completion")

    __table_args__ = (
        UniqueConstraint("log_id", name="uq_reminder_completions_log_id"),
        Index("ix_reminder_completions_user_scheduled", "user_id", "scheduled_time"),
    )


class StreakState(Base):
    __tablename__ = "user_streaks"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reminder_id = Column(Integer, ForeignKey("reminders.id", ondelete="CASCADE"), nullable=False)
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    last_completed = Column(DateTime(timezone=True))
    last_updated = Column(DateTime(timezone=True))

    reminder = relationship("Reminder")

    __table_args__ = (
        UniqueConstraint("user_id", "reminder_id", name="uq_user_streaks_user_reminder"),
    )

    def __repr__(self):
        return (
            f"<StreakState user_id={self.user_id} reminder_id={self.reminder_id} "
            f"current={self.current_streak} longest={self.longest_streak}>"
        )


class WeeklyReport(Base):
    __tablename__ = "weekly_reports"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    week_start = Column(DateTime(timezone=True), nullable=False)
    week_end = Column(DateTime(timezone=True), nullable=False)
    total_reminders = Column(Integer, nullable=False, default=0)
    completed_count = Column(Integer, nullable=False, default=0)
    missed_count = Column(Integer, nullable=False, default=0)
    completion_rate = Column(Float, nullable=False, default=0)
    report_data = Column(JSON)
    sent_at = Column(DateTime(timezone=True), nullable=False)
