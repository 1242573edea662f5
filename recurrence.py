# recurrence.py
"""Decides whether a recurring reminder is due at a given instant.

Matching is done in the owner's local time at minute granularity. A minute
the scheduler never observed is not caught up later.

Daylight-saving transitions: a local time that occurs twice on a transition
day fires once, because the second match finds ``last_triggered`` on the same
local date. A local time skipped by the transition never fires that day.
"""
import datetime
import logging

import pytz

from models import RECURRENCE_DAILY, RECURRENCE_WEEKLY

logger = logging.getLogger(__name__)


class InvalidReminderError(ValueError):
    pass


def ensure_utc(dt):
    """Treat naive datetimes as UTC (SQLite drops the offset)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def parse_time_of_day(value):
    try:
        hour, minute = (int(part) for part in str(value).split(":"))
    except ValueError:
        raise InvalidReminderError(f"bad reminder time {value!r}")
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise InvalidReminderError(f"bad reminder time {value!r}")
    return hour, minute


def parse_weekdays(raw):
    """Return the weekday set, 0 = Sunday .. 6 = Saturday."""
    if not isinstance(raw, (list, tuple, set, frozenset)):
        raise InvalidReminderError(f"weekly_days must be a list, got {raw!r}")
    days = set()
    for day in raw:
        if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
            raise InvalidReminderError(f"bad weekday {day!r}")
        days.add(day)
    return frozenset(days)


def local_weekday(dt):
    return dt.isoweekday() % 7


def validate(recurrence_type, reminder_time, weekly_days=None):
    parse_time_of_day(reminder_time)
    if recurrence_type == RECURRENCE_WEEKLY:
        if not parse_weekdays(weekly_days or []):
            raise InvalidReminderError("weekly reminders need at least one weekday")
    elif recurrence_type != RECURRENCE_DAILY:
        raise InvalidReminderError(f"unknown recurrence {recurrence_type!r}")


def is_due(reminder, now):
    try:
        if reminder.owner is None:
            raise InvalidReminderError("owner not found")
        tz = pytz.timezone(reminder.owner.timezone)
        hour, minute = parse_time_of_day(reminder.reminder_time)
        if reminder.recurrence_type == RECURRENCE_WEEKLY:
            weekdays = parse_weekdays(reminder.weekly_days)
            if not weekdays:
                raise InvalidReminderError("weekly reminder without weekdays")
        elif reminder.recurrence_type == RECURRENCE_DAILY:
            weekdays = None
        else:
            raise InvalidReminderError(f"unknown recurrence {reminder.recurrence_type!r}")
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Reminder {reminder.id}: unknown timezone {reminder.owner.timezone!r}, skipping")
        return False
    except InvalidReminderError as e:
        logger.warning(f"Reminder {reminder.id}: {e}, skipping")
        return False

    local_now = ensure_utc(now).astimezone(tz)
    if local_now.hour != hour or local_now.minute != minute:
        return False
    if weekdays is not None and local_weekday(local_now) not in weekdays:
        return False

    if reminder.last_triggered is not None:
        last_local = ensure_utc(reminder.last_triggered).astimezone(tz)
        if last_local.date() == local_now.date():
            return False
    return True


def utcnow():
    return datetime.datetime.now(pytz.UTC)
