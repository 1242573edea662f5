# delivery.py
import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import TelegramError

import recurrence
from models import RECURRENCE_WEEKLY

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class DeliveryError(Exception):
    pass


class DeliverySink:
    """Where reminder, missed and weekly report messages go.

    Implementations raise on failure; callers decide whether that is fatal.
    """

    async def send_reminder(self, reminder):
        raise NotImplementedError

    async def send_missed(self, log):
        raise NotImplementedError

    async def send_weekly_report(self, user, report):
        raise NotImplementedError


def weekly_days_text(weekly_days):
    return ", ".join(DAY_NAMES[d] for d in sorted(weekly_days or []))


def format_reminder(reminder):
    lines = [f"⏰ Reminder: {reminder.title}"]
    if reminder.description:
        lines.append(reminder.description)
    schedule = f"{reminder.reminder_time} daily"
    if reminder.recurrence_type == RECURRENCE_WEEKLY:
        schedule = f"{reminder.reminder_time} on {weekly_days_text(reminder.weekly_days)}"
    lines.append(f"Scheduled: {schedule}")
    return "\n".join(lines)


def format_missed(log):
    scheduled = recurrence.ensure_utc(log.triggered_at).strftime("%Y-%m-%d %H:%M UTC")
    return (
        f"❌ You missed a reminder: {log.reminder.title}\n"
        f"Scheduled at {scheduled}. Your streak has been reset, keep going!"
    )


def format_weekly_report(user, report):
    lines = [
        f"📊 Weekly report for {user.name or 'you'}",
        f"Completed: {report['completed']} / {report['total']} ({report['completion_rate']}%)",
        f"Missed: {report['missed']}",
        f"Total active streak: {report['total_streak']}",
    ]
    if report["streaks"]:
        lines.append("Top streaks:")
        for streak in report["streaks"]:
            lines.append(f"- {streak['title']}: {streak['current_streak']} (best {streak['longest_streak']})")
    return "\n".join(lines)


def done_keyboard(reminder_id):
    return InlineKeyboardMarkup([[InlineKeyboardButton("Done ✅", callback_data=f"done|{reminder_id}")]])


class TelegramDelivery(DeliverySink):
    def __init__(self, bot):
        self.bot = bot

    async def _send(self, chat_id, text, reply_markup=None):
        try:
            await self.bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup)
        except TelegramError as e:
            raise DeliveryError(f"telegram send to {chat_id} failed: {e}") from e

    async def send_reminder(self, reminder):
        await self._send(reminder.user_id, format_reminder(reminder), done_keyboard(reminder.id))

    async def send_missed(self, log):
        await self._send(log.user_id, format_missed(log))

    async def send_weekly_report(self, user, report):
        await self._send(user.id, format_weekly_report(user, report))
