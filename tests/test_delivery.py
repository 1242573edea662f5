import datetime
from unittest.mock import AsyncMock, Mock

import pytest
import pytz
from telegram.error import NetworkError

from delivery import DeliveryError, TelegramDelivery, format_missed, format_reminder, format_weekly_report
from models import Reminder, TriggerLog, User


def weekly_reminder():
    return Reminder(id=3, user_id=1001, title="Gym", description="Leg day",
                    reminder_time="18:30", recurrence_type="weekly", weekly_days=[1, 3, 5])


def test_format_reminder_lists_weekdays():
    text = format_reminder(weekly_reminder())
    assert "Gym" in text
    assert "Leg day" in text
    assert "Monday, Wednesday, Friday" in text


def test_format_missed_mentions_schedule():
    log = TriggerLog(id=9, reminder_id=3, user_id=1001,
                     triggered_at=datetime.datetime(2026, 3, 2, 18, 30), reminder=weekly_reminder())
    assert "2026-03-02 18:30 UTC" in format_missed(log)


def test_format_weekly_report():
    report = {
        "total": 4, "completed": 3, "missed": 1, "completion_rate": 75.0, "total_streak": 2,
        "streaks": [{"title": "Gym", "current_streak": 2, "longest_streak": 5}],
    }
    text = format_weekly_report(User(id=1, name="Alice"), report)
    assert "3 / 4 (75.0%)" in text
    assert "Gym: 2 (best 5)" in text


@pytest.mark.asyncio
async def test_reminder_sent_with_done_button():
    bot = Mock()
    bot.send_message = AsyncMock()
    await TelegramDelivery(bot).send_reminder(weekly_reminder())

    kwargs = bot.send_message.call_args.kwargs
    assert kwargs["chat_id"] == 1001
    button = kwargs["reply_markup"].inline_keyboard[0][0]
    assert button.callback_data == "done|3"


@pytest.mark.asyncio
async def test_telegram_errors_become_delivery_errors():
    bot = Mock()
    bot.send_message = AsyncMock(side_effect=NetworkError("connection reset"))
    with pytest.raises(DeliveryError):
        await TelegramDelivery(bot).send_weekly_report(User(id=1, name="Alice"), {
            "total": 1, "completed": 1, "missed": 0, "completion_rate": 100.0, "total_streak": 1, "streaks": [],
        })


def test_naive_and_aware_times_format_the_same():
    aware = TriggerLog(triggered_at=datetime.datetime(2026, 3, 2, 18, 30, tzinfo=pytz.UTC), reminder=weekly_reminder())
    naive = TriggerLog(triggered_at=datetime.datetime(2026, 3, 2, 18, 30), reminder=weekly_reminder())
    assert format_missed(aware) == format_missed(naive)
