import os

import pytest
from sqlalchemy.pool import StaticPool

# Set test environment variables before any project module reads them
os.environ["TELEGRAM_BOT_TOKEN"] = "test:token"
os.environ["DB_URL"] = "sqlite://"
os.environ["LOG_LEVEL"] = "WARNING"

from database import init_db, make_engine, make_session_factory  # noqa: E402
from delivery import DeliveryError, DeliverySink  # noqa: E402
from store import ReminderStore  # noqa: E402


class RecordingDelivery(DeliverySink):
    """Delivery sink that records messages and can be told to fail."""

    def __init__(self):
        self.reminders = []
        self.missed = []
        self.reports = []
        self.fail_for = set()

    async def send_reminder(self, reminder):
        if reminder.id in self.fail_for:
            raise DeliveryError(f"cannot reach user {reminder.user_id}")
        self.reminders.append(reminder)

    async def send_missed(self, log):
        if log.reminder_id in self.fail_for:
            raise DeliveryError("missed notification failed")
        self.missed.append(log)

    async def send_weekly_report(self, user, report):
        if user.id in self.fail_for:
            raise DeliveryError("report failed")
        self.reports.append((user, report))


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return ReminderStore(session_factory)


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def user(store):
    return store.create_user(1001, name="Alice", timezone="America/New_York")


@pytest.fixture
def daily_reminder(store, user):
    created = store.create_reminder(user.id, "Drink water", "09:00", "daily")
    return store.get_reminder(created.id)
