import asyncio
import datetime
from unittest.mock import Mock

import pytest
import pytz

from misses import MissDetector
from models import COMPLETION_COMPLETED, COMPLETION_MISSED, LOG_FAILED, LOG_SENT
from streaks import StreakLedger


def utc(*args):
    return datetime.datetime(*args, tzinfo=pytz.UTC)


FIRED = utc(2026, 3, 2, 14, 0)


def spy_ledger(store):
    return Mock(wraps=StreakLedger(store))


@pytest.mark.asyncio
async def test_old_unacknowledged_log_is_missed(store, delivery, daily_reminder):
    rid, uid = daily_reminder.id, daily_reminder.user_id
    log_id = store.append_trigger_log(rid, uid, LOG_SENT, FIRED)
    ledger = spy_ledger(store)
    detector = MissDetector(store, ledger, delivery, threshold_minutes=30)

    assert await detector.run(utc(2026, 3, 2, 14, 29)) == 0
    assert await detector.run(utc(2026, 3, 2, 14, 30)) == 1

    [row] = store.completion_history(rid, uid)
    assert row.status == COMPLETION_MISSED
    assert row.log_id == log_id
    assert row.scheduled_time.replace(tzinfo=None) == FIRED.replace(tzinfo=None)
    ledger.update_streak.assert_called_once()
    assert [log.id for log in delivery.missed] == [log_id]


@pytest.mark.asyncio
async def test_failed_and_completed_logs_are_not_missed(store, delivery, daily_reminder):
    rid, uid = daily_reminder.id, daily_reminder.user_id
    store.append_trigger_log(rid, uid, LOG_FAILED, FIRED)
    done = store.append_trigger_log(rid, uid, LOG_SENT, FIRED)
    store.insert_completion_if_absent(done, rid, uid, FIRED, COMPLETION_COMPLETED)

    detector = MissDetector(store, StreakLedger(store), delivery)
    assert await detector.run(utc(2026, 3, 2, 16, 0)) == 0


@pytest.mark.asyncio
async def test_second_run_is_noop(store, delivery, daily_reminder):
    store.append_trigger_log(daily_reminder.id, daily_reminder.user_id, LOG_SENT, FIRED)
    detector = MissDetector(store, StreakLedger(store), delivery)
    assert await detector.run(utc(2026, 3, 2, 15, 0)) == 1
    assert await detector.run(utc(2026, 3, 2, 15, 1)) == 0


@pytest.mark.asyncio
async def test_concurrent_detectors_create_one_completion(store, delivery, daily_reminder):
    rid, uid = daily_reminder.id, daily_reminder.user_id
    store.append_trigger_log(rid, uid, LOG_SENT, FIRED)
    ledger = spy_ledger(store)
    detector = MissDetector(store, ledger, delivery)
    now = utc(2026, 3, 2, 15, 0)

    results = await asyncio.gather(detector.run(now), detector.run(now))

    assert sorted(results) == [0, 1]
    assert len(store.completion_history(rid, uid)) == 1
    assert ledger.update_streak.call_count == 1


@pytest.mark.asyncio
async def test_two_mark_missed_calls_for_same_log(store, delivery, daily_reminder):
    rid, uid = daily_reminder.id, daily_reminder.user_id
    for _ in range(41):
        store.append_trigger_log(rid, uid, LOG_SENT, FIRED)
    log = store.get_trigger_log(42)
    assert log is not None
    ledger = spy_ledger(store)
    detector = MissDetector(store, ledger, delivery)

    results = await asyncio.gather(detector.mark_missed(log), detector.mark_missed(log))

    assert sorted(results) == [False, True]
    rows = [c for c in store.completion_history(rid, uid) if c.log_id == 42]
    assert len(rows) == 1
    ledger.update_streak.assert_called_once()
    assert ledger.update_streak.call_args.args == (rid, uid)
    assert ledger.update_streak.call_args.kwargs["completed"] is False


@pytest.mark.asyncio
async def test_missed_notification_failure_is_not_fatal(store, delivery, daily_reminder):
    store.append_trigger_log(daily_reminder.id, daily_reminder.user_id, LOG_SENT, FIRED)
    delivery.fail_for.add(daily_reminder.id)
    detector = MissDetector(store, StreakLedger(store), delivery)

    assert await detector.run(utc(2026, 3, 2, 15, 0)) == 1
    [streak] = store.list_streaks(daily_reminder.user_id)
    assert streak.current_streak == 0


@pytest.mark.asyncio
async def test_miss_resets_existing_streak(store, delivery, daily_reminder):
    seeded = store.get_or_create_streak(daily_reminder.user_id, daily_reminder.id)
    seeded.current_streak, seeded.longest_streak = 5, 6
    store.save_streak(seeded)
    store.append_trigger_log(daily_reminder.id, daily_reminder.user_id, LOG_SENT, FIRED)

    await MissDetector(store, StreakLedger(store), delivery).run(utc(2026, 3, 2, 15, 0))

    [streak] = store.list_streaks(daily_reminder.user_id)
    assert (streak.current_streak, streak.longest_streak) == (0, 6)
