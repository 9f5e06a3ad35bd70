import asyncio
from datetime import date, datetime

from src.attendance_alerts.dispatcher import InMemoryDispatcher, LoggingDispatcher
from src.attendance_alerts.models import AlertKind, DedupKey

KEY = DedupKey(day=date(2026, 10, 20), course_id=101, kind=AlertKind.PRE_CLASS_REMINDER)


def test_dedup_key_string_form():
    assert str(KEY) == "2026-10-20:101:pre_class_reminder"
    summary = DedupKey(day=date(2026, 10, 20), course_id=None, kind=AlertKind.MORNING_SUMMARY)
    assert str(summary) == "2026-10-20:all:morning_summary"


def test_in_memory_dispatcher_arms_and_cancels():
    dispatcher = InMemoryDispatcher()

    async def scenario():
        first = await dispatcher.create_future_alert("a", "b", datetime(2026, 10, 20, 9, 50), KEY)
        second = await dispatcher.create_future_alert("a", "b", datetime(2026, 10, 20, 9, 50), KEY)
        pending = await dispatcher.pending_triggers()
        cancelled = await dispatcher.cancel_all_future_alerts()
        return first, second, pending, cancelled

    first, second, pending, cancelled = asyncio.run(scenario())
    assert first != second
    assert {t.trigger_id for t in pending} == {first, second}
    assert cancelled == 2


def test_fire_due_delivers_only_past_triggers():
    dispatcher = InMemoryDispatcher()

    async def scenario():
        await dispatcher.create_future_alert("early", "", datetime(2026, 10, 20, 7, 0), KEY)
        await dispatcher.create_future_alert("late", "", datetime(2026, 10, 20, 9, 50), KEY)

    asyncio.run(scenario())
    due = dispatcher.fire_due(datetime(2026, 10, 20, 8, 0))
    assert [t.title for t in due] == ["early"]
    assert [a.title for a in dispatcher.delivered] == ["early"]
    assert [t.title for t in asyncio.run(dispatcher.pending_triggers())] == ["late"]


def test_logging_dispatcher_delegates():
    inner = InMemoryDispatcher()
    dispatcher = LoggingDispatcher(inner)

    async def scenario():
        await dispatcher.set_status_entry("Attendance Monitor Active", "syncing")
        await dispatcher.create_future_alert("a", "b", datetime(2026, 10, 20, 9, 50), KEY)
        await dispatcher.display_immediate("now", "body")
        count = await dispatcher.cancel_all_future_alerts()
        await dispatcher.clear_status_entry()
        return count

    assert asyncio.run(scenario()) == 1
    assert [a.title for a in inner.delivered] == ["now"]
    assert inner.status_entry is None
