import asyncio
from datetime import datetime, timedelta

from conftest import make_session

from src.attendance_alerts.errors import TransientError
from src.attendance_alerts.models import (
    AttendanceMark,
    LectureRecord,
    LiveStatus,
    SessionKind,
)
from src.attendance_alerts.tracker import (
    LiveSessionTracker,
    compute_live_state,
    describe_live_state,
    resolve_attendance_mark,
)

TODAY = [
    make_session("2026-10-20T09:00", "2026-10-20T09:50", "Operating Systems"),
    make_session("2026-10-20T11:00", "2026-10-20T11:50", "Compiler Design"),
]


def test_in_session_elapsed_fraction():
    session = make_session("2026-10-20T10:00", "2026-10-20T10:50", "Maths")
    state = compute_live_state([session], datetime(2026, 10, 20, 10, 25))
    assert state.status is LiveStatus.IN_SESSION
    assert state.current == session
    assert state.elapsed_fraction == 0.5
    assert state.remaining == timedelta(minutes=25)
    assert state.next is None


def test_in_session_reports_next_session():
    state = compute_live_state(TODAY, datetime(2026, 10, 20, 9, 10))
    assert state.current == TODAY[0]
    assert state.next == TODAY[1]
    assert describe_live_state(state) == "40m 0s left"


def test_session_bounds_are_inclusive():
    assert compute_live_state(TODAY, datetime(2026, 10, 20, 9, 0)).elapsed_fraction == 0.0
    state = compute_live_state(TODAY, datetime(2026, 10, 20, 9, 50))
    assert state.status is LiveStatus.IN_SESSION
    assert state.elapsed_fraction == 1.0


def test_between_sessions():
    state = compute_live_state(TODAY, datetime(2026, 10, 20, 10, 10))
    assert state.status is LiveStatus.BETWEEN_SESSIONS
    assert state.remaining == timedelta(minutes=50)
    assert state.next == TODAY[1]
    assert state.is_before_first_of_day is False
    assert describe_live_state(state) == "Starts in 50:00"


def test_before_first_session_of_day():
    state = compute_live_state(TODAY, datetime(2026, 10, 20, 7, 30))
    assert state.status is LiveStatus.BETWEEN_SESSIONS
    assert state.is_before_first_of_day is True
    assert describe_live_state(state) == "Starts at 09:00"


def test_countdown_threshold_boundary():
    exactly_hour = compute_live_state(TODAY, datetime(2026, 10, 20, 8, 0))
    assert describe_live_state(exactly_hour) == "Starts at 09:00"
    just_under = compute_live_state(TODAY, datetime(2026, 10, 20, 8, 0, 1))
    assert describe_live_state(just_under) == "Starts in 59:59"


def test_day_complete_after_last_session():
    state = compute_live_state(TODAY, datetime(2026, 10, 20, 12, 0))
    assert state.status is LiveStatus.DAY_COMPLETE
    assert describe_live_state(state) == "All classes done"


def test_day_complete_without_sessions_today():
    tomorrow = [make_session("2026-10-21T09:00", "2026-10-21T09:50")]
    state = compute_live_state(tomorrow, datetime(2026, 10, 20, 8, 0))
    assert state.status is LiveStatus.DAY_COMPLETE
    assert state.today == ()
    assert describe_live_state(state) == "No classes scheduled today"


def test_holidays_are_kept_for_display_but_never_current():
    holiday = make_session(
        "2026-10-20T00:00", "2026-10-20T23:59", "Dussehra", kind=SessionKind.HOLIDAY
    )
    state = compute_live_state([holiday], datetime(2026, 10, 20, 10, 0))
    assert state.status is LiveStatus.DAY_COMPLETE
    assert state.today == (holiday,)
    assert describe_live_state(state) == "No classes scheduled today"

    state = compute_live_state([holiday, *TODAY], datetime(2026, 10, 20, 10, 0))
    assert state.status is LiveStatus.BETWEEN_SESSIONS
    assert state.next == TODAY[1]
    assert state.is_before_first_of_day is False


def test_unsorted_input_is_sorted():
    state = compute_live_state(list(reversed(TODAY)), datetime(2026, 10, 20, 8, 0))
    assert state.next == TODAY[0]
    assert state.is_before_first_of_day is True


def test_resolve_attendance_mark():
    session = TODAY[0]
    lectures = [
        LectureRecord.model_validate({"planLecDate": "2026-10-19", "attendance": "ABSENT"}),
        LectureRecord.model_validate(
            {"planLecDate": "2026-10-20T00:00:00", "attendance": "PRESENT"}
        ),
    ]
    assert resolve_attendance_mark(lectures, session) is AttendanceMark.PRESENT
    assert resolve_attendance_mark(lectures[:1], session) is AttendanceMark.PENDING
    odd = [LectureRecord.model_validate({"planLecDate": "2026-10-20", "attendance": "LEAVE"})]
    assert resolve_attendance_mark(odd, session) is AttendanceMark.PENDING


class _Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def test_tracker_ticks_and_restarts_on_update():
    clock = _Clock(datetime(2026, 10, 20, 9, 25))
    seen = []
    tracker = LiveSessionTracker(listener=seen.append, tick_interval=0.01, clock=clock)

    async def scenario():
        await tracker.update_sessions(TODAY)
        await asyncio.sleep(0.05)
        first_task = tracker._task
        await tracker.update_sessions(TODAY[1:])
        restarted = tracker._task is not first_task and first_task.cancelled()
        await asyncio.sleep(0.03)
        await tracker.stop()
        return restarted

    restarted = asyncio.run(scenario())
    assert restarted
    assert not tracker.ticking
    assert len(seen) >= 2
    assert seen[0].status is LiveStatus.IN_SESSION
    assert seen[-1].status is LiveStatus.BETWEEN_SESSIONS
    assert tracker.state == seen[-1]


def test_resume_reloads_sessions_and_recomputes():
    clock = _Clock(datetime(2026, 10, 20, 10, 10))
    loads = []

    async def loader():
        loads.append(1)
        return TODAY

    tracker = LiveSessionTracker(tick_interval=60, clock=clock, loader=loader)

    async def scenario():
        state = await tracker.on_resume()
        await tracker.stop()
        return state

    state = asyncio.run(scenario())
    assert loads == [1]
    assert state.status is LiveStatus.BETWEEN_SESSIONS
    assert tracker.sessions == tuple(TODAY)


def test_resume_keeps_sessions_when_reload_fails():
    clock = _Clock(datetime(2026, 10, 20, 9, 10))

    async def loader():
        raise TransientError("offline")

    tracker = LiveSessionTracker(tick_interval=60, clock=clock, loader=loader)

    async def scenario():
        await tracker.update_sessions(TODAY)
        state = await tracker.on_resume()
        await tracker.stop()
        return state

    state = asyncio.run(scenario())
    assert state.status is LiveStatus.IN_SESSION
    assert tracker.sessions == tuple(TODAY)


def test_async_listener_is_awaited():
    received = []

    async def listener(state):
        received.append(state.status)

    tracker = LiveSessionTracker(
        listener=listener, clock=_Clock(datetime(2026, 10, 20, 12, 0))
    )
    asyncio.run(tracker.recompute())
    assert received == [LiveStatus.DAY_COMPLETE]
