"""Live session tracker - what is happening right now, for a live display.

compute_live_state() is a pure function of today's sessions and `now`.
LiveSessionTracker drives it from an asyncio tick (default once a second) and
on resume-from-background, publishing each LiveState to a listener. Holidays
stay in the state for display but are never the current or next session.
"""

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta

from src.attendance_alerts.errors import DataSourceError
from src.attendance_alerts.logging import get_logger
from src.attendance_alerts.models import (
    AttendanceMark,
    LectureRecord,
    LiveState,
    LiveStatus,
    Session,
    SessionKind,
)

log = get_logger(__name__)

StateListener = Callable[[LiveState], None | Awaitable[None]]
SessionLoader = Callable[[], Awaitable[Sequence[Session]]]


def sessions_on(sessions: Sequence[Session], now: datetime) -> list[Session]:
    """Sessions starting on now's calendar date, ascending by start."""
    today = now.date()
    return sorted((s for s in sessions if s.start.date() == today), key=lambda s: s.start)


def compute_live_state(sessions: Sequence[Session], now: datetime) -> LiveState:
    today = sessions_on(sessions, now)
    searchable = [s for s in today if s.kind is not SessionKind.HOLIDAY]

    for index, session in enumerate(searchable):
        if session.start <= now <= session.end:
            duration = (session.end - session.start).total_seconds()
            if duration > 0:
                fraction = (now - session.start).total_seconds() / duration
            else:
                fraction = 1.0
            return LiveState(
                status=LiveStatus.IN_SESSION,
                now=now,
                current=session,
                next=searchable[index + 1] if index + 1 < len(searchable) else None,
                elapsed_fraction=min(max(fraction, 0.0), 1.0),
                remaining=session.end - now,
                today=tuple(today),
            )
        if session.start > now:
            return LiveState(
                status=LiveStatus.BETWEEN_SESSIONS,
                now=now,
                next=session,
                remaining=session.start - now,
                is_before_first_of_day=index == 0,
                today=tuple(today),
            )

    return LiveState(
        status=LiveStatus.DAY_COMPLETE,
        now=now,
        elapsed_fraction=1.0,
        today=tuple(today),
    )


def _minutes_seconds(delta: timedelta) -> tuple[int, int]:
    total = max(int(delta.total_seconds()), 0)
    return total // 60, total % 60


def describe_live_state(
    state: LiveState, countdown_threshold: timedelta = timedelta(hours=1)
) -> str:
    """Display text for a LiveState.

    Between sessions, a gap of at least `countdown_threshold` shows the next
    start as a clock time; anything shorter shows an mm:ss countdown.
    """
    if state.status is LiveStatus.IN_SESSION:
        minutes, seconds = _minutes_seconds(state.remaining or timedelta())
        return f"{minutes}m {seconds}s left"

    if state.status is LiveStatus.BETWEEN_SESSIONS:
        remaining = state.remaining or timedelta()
        if remaining >= countdown_threshold:
            return f"Starts at {state.next.start:%H:%M}"
        minutes, seconds = _minutes_seconds(remaining)
        return f"Starts in {minutes:02d}:{seconds:02d}"

    if not any(s.kind is not SessionKind.HOLIDAY for s in state.today):
        return "No classes scheduled today"
    return "All classes done"


def resolve_attendance_mark(
    lectures: Sequence[LectureRecord], session: Session
) -> AttendanceMark:
    """Whether attendance has been marked for `session` yet."""
    day_key = session.start.date().isoformat()
    for lecture in lectures:
        if lecture.plan_date.startswith(day_key):
            try:
                mark = AttendanceMark(lecture.attendance.upper())
            except ValueError:
                return AttendanceMark.PENDING
            if mark in (AttendanceMark.PRESENT, AttendanceMark.ABSENT):
                return mark
            return AttendanceMark.PENDING
    return AttendanceMark.PENDING


class LiveSessionTracker:
    """Recomputes LiveState on a fixed tick against the current session list.

    The tick is cancelled and restarted whenever the session list is replaced
    so a recompute never runs against a stale timetable.
    """

    def __init__(
        self,
        listener: StateListener | None = None,
        tick_interval: float = 1.0,
        clock: Callable[[], datetime] = datetime.now,
        loader: SessionLoader | None = None,
    ) -> None:
        self.listener = listener
        self.tick_interval = tick_interval
        self.clock = clock
        self.loader = loader
        self._sessions: tuple[Session, ...] = ()
        self._task: asyncio.Task | None = None
        self._state: LiveState | None = None

    @property
    def state(self) -> LiveState | None:
        return self._state

    @property
    def sessions(self) -> tuple[Session, ...]:
        return self._sessions

    @property
    def ticking(self) -> bool:
        return self._task is not None and not self._task.done()

    async def recompute(self) -> LiveState:
        state = compute_live_state(self._sessions, self.clock())
        if self._state is None or state.status is not self._state.status:
            log.info(
                "live_state_changed",
                status=state.status.value,
                current=state.current.label if state.current else None,
                next=state.next.label if state.next else None,
            )
        self._state = state
        if self.listener is not None:
            result = self.listener(state)
            if inspect.isawaitable(result):
                await result
        return state

    async def _tick_loop(self) -> None:
        while True:
            try:
                await self.recompute()
            except Exception as e:
                log.error("live_tick_failed", error=str(e), exc_info=True)
            await asyncio.sleep(self.tick_interval)

    async def start(self) -> None:
        if self.ticking:
            return
        self._task = asyncio.create_task(self._tick_loop())
        log.debug("live_tick_started", interval=self.tick_interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        log.debug("live_tick_stopped")

    async def update_sessions(self, sessions: Sequence[Session]) -> None:
        """Replace the session list and restart the tick against it."""
        await self.stop()
        self._sessions = tuple(sessions)
        log.info("live_sessions_updated", sessions=len(self._sessions))
        await self.start()

    async def on_resume(self) -> LiveState:
        """Reload sessions (when a loader is set) and recompute at once."""
        if self.loader is not None:
            try:
                sessions = await self.loader()
            except DataSourceError as e:
                # Keep showing the previous timetable
                log.warning("live_reload_failed", error=str(e))
            else:
                await self.update_sessions(sessions)
        return await self.recompute()
