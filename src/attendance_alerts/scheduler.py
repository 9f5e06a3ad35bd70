"""Notification scheduler - applies an alert plan to the dispatcher.

One run fetches the timetable and attendance counters, plans alerts, and then
replaces the dispatcher's pending set: cancel everything pending, arm every
FUTURE alert, display every IMMEDIATE one. Because the cancel always completes
before arming, repeated runs over unchanged data converge on the same pending
set instead of accumulating duplicates.

If either upstream fetch fails the run stops before the cancel step, so the
alerts armed by the last good run stay in place.

Runs must not overlap (cancel-then-recreate assumes exclusive access to the
pending set). The scheduler enforces that itself: a run requested while
another is in flight returns SKIPPED.
"""

import asyncio
from collections import deque
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from typing import Protocol

from pydantic import BaseModel

from src.attendance_alerts.dispatcher import NotificationDispatcher
from src.attendance_alerts.errors import DataSourceError
from src.attendance_alerts.logging import bound_run, get_logger
from src.attendance_alerts.models import AlertPlan, RegisteredCourse, Session
from src.attendance_alerts.planner import NotificationPlanner
from src.attendance_alerts.risk import RiskEvaluator

logger = get_logger(__name__)


class AttendanceSource(Protocol):
    async def get_weekly_schedule(self) -> list[Session]: ...

    async def get_registered_courses(self) -> list[RegisteredCourse]: ...


class RunStatus(str, Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"  # nothing cancelled, previous alerts kept
    SKIPPED = "skipped"  # another run was in flight
    FAILED = "failed"  # unexpected error while applying the plan


class SchedulerRunResult(BaseModel):
    status: RunStatus
    started_at: datetime
    cancelled: int = 0
    armed: int = 0
    immediate: int = 0
    dropped: int = 0
    error: str | None = None
    plan: AlertPlan | None = None


class NotificationScheduler:
    """Keeps the dispatcher's pending alerts equal to the latest plan."""

    def __init__(
        self,
        source: AttendanceSource,
        dispatcher: NotificationDispatcher,
        evaluator: RiskEvaluator,
        planner: NotificationPlanner,
        run_log_size: int = 50,
    ) -> None:
        self.source = source
        self.dispatcher = dispatcher
        self.evaluator = evaluator
        self.planner = planner
        self._lock = asyncio.Lock()
        self._log: deque[str] = deque(maxlen=run_log_size)

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def logs(self) -> list[str]:
        """Most recent run outcomes, oldest first."""
        return list(self._log)

    def _record(self, now: datetime, message: str) -> None:
        self._log.append(f"[{now:%Y-%m-%d %H:%M:%S}] {message}")

    async def run(
        self,
        now: datetime | None = None,
        sessions: Sequence[Session] | None = None,
    ) -> SchedulerRunResult:
        """Fetch, plan and apply. Never raises.

        Args:
            now: Planning instant; defaults to the local wall clock.
            sessions: Already-fetched timetable to reuse instead of fetching it.
        """
        now = now or datetime.now()

        if self._lock.locked():
            logger.warning("scheduler_run_skipped", reason="run_in_flight")
            self._record(now, "Skipped: a scheduling run is already in progress")
            return SchedulerRunResult(status=RunStatus.SKIPPED, started_at=now)

        async with self._lock:
            with bound_run(component="scheduler"):
                return await self._run(now, sessions)

    async def _run(
        self, now: datetime, sessions: Sequence[Session] | None
    ) -> SchedulerRunResult:
        logger.info("scheduler_run_started", now=now.isoformat(timespec="seconds"))

        try:
            if sessions is not None:
                timetable = list(sessions)
            else:
                timetable = await self.source.get_weekly_schedule()
            courses = await self.source.get_registered_courses()
        except DataSourceError as e:
            return self.abort(now, str(e))

        if not timetable:
            return self.abort(now, "no timetable found")

        try:
            stats = [course.to_stat() for course in courses]
            at_risk = self.evaluator.at_risk_sessions(timetable, stats)
            plan = self.planner.plan(at_risk, now)
            return await self._apply(plan, now)
        except Exception as e:
            logger.error("scheduler_run_failed", error=str(e), exc_info=True)
            self._record(now, f"Failed: {e}")
            return SchedulerRunResult(status=RunStatus.FAILED, started_at=now, error=str(e))

    def abort(self, now: datetime, reason: str) -> SchedulerRunResult:
        """Record a run that stopped before touching the pending set."""
        logger.warning("scheduler_run_aborted", reason=reason)
        self._record(now, f"Aborted, kept existing alerts: {reason}")
        return SchedulerRunResult(status=RunStatus.ABORTED, started_at=now, error=reason)

    async def _apply(self, plan: AlertPlan, now: datetime) -> SchedulerRunResult:
        cancelled = await self.dispatcher.cancel_all_future_alerts()

        for alert in plan.future:
            await self.dispatcher.create_future_alert(
                alert.title, alert.body, alert.fire_at, alert.dedup_key
            )
        for alert in plan.immediate:
            await self.dispatcher.display_immediate(alert.title, alert.body)

        result = SchedulerRunResult(
            status=RunStatus.COMPLETED,
            started_at=now,
            cancelled=cancelled,
            armed=len(plan.future),
            immediate=len(plan.immediate),
            dropped=len(plan.dropped),
            plan=plan,
        )
        logger.info(
            "scheduler_run_completed",
            cancelled=cancelled,
            armed=result.armed,
            immediate=result.immediate,
            dropped=result.dropped,
        )
        self._record(
            now,
            f"Scheduled {result.armed} alert(s), sent {result.immediate} now, "
            f"skipped {result.dropped} past",
        )
        return result

    async def cancel_all(self) -> int:
        """Cancel every pending alert (logout path)."""
        # An in-flight run finishes first so it cannot re-arm afterwards
        async with self._lock:
            count = await self.dispatcher.cancel_all_future_alerts()
        logger.info("scheduler_alerts_cleared", count=count)
        return count
