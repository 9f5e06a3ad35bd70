"""AttendanceMonitor - wires the data source, scheduler, tracker and dispatcher.

This is the object an app shell holds on to:
  refresh()  fetch the timetable, hand it to the live tracker (restarting its
             tick) and run the notification scheduler against it
  logout()   cancel every pending alert, stop the tick, clear the status entry
             and drop the session token
"""

from collections.abc import Callable
from datetime import datetime

from src.attendance_alerts.client import AttendanceClient
from src.attendance_alerts.config import AlertsConfig
from src.attendance_alerts.dispatcher import (
    InMemoryDispatcher,
    LoggingDispatcher,
    NotificationDispatcher,
)
from src.attendance_alerts.errors import AuthenticationError, DataSourceError
from src.attendance_alerts.logging import get_logger
from src.attendance_alerts.models import AttendanceMark, LiveStatus
from src.attendance_alerts.planner import NotificationPlanner
from src.attendance_alerts.risk import RiskEvaluator, SubstringCourseMatcher
from src.attendance_alerts.scheduler import (
    NotificationScheduler,
    RunStatus,
    SchedulerRunResult,
)
from src.attendance_alerts.session import SessionManager
from src.attendance_alerts.store import JsonKeyValueStore, TargetStore
from src.attendance_alerts.tracker import (
    LiveSessionTracker,
    StateListener,
    resolve_attendance_mark,
)

log = get_logger(__name__)

STATUS_TITLE = "Attendance Monitor Active"


class AttendanceMonitor:
    def __init__(
        self,
        client: AttendanceClient,
        scheduler: NotificationScheduler,
        tracker: LiveSessionTracker,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.client = client
        self.session = client.session
        self.scheduler = scheduler
        self.dispatcher = scheduler.dispatcher
        self.tracker = tracker
        self.clock = clock
        self.needs_login = self.session.token is None
        self._dispose_auth = self.session.auth_errors.subscribe(self._on_auth_error)
        # Live display tolerates punctuation differences between the two feeds
        self._display_matcher = SubstringCourseMatcher(fold_alnum=True)

    @classmethod
    def from_config(
        cls,
        config: AlertsConfig,
        dispatcher: NotificationDispatcher | None = None,
        listener: StateListener | None = None,
    ) -> "AttendanceMonitor":
        session = SessionManager(
            config.api_base_url,
            state_dir=config.state_dir,
            timeout=config.request_timeout_seconds,
        )
        client = AttendanceClient(session)
        targets = TargetStore(
            JsonKeyValueStore(f"{config.state_dir}/targets.json"),
            default_target=config.default_target,
        )
        scheduler = NotificationScheduler(
            client,
            LoggingDispatcher(dispatcher or InMemoryDispatcher()),
            RiskEvaluator(targets, zero_total_at_risk=config.zero_total_at_risk),
            NotificationPlanner(
                reminder_lead_minutes=config.reminder_lead_minutes,
                morning_summary_hour=config.morning_summary_hour,
            ),
            run_log_size=config.run_log_size,
        )
        tracker = LiveSessionTracker(
            listener=listener,
            tick_interval=config.tick_interval_seconds,
            loader=client.get_weekly_schedule,
        )
        return cls(client, scheduler, tracker)

    @property
    def targets(self) -> TargetStore:
        return self.scheduler.evaluator.targets

    def _on_auth_error(self, error: AuthenticationError) -> None:
        self.needs_login = True
        log.warning("monitor_needs_login", error=str(error))

    async def login(self, username: str, password: str) -> None:
        await self.session.login(username, password)
        self.needs_login = False

    async def refresh(self, now: datetime | None = None) -> SchedulerRunResult:
        """Fetch the timetable once and feed both the tracker and the scheduler."""
        now = now or self.clock()
        try:
            sessions = await self.client.get_weekly_schedule(now)
        except DataSourceError as e:
            log.warning("monitor_refresh_failed", error=str(e))
            return self.scheduler.abort(now, str(e))

        await self.tracker.update_sessions(sessions)
        result = await self.scheduler.run(now, sessions=sessions)
        if result.status is RunStatus.COMPLETED:
            await self.dispatcher.set_status_entry(
                STATUS_TITLE,
                f"Keeping your attendance data in sync. {result.armed} alert(s) scheduled.",
            )
        return result

    async def current_attendance_mark(self) -> AttendanceMark:
        """Present/absent/pending for the class in progress, UNKNOWN otherwise."""
        state = self.tracker.state
        if state is None or state.status is not LiveStatus.IN_SESSION:
            return AttendanceMark.UNKNOWN

        try:
            courses = await self.client.get_registered_courses()
            stat = self._display_matcher.match(
                state.current, [course.to_stat() for course in courses]
            )
            course = next(
                (c for c in courses if stat and c.course_id == stat.course_id), None
            )
            if course is None or course.primary_component is None:
                return AttendanceMark.UNKNOWN
            lectures = await self.client.get_lecture_wise_attendance(
                course.student_id or 0,
                course.course_id,
                course.primary_component.component_id,
            )
        except DataSourceError as e:
            log.warning("attendance_mark_unavailable", error=str(e))
            return AttendanceMark.UNKNOWN
        return resolve_attendance_mark(lectures, state.current)

    async def logout(self) -> None:
        cancelled = await self.scheduler.cancel_all()
        await self.tracker.stop()
        await self.dispatcher.clear_status_entry()
        self.session.logout()
        self.needs_login = True
        log.info("monitor_logged_out", cancelled=cancelled)

    async def close(self) -> None:
        """Stop the tick and detach from session events; alerts stay armed."""
        await self.tracker.stop()
        self._dispose_auth()
