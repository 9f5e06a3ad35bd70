"""Attendance-risk alert scheduling and live class tracking.

Plans low-attendance alerts from a student's weekly timetable and per-course
attendance counters, keeps the notification dispatcher's pending set in line
with the latest plan, and reports the class happening right now.
"""

from src.attendance_alerts.dispatcher import InMemoryDispatcher, NotificationDispatcher
from src.attendance_alerts.models import (
    AlertClass,
    AlertKind,
    AlertPlan,
    CourseAttendanceStat,
    LiveState,
    LiveStatus,
    PlannedAlert,
    Session,
    SessionKind,
)
from src.attendance_alerts.monitor import AttendanceMonitor
from src.attendance_alerts.planner import NotificationPlanner
from src.attendance_alerts.scheduler import NotificationScheduler, RunStatus
from src.attendance_alerts.tracker import LiveSessionTracker, compute_live_state

__all__ = [
    "AlertClass",
    "AlertKind",
    "AlertPlan",
    "AttendanceMonitor",
    "CourseAttendanceStat",
    "InMemoryDispatcher",
    "LiveSessionTracker",
    "LiveState",
    "LiveStatus",
    "NotificationDispatcher",
    "NotificationPlanner",
    "NotificationScheduler",
    "PlannedAlert",
    "RunStatus",
    "Session",
    "SessionKind",
    "compute_live_state",
]
