"""Notification planner - turns at-risk sessions into a classified alert plan.

For every calendar date holding at least one at-risk class the plan carries a
morning summary, and every at-risk class gets a pre-class reminder. Each alert
is then classified against the single `now` of the pass:

  fire_at > now                          -> FUTURE (armed by the scheduler)
  fire_at <= now, class not started yet  -> IMMEDIATE (body shows minutes left)
  class already started or over          -> DROPPED

A morning summary whose hour has passed is DROPPED; only reminders are
promoted to IMMEDIATE.

Alerts are identified by DedupKey(date, course, kind). A course listed twice
on the same date gets a reminder for each of its classes; only a repeated
entry with the same start collapses into one. Planning is a pure function of
its inputs, so identical inputs give an identical plan.
"""

import math
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta

from src.attendance_alerts.logging import get_logger
from src.attendance_alerts.models import (
    AlertClass,
    AlertKind,
    AlertPlan,
    CourseRisk,
    DedupKey,
    PlannedAlert,
    Session,
)
from src.attendance_alerts.risk import SessionRisk

log = get_logger(__name__)

SUMMARY_TITLE = "Low Attendance Warning Today!"


class NotificationPlanner:
    """Builds an AlertPlan from at-risk sessions for one fixed `now`."""

    def __init__(self, reminder_lead_minutes: int = 10, morning_summary_hour: int = 7) -> None:
        self.reminder_lead = timedelta(minutes=reminder_lead_minutes)
        self.summary_time = time(hour=morning_summary_hour)

    def plan(self, at_risk: Iterable[SessionRisk], now: datetime) -> AlertPlan:
        by_date: dict[date, list[SessionRisk]] = {}
        for item in sorted(at_risk, key=lambda sr: (sr.session.start, sr.risk.course_id)):
            by_date.setdefault(item.session.day, []).append(item)

        alerts: list[PlannedAlert] = []
        for day in sorted(by_date):
            items = by_date[day]
            alerts.append(self._morning_summary(day, items, now))
            alerts.extend(self._reminders(day, items, now))

        alerts.sort(key=lambda a: (a.fire_at, str(a.dedup_key)))
        plan = AlertPlan(now=now, alerts=alerts)
        log.info(
            "alert_plan_built",
            dates=len(by_date),
            future=len(plan.future),
            immediate=len(plan.immediate),
            dropped=len(plan.dropped),
        )
        return plan

    def _morning_summary(
        self, day: date, items: list[SessionRisk], now: datetime
    ) -> PlannedAlert:
        summaries: list[str] = []
        for item in items:
            if item.risk.summary not in summaries:
                summaries.append(item.risk.summary)

        fire_at = datetime.combine(day, self.summary_time)
        return PlannedAlert(
            title=SUMMARY_TITLE,
            body=f"Don't miss classes for: {', '.join(summaries)}. Maintain your target!",
            fire_at=fire_at,
            dedup_key=DedupKey(day=day, course_id=None, kind=AlertKind.MORNING_SUMMARY),
            alert_class=AlertClass.FUTURE if fire_at > now else AlertClass.DROPPED,
            session_start=items[0].session.start,
        )

    def _reminders(
        self, day: date, items: list[SessionRisk], now: datetime
    ) -> list[PlannedAlert]:
        reminders: dict[tuple[DedupKey, datetime], PlannedAlert] = {}
        for item in items:
            alert = self._reminder(day, item.session, item.risk, now)
            reminders.setdefault((alert.dedup_key, alert.session_start), alert)
        return list(reminders.values())

    def _reminder(
        self, day: date, session: Session, risk: CourseRisk, now: datetime
    ) -> PlannedAlert:
        key = DedupKey(day=day, course_id=risk.course_id, kind=AlertKind.PRE_CLASS_REMINDER)
        fire_at = session.start - self.reminder_lead
        body = (
            f"Attendance: {risk.percentage:.1f}% / target {risk.target}%. "
            "Don't miss this one!"
        )

        if fire_at > now:
            return PlannedAlert(
                title=f"Class Starting Soon: {session.label}",
                body=body,
                fire_at=fire_at,
                dedup_key=key,
                alert_class=AlertClass.FUTURE,
                session_start=session.start,
            )

        if session.start > now:
            minutes_left = math.ceil((session.start - now).total_seconds() / 60)
            return PlannedAlert(
                title=f"Hurry Up! {session.label}",
                body=f"Class starts in {minutes_left} mins! {body}",
                fire_at=now,
                dedup_key=key,
                alert_class=AlertClass.IMMEDIATE,
                session_start=session.start,
            )

        return PlannedAlert(
            title=f"Class Starting Soon: {session.label}",
            body=body,
            fire_at=fire_at,
            dedup_key=key,
            alert_class=AlertClass.DROPPED,
            session_start=session.start,
        )
