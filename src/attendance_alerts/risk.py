"""Attendance risk evaluation and timetable-to-course matching.

Timetable sessions only carry a course *name*, while attendance counters are
keyed by course id, so every session is first paired with a registered course
through a CourseMatcher. The default matcher accepts either name containing
the other (case-insensitive). That tolerates naming differences between the
two feeds but can pick the wrong course when one name is a prefix of another;
CourseCodeMatcher is the strict alternative.
"""

import re
from collections.abc import Iterable, Sequence
from typing import NamedTuple, Protocol

from src.attendance_alerts.logging import get_logger
from src.attendance_alerts.models import (
    CourseAttendanceStat,
    CourseRisk,
    Session,
    SessionKind,
)
from src.attendance_alerts.store import TargetStore

log = get_logger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


class CourseMatcher(Protocol):
    def match(
        self, session: Session, courses: Sequence[CourseAttendanceStat]
    ) -> CourseAttendanceStat | None: ...


class SubstringCourseMatcher:
    """Bidirectional, case-insensitive substring match on course names.

    With fold_alnum=True punctuation and spaces are ignored as well
    ("Operating-Systems" matches "operating systems lab").
    """

    def __init__(self, fold_alnum: bool = False) -> None:
        self.fold_alnum = fold_alnum

    def _fold(self, name: str) -> str:
        name = name.strip().lower()
        if self.fold_alnum:
            name = _NON_ALNUM.sub("", name)
        return name

    def match(
        self, session: Session, courses: Sequence[CourseAttendanceStat]
    ) -> CourseAttendanceStat | None:
        if not session.course_name:
            return None
        wanted = self._fold(session.course_name)
        if not wanted:
            return None
        for course in courses:
            candidate = self._fold(course.course_name)
            if candidate and (candidate in wanted or wanted in candidate):
                return course
        return None


class CourseCodeMatcher:
    """Exact match of the session's course code against the course code or id."""

    def match(
        self, session: Session, courses: Sequence[CourseAttendanceStat]
    ) -> CourseAttendanceStat | None:
        code = (session.course_code or "").strip().upper()
        if not code:
            return None
        for course in courses:
            if code == (course.course_code or "").strip().upper():
                return course
            if code == str(course.course_id):
                return course
        return None


class SessionRisk(NamedTuple):
    session: Session
    risk: CourseRisk


class RiskEvaluator:
    """Computes percentage and at-risk flag per course against stored targets."""

    def __init__(
        self,
        targets: TargetStore,
        matcher: CourseMatcher | None = None,
        zero_total_at_risk: bool = True,
    ) -> None:
        self.targets = targets
        self.matcher = matcher or SubstringCourseMatcher()
        self.zero_total_at_risk = zero_total_at_risk

    def evaluate(self, stat: CourseAttendanceStat) -> CourseRisk:
        target = self.targets.get_target(stat.course_id)
        percentage = stat.percentage
        if stat.total == 0 and not self.zero_total_at_risk:
            at_risk = False
        else:
            at_risk = percentage <= target
        return CourseRisk(
            course_id=stat.course_id,
            course_name=stat.course_name,
            percentage=percentage,
            target=target,
            at_risk=at_risk,
        )

    def evaluate_all(self, stats: Iterable[CourseAttendanceStat]) -> dict[int, CourseRisk]:
        risks = {stat.course_id: self.evaluate(stat) for stat in stats}
        for risk in risks.values():
            log.debug(
                "course_evaluated",
                course=risk.course_name,
                percentage=round(risk.percentage, 1),
                target=risk.target,
                at_risk=risk.at_risk,
            )
        return risks

    def at_risk_sessions(
        self,
        sessions: Iterable[Session],
        stats: Sequence[CourseAttendanceStat],
    ) -> list[SessionRisk]:
        """CLASS sessions whose matched course is at or below its target.

        Sessions without a matching course are skipped.
        """
        risks = self.evaluate_all(stats)
        out: list[SessionRisk] = []
        unmatched = 0
        for session in sessions:
            if session.kind is not SessionKind.CLASS:
                continue
            course = self.matcher.match(session, stats)
            if course is None:
                unmatched += 1
                continue
            risk = risks[course.course_id]
            if risk.at_risk:
                out.append(SessionRisk(session, risk))
        if unmatched:
            log.debug("sessions_unmatched", count=unmatched)
        return out
