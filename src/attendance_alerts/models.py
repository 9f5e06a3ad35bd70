"""Pydantic models for timetable, attendance, alert and live-status data.

All data structures use Pydantic v2 for validation, serialization, and type safety.
Relay payload fields arrive camelCased; models accept both the alias and the
Python field name.
"""

from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SessionKind(str, Enum):
    CLASS = "CLASS"
    HOLIDAY = "HOLIDAY"
    OTHER = "OTHER"


class Session(BaseModel):
    """One timetable slot, normalized to local wall-clock instants.

    Recreated from the relay on every timetable fetch and never persisted.
    """

    model_config = ConfigDict(frozen=True)

    kind: SessionKind
    start: datetime
    end: datetime
    course_name: str | None = None
    course_code: str | None = None
    faculty: str | None = None
    room: str | None = None
    title: str = ""

    @property
    def day(self) -> date:
        return self.start.date()

    @property
    def label(self) -> str:
        return self.course_name or self.title or "Class"


class CourseComponent(BaseModel):
    """Per-component counters nested inside a registered course (lecture, lab...)."""

    model_config = ConfigDict(populate_by_name=True)

    component_id: int = Field(alias="courseCompId")
    faculty: str | None = Field(default=None, alias="courseCompFacultyName")
    present: int = Field(default=0, alias="presentLecture")
    total: int = Field(default=0, alias="totalLecture")


class RegisteredCourse(BaseModel):
    """A course the student is registered for, as returned by the relay."""

    model_config = ConfigDict(populate_by_name=True)

    student_id: int | None = Field(default=None, alias="studentId")
    course_id: int = Field(alias="courseId")
    course_code: str | None = Field(default=None, alias="courseCode")
    course_name: str = Field(alias="courseName")
    components: list[CourseComponent] = Field(
        default_factory=list, alias="studentCourseCompDetails"
    )

    @property
    def primary_component(self) -> CourseComponent | None:
        return self.components[0] if self.components else None

    def to_stat(self) -> "CourseAttendanceStat":
        """Counters of the first component; a course without components is 0/0."""
        comp = self.primary_component
        return CourseAttendanceStat(
            course_id=self.course_id,
            course_name=self.course_name,
            course_code=self.course_code,
            present=comp.present if comp else 0,
            total=comp.total if comp else 0,
        )


class CourseAttendanceStat(BaseModel):
    """Present/total counters for one course, fetched fresh per scheduling run."""

    model_config = ConfigDict(frozen=True)

    course_id: int
    course_name: str
    course_code: str | None = None
    present: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)

    @property
    def percentage(self) -> float:
        return attendance_percentage(self.present, self.total)


def attendance_percentage(present: int, total: int) -> float:
    """present/total as a percentage; a course with no classes yet counts as 0."""
    if total == 0:
        return 0.0
    return present / total * 100


class CourseRisk(BaseModel):
    """Result of evaluating one course against its attendance target."""

    model_config = ConfigDict(frozen=True)

    course_id: int
    course_name: str
    percentage: float
    target: int
    at_risk: bool

    @property
    def summary(self) -> str:
        """e.g. "Operating Systems (60% / 75%)"."""
        whole = Decimal(str(self.percentage)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        return f"{self.course_name} ({whole}% / {self.target}%)"


class AlertKind(str, Enum):
    MORNING_SUMMARY = "morning_summary"
    PRE_CLASS_REMINDER = "pre_class_reminder"


class AlertClass(str, Enum):
    FUTURE = "future"  # armed at fire_at
    IMMEDIATE = "immediate"  # dispatched right away
    DROPPED = "dropped"  # session already started or over


class DedupKey(BaseModel):
    """(date, course, kind) identity of an alert; stable across planning passes."""

    model_config = ConfigDict(frozen=True)

    day: date
    course_id: int | None
    kind: AlertKind

    def __str__(self) -> str:
        course = "all" if self.course_id is None else str(self.course_id)
        return f"{self.day.isoformat()}:{course}:{self.kind.value}"


class PlannedAlert(BaseModel):
    """One alert produced by the planner, already classified against `now`."""

    model_config = ConfigDict(frozen=True)

    title: str
    body: str
    fire_at: datetime
    dedup_key: DedupKey
    alert_class: AlertClass
    session_start: datetime | None = None


class AlertPlan(BaseModel):
    """All alerts produced by one planning pass with a fixed `now`."""

    now: datetime
    alerts: list[PlannedAlert] = Field(default_factory=list)

    def of_class(self, alert_class: AlertClass) -> list[PlannedAlert]:
        return [a for a in self.alerts if a.alert_class == alert_class]

    @property
    def future(self) -> list[PlannedAlert]:
        return self.of_class(AlertClass.FUTURE)

    @property
    def immediate(self) -> list[PlannedAlert]:
        return self.of_class(AlertClass.IMMEDIATE)

    @property
    def dropped(self) -> list[PlannedAlert]:
        return self.of_class(AlertClass.DROPPED)

    def dedup_keys(self) -> set[DedupKey]:
        return {a.dedup_key for a in self.alerts}


class PendingTrigger(BaseModel):
    """An alert armed with the dispatcher, identified by an opaque id."""

    model_config = ConfigDict(frozen=True)

    trigger_id: str
    title: str
    body: str
    fire_at: datetime
    dedup_key: DedupKey


class LiveStatus(str, Enum):
    IN_SESSION = "IN_SESSION"
    BETWEEN_SESSIONS = "BETWEEN_SESSIONS"
    DAY_COMPLETE = "DAY_COMPLETE"


class LiveState(BaseModel):
    """What is happening right now, recomputed on every tick."""

    model_config = ConfigDict(frozen=True)

    status: LiveStatus
    now: datetime
    current: Session | None = None
    next: Session | None = None
    elapsed_fraction: float = 0.0
    remaining: timedelta | None = None
    is_before_first_of_day: bool = False
    # Today's sessions, holidays included, for informational display
    today: tuple[Session, ...] = ()


class AttendanceMark(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    PENDING = "PENDING"
    UNKNOWN = "UNKNOWN"


class LectureRecord(BaseModel):
    """One row of lecture-wise attendance for a course component."""

    model_config = ConfigDict(populate_by_name=True)

    plan_date: str = Field(alias="planLecDate")  # "2025-09-15"
    topic: str | None = Field(default=None, alias="topicCovered")
    attendance: str = ""
    time_slot: str | None = Field(default=None, alias="timeSlot")
