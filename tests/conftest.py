import asyncio
import threading
from datetime import datetime

import pytest

from src.attendance_alerts.dispatcher import InMemoryDispatcher
from src.attendance_alerts.errors import DataSourceError
from src.attendance_alerts.models import RegisteredCourse, Session, SessionKind
from src.attendance_alerts.planner import NotificationPlanner
from src.attendance_alerts.risk import RiskEvaluator
from src.attendance_alerts.scheduler import NotificationScheduler
from src.attendance_alerts.session import SessionManager
from src.attendance_alerts.store import JsonKeyValueStore, TargetStore

BASE_URL = "https://relay.test/api"

EVENTS = [
    {
        "type": "CLASS",
        "start": "20/10/2026 11:00:00",
        "end": "20/10/2026 11:50:00",
        "courseName": "Compiler Design",
        "facultyName": "Dr. Iyer",
        "classRoom": "LT-1",
        "courseCode": "KCS502",
        "title": "CD",
        "content": "",
    },
    {
        "type": "CLASS",
        "start": "20/10/2026 10:00:00",
        "end": "20/10/2026 10:50:00",
        "courseName": "Operating Systems",
        "facultyName": "Dr. Rao",
        "classRoom": "LT-3",
        "courseCode": "KCS401",
        "title": "OS",
        "content": "",
    },
]

COURSES = [
    {
        "studentId": 7,
        "courseId": 101,
        "courseCode": "KCS401",
        "courseName": "Operating Systems",
        "studentCourseCompDetails": [
            {
                "courseCompId": 1010,
                "courseCompFacultyName": "Dr. Rao",
                "presentLecture": 3,
                "totalLecture": 5,
            }
        ],
    }
]


def make_session(
    start: str,
    end: str,
    course: str | None = "Operating Systems",
    kind: SessionKind = SessionKind.CLASS,
) -> Session:
    return Session(
        kind=kind,
        start=datetime.fromisoformat(start),
        end=datetime.fromisoformat(end),
        course_name=course,
        title=course or "",
    )


def make_course(
    course_id: int, name: str, present: int, total: int, code: str | None = None
) -> RegisteredCourse:
    return RegisteredCourse.model_validate(
        {
            "studentId": 7,
            "courseId": course_id,
            "courseCode": code,
            "courseName": name,
            "studentCourseCompDetails": [
                {
                    "courseCompId": course_id * 10,
                    "courseCompFacultyName": "Dr. Rao",
                    "presentLecture": present,
                    "totalLecture": total,
                }
            ],
        }
    )


class FakeSource:
    """In-memory attendance source; set `error` to make both fetches fail."""

    def __init__(self, sessions=None, courses=None):
        self.sessions = list(sessions or [])
        self.courses = list(courses or [])
        self.error: DataSourceError | None = None
        self.gate: asyncio.Event | None = None
        self.schedule_calls = 0

    async def get_weekly_schedule(self):
        self.schedule_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.sessions)

    async def get_registered_courses(self):
        if self.error is not None:
            raise self.error
        return list(self.courses)


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.text = str(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


def envelope(data) -> FakeResponse:
    return FakeResponse(200, {"success": True, "data": {"data": data}})


class FakeHttp:
    """Stands in for requests.Session; responses are queued per endpoint path.

    The last queued response for a path is reused for further calls.
    """

    def __init__(self):
        self.routes: dict[str, list] = {}
        self.calls: list[tuple[str, dict, dict]] = []
        self._lock = threading.Lock()

    def queue(self, path: str, *responses) -> None:
        self.routes.setdefault(path, []).extend(responses)

    def post(self, url, json=None, headers=None, timeout=None):
        path = "/" + url.rsplit("/", 1)[-1]
        with self._lock:
            self.calls.append((path, json, headers or {}))
            responses = self.routes.get(path)
            if not responses:
                raise AssertionError(f"unexpected POST {path}")
            response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def count(self, path: str) -> int:
        return sum(1 for call in self.calls if call[0] == path)


@pytest.fixture
def targets(tmp_path):
    return TargetStore(JsonKeyValueStore(tmp_path / "targets.json"))


@pytest.fixture
def evaluator(targets):
    return RiskEvaluator(targets)


@pytest.fixture
def planner():
    return NotificationPlanner()


@pytest.fixture
def dispatcher():
    return InMemoryDispatcher()


@pytest.fixture
def source():
    return FakeSource(
        sessions=[
            make_session("2026-10-20T10:00", "2026-10-20T10:50", "Operating Systems"),
            make_session("2026-10-20T11:00", "2026-10-20T11:50", "Compiler Design"),
            make_session("2026-10-21T09:00", "2026-10-21T09:50", "Operating Systems"),
        ],
        courses=[
            make_course(101, "Operating Systems", present=3, total=5),
            make_course(102, "Compiler Design", present=9, total=10),
        ],
    )


@pytest.fixture
def scheduler(source, dispatcher, evaluator, planner):
    return NotificationScheduler(source, dispatcher, evaluator, planner)


@pytest.fixture
def http():
    fake = FakeHttp()
    fake.queue("/get-session", FakeResponse(200, {"success": True, "authorization": "tok-1"}))
    return fake


@pytest.fixture
def session_manager(tmp_path, http):
    return SessionManager(BASE_URL, state_dir=str(tmp_path / "state"), http=http)
