"""Attendance data source client for the portal login relay.

Every endpoint is a POST answering with the envelope
    {"success": true, "data": {"data": <payload>}, "error": "..."}
The blocking requests calls run in a worker thread (asyncio.to_thread) so the
event loop driving the live tracker never stalls on the network.

A 401 triggers one token renewal through the SessionManager and one retry of
the original request. Retrying other failures is left to callers.
"""

import asyncio
from datetime import datetime
from typing import Any

import requests
from pydantic import ValidationError

from src.attendance_alerts.errors import (
    AuthenticationError,
    PermanentError,
    RateLimitError,
    TransientError,
)
from src.attendance_alerts.logging import get_logger
from src.attendance_alerts.models import LectureRecord, RegisteredCourse, Session
from src.attendance_alerts.normalizer import normalize_schedule
from src.attendance_alerts.session import SessionManager

log = get_logger(__name__)


class _Unauthorized(Exception):
    """Relay answered 401 for the token the request carried."""


class AttendanceClient:
    """Fetches timetable, registered courses and lecture-wise attendance."""

    SCHEDULE_PATH = "/get-weekly-schedule"
    COURSES_PATH = "/get-registered-courses"
    LECTURES_PATH = "/get-lecture-wise-attendance"

    def __init__(
        self,
        session: SessionManager,
        timeout: float | None = None,
    ) -> None:
        self.session = session
        self.http = session.http
        self.timeout = timeout if timeout is not None else session.timeout

    def _post(self, path: str, payload: dict[str, Any] | None, token: str) -> Any:
        url = f"{self.session.base_url}{path}"
        try:
            resp = self.http.post(
                url,
                json=payload or {},
                headers={"Authorization": token},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransientError(f"{path} failed: {e}") from e

        if resp.status_code == 401:
            raise _Unauthorized(path)
        if resp.status_code == 429:
            raise RateLimitError(f"{path} rate limited")
        if resp.status_code >= 500:
            raise TransientError(f"{path} failed: HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise PermanentError(
                f"{path} returned non-JSON (HTTP {resp.status_code})"
            ) from e

        if resp.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            raise PermanentError(error or f"{path} failed: HTTP {resp.status_code}")
        return data

    async def _call(self, path: str, payload: dict[str, Any] | None = None) -> Any:
        token = self.session.token or await self.session.refresh()
        try:
            return await asyncio.to_thread(self._post, path, payload, token)
        except _Unauthorized:
            log.info("request_unauthorized", path=path)

        token = await self.session.refresh(stale_token=token)
        try:
            return await asyncio.to_thread(self._post, path, payload, token)
        except _Unauthorized as e:
            raise AuthenticationError(f"{path} rejected a freshly renewed token") from e

    @staticmethod
    def _unwrap(data: Any, what: str) -> Any:
        if not isinstance(data, dict):
            raise PermanentError(f"Invalid {what} data format.")
        inner = data.get("data")
        if data.get("success") and isinstance(inner, dict) and inner.get("data") is not None:
            return inner["data"]
        raise PermanentError(data.get("error") or f"Invalid {what} data format.")

    async def get_weekly_schedule(self, now: datetime | None = None) -> list[Session]:
        """The rolling timetable window (today .. today+6), normalized."""
        events = self._unwrap(await self._call(self.SCHEDULE_PATH), "weekly schedule")
        if not isinstance(events, list):
            raise PermanentError("Invalid weekly schedule data format.")
        try:
            sessions = normalize_schedule(events, now)
        except (AttributeError, TypeError, ValidationError) as e:
            raise PermanentError(f"Invalid weekly schedule data format: {e}") from e
        log.info("weekly_schedule_fetched", sessions=len(sessions))
        return sessions

    async def get_registered_courses(self) -> list[RegisteredCourse]:
        raw = self._unwrap(await self._call(self.COURSES_PATH), "registered courses")
        try:
            courses = [RegisteredCourse.model_validate(item) for item in raw]
        except (TypeError, ValidationError) as e:
            raise PermanentError(f"Invalid registered courses data format: {e}") from e
        log.info("registered_courses_fetched", courses=len(courses))
        return courses

    async def get_lecture_wise_attendance(
        self, student_id: int, course_id: int, component_id: int
    ) -> list[LectureRecord]:
        """Lecture list of one course component; empty when the relay has none."""
        payload = {
            "studentId": student_id,
            "courseId": course_id,
            "courseCompId": component_id,
        }
        data = await self._call(self.LECTURES_PATH, payload)
        try:
            lectures = data["data"]["data"][0]["lectureList"]
        except (KeyError, IndexError, TypeError):
            log.debug("lecture_list_missing", course_id=course_id)
            return []
        if not data.get("success") or not isinstance(lectures, list):
            return []
        try:
            return [LectureRecord.model_validate(item) for item in lectures]
        except ValidationError as e:
            raise PermanentError(f"Invalid lecture-wise attendance format: {e}") from e
