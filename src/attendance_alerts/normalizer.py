"""Schedule normalizer - turns relay timetable payloads into Session models.

The relay is inconsistent about date-time formats. Seen in the wild:
  "24/04/2024 10:10:00"   day-first, slash separated
  "24-04-2024 10:10:00"   day-first, dash separated
  "2024-04-24 10:10:00"   year-first
  "2024-04-24T10:10:00"   bare ISO

The shape is detected structurally (where the separators sit) and the result
is a naive local datetime. No timezone conversion is performed.
"""

import re
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from src.attendance_alerts.logging import get_logger
from src.attendance_alerts.models import Session, SessionKind

log = get_logger(__name__)

_DAY_FIRST = re.compile(
    r"^(?P<day>\d{1,2})(?P<sep>[/-])(?P<month>\d{1,2})(?P=sep)(?P<year>\d{4})"
    r"(?:[ T](?P<time>\d{1,2}:\d{2}(?::\d{2})?))?$"
)
_YEAR_FIRST = re.compile(
    r"^(?P<year>\d{4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})"
    r"(?:[ T](?P<time>\d{1,2}:\d{2}(?::\d{2})?))?$"
)


class ParseResult(BaseModel):
    """Outcome of parsing one raw date-time string."""

    model_config = ConfigDict(frozen=True)

    raw: str | None
    value: datetime | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.value is not None

    def or_now(self, now: datetime) -> datetime:
        return self.value if self.value is not None else now


def _split_time(text: str | None) -> tuple[int, int, int]:
    if not text:
        return 0, 0, 0
    parts = [int(p) for p in text.split(":")]
    while len(parts) < 3:
        parts.append(0)
    return parts[0], parts[1], parts[2]


def parse_instant(raw: str | None) -> ParseResult:
    """Parse a relay date-time string into a local datetime.

    Never raises; a failure is reported through ParseResult.error.
    """
    if raw is None or not str(raw).strip():
        return ParseResult(raw=raw, error="empty value")

    text = str(raw).strip()
    match = _DAY_FIRST.match(text) or _YEAR_FIRST.match(text)
    try:
        if match:
            hour, minute, second = _split_time(match.group("time"))
            value = datetime(
                int(match.group("year")),
                int(match.group("month")),
                int(match.group("day")),
                hour,
                minute,
                second,
            )
        else:
            value = datetime.fromisoformat(text)
            if value.tzinfo is not None:
                # Keep the wall-clock reading, drop the offset
                value = value.replace(tzinfo=None)
    except ValueError as e:
        return ParseResult(raw=text, error=str(e))

    return ParseResult(raw=text, value=value)


def instant_or_now(raw: str | None, now: datetime, *, field: str = "value") -> datetime:
    """Parse `raw`, substituting `now` on failure (logged, never silent)."""
    result = parse_instant(raw)
    if not result.ok:
        log.warning("date_parse_failed", field=field, raw=raw, error=result.error)
    return result.or_now(now)


def _session_kind(value: Any) -> SessionKind:
    try:
        return SessionKind(str(value).upper())
    except ValueError:
        return SessionKind.OTHER


def normalize_session(event: Mapping[str, Any], now: datetime) -> Session:
    """Build a Session from one relay timetable event."""
    return Session(
        kind=_session_kind(event.get("type")),
        start=instant_or_now(event.get("start"), now, field="start"),
        end=instant_or_now(event.get("end"), now, field="end"),
        course_name=event.get("courseName"),
        course_code=event.get("courseCode"),
        faculty=event.get("facultyName"),
        room=event.get("classRoom"),
        title=event.get("title") or "",
    )


def normalize_schedule(
    events: Iterable[Mapping[str, Any]], now: datetime | None = None
) -> list[Session]:
    """Normalize a whole timetable window, sorted by start."""
    now = now or datetime.now()
    sessions = [normalize_session(event, now) for event in events]
    sessions.sort(key=lambda s: s.start)
    log.debug("schedule_normalized", sessions=len(sessions))
    return sessions
