"""Notification dispatcher interface and in-process implementations.

The dispatcher owns the platform side of alerts: triggers armed for a future
instant, alerts displayed right away, and one ambient status entry. The status
entry is a separate slot; cancel_all_future_alerts() never touches it.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel

from src.attendance_alerts.logging import get_logger
from src.attendance_alerts.models import DedupKey, PendingTrigger

log = get_logger(__name__)


class DeliveredAlert(BaseModel):
    title: str
    body: str
    shown_at: datetime


class NotificationDispatcher(ABC):
    """Arms, cancels and displays alerts on behalf of the scheduler."""

    @abstractmethod
    async def create_future_alert(
        self, title: str, body: str, fire_at: datetime, dedup_key: DedupKey
    ) -> str:
        """Arm an alert and return its opaque trigger id."""

    @abstractmethod
    async def cancel_all_future_alerts(self) -> int:
        """Cancel every pending trigger and return how many were removed."""

    @abstractmethod
    async def display_immediate(self, title: str, body: str) -> None: ...

    @abstractmethod
    async def pending_triggers(self) -> list[PendingTrigger]: ...

    @abstractmethod
    async def set_status_entry(self, title: str, body: str) -> None: ...

    @abstractmethod
    async def clear_status_entry(self) -> None: ...


class InMemoryDispatcher(NotificationDispatcher):
    """Keeps triggers and delivered alerts in memory.

    Used by the CLI dry runs and tests; also the reference for what a
    platform-backed dispatcher has to honour.
    """

    def __init__(self) -> None:
        self._pending: dict[str, PendingTrigger] = {}
        self.delivered: list[DeliveredAlert] = []
        self.status_entry: tuple[str, str] | None = None

    async def create_future_alert(
        self, title: str, body: str, fire_at: datetime, dedup_key: DedupKey
    ) -> str:
        trigger_id = uuid.uuid4().hex
        self._pending[trigger_id] = PendingTrigger(
            trigger_id=trigger_id,
            title=title,
            body=body,
            fire_at=fire_at,
            dedup_key=dedup_key,
        )
        return trigger_id

    async def cancel_all_future_alerts(self) -> int:
        count = len(self._pending)
        self._pending.clear()
        return count

    async def display_immediate(self, title: str, body: str) -> None:
        self.delivered.append(DeliveredAlert(title=title, body=body, shown_at=datetime.now()))

    async def pending_triggers(self) -> list[PendingTrigger]:
        return sorted(self._pending.values(), key=lambda t: (t.fire_at, str(t.dedup_key)))

    async def set_status_entry(self, title: str, body: str) -> None:
        self.status_entry = (title, body)

    async def clear_status_entry(self) -> None:
        self.status_entry = None

    def fire_due(self, now: datetime) -> list[PendingTrigger]:
        """Move triggers whose instant has passed into the delivered list."""
        due = [t for t in self._pending.values() if t.fire_at <= now]
        for trigger in due:
            del self._pending[trigger.trigger_id]
            self.delivered.append(
                DeliveredAlert(title=trigger.title, body=trigger.body, shown_at=now)
            )
        return due


class LoggingDispatcher(NotificationDispatcher):
    """Wraps another dispatcher and logs every call."""

    def __init__(self, inner: NotificationDispatcher) -> None:
        self.inner = inner

    async def create_future_alert(
        self, title: str, body: str, fire_at: datetime, dedup_key: DedupKey
    ) -> str:
        trigger_id = await self.inner.create_future_alert(title, body, fire_at, dedup_key)
        log.info(
            "alert_armed",
            title=title,
            fire_at=fire_at.isoformat(timespec="minutes"),
            dedup_key=str(dedup_key),
            trigger_id=trigger_id,
        )
        return trigger_id

    async def cancel_all_future_alerts(self) -> int:
        count = await self.inner.cancel_all_future_alerts()
        log.info("alerts_cancelled", count=count)
        return count

    async def display_immediate(self, title: str, body: str) -> None:
        await self.inner.display_immediate(title, body)
        log.info("alert_displayed", title=title)

    async def pending_triggers(self) -> list[PendingTrigger]:
        return await self.inner.pending_triggers()

    async def set_status_entry(self, title: str, body: str) -> None:
        await self.inner.set_status_entry(title, body)
        log.debug("status_entry_set", title=title)

    async def clear_status_entry(self) -> None:
        await self.inner.clear_status_entry()
        log.debug("status_entry_cleared")
