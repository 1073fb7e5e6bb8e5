"""
Notification collaborator.

Events are handed over after the scheduling transaction has committed.
The default notifier writes an outbox row that the external notification
system later reads (see `cli.py notifications`).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Protocol

from .db import db_session
from .logging_config import get_logger
from .models import Notification, NotificationKind

log = get_logger(__name__)


@dataclass(frozen=True)
class ScheduleEvent:
    kind: NotificationKind
    doctor_id: str
    day: date
    visit_id: str
    serial: int | None
    scheduled_at: datetime | None

    def message(self) -> str:
        if self.kind == NotificationKind.BOOKED:
            return f"Appointment confirmed: serial {self.serial} at {self.scheduled_at:%d/%m/%Y %H:%M}."
        if self.kind == NotificationKind.RESCHEDULED:
            return f"Appointment moved: now serial {self.serial} at {self.scheduled_at:%d/%m/%Y %H:%M}."
        return f"Appointment of {self.day:%d/%m/%Y} marked {self.kind.value.lower()}."


class Notifier(Protocol):
    def notify(self, event: ScheduleEvent) -> None:
        ...


class OutboxNotifier:
    def notify(self, event: ScheduleEvent) -> None:
        with db_session() as s:
            s.add(
                Notification(
                    kind=event.kind,
                    doctor_id=event.doctor_id,
                    appointment_date=event.day,
                    visit_id=event.visit_id,
                    serial=event.serial,
                    scheduled_at=event.scheduled_at,
                    message=event.message(),
                )
            )


def dispatch(notifier: Notifier, events: Iterable[ScheduleEvent]) -> int:
    """Fire-and-forget: a failing notifier is logged and never undoes the schedule change."""
    sent = 0
    for event in events:
        try:
            notifier.notify(event)
            sent += 1
        except Exception:
            log.exception("notification_failed", kind=event.kind.value, visit_id=event.visit_id)
    return sent
