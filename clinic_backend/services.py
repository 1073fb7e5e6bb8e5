from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from . import db
from .config import DEFAULT_MAX_APPOINTMENTS, LOCK_TIMEOUT_SECONDS
from .db import Base, db_session
from .errors import InvalidWindowError, NotFoundError, NoWindowError, SchedulingError, VisitNotScheduledError
from .locks import DayLockRegistry
from .logging_config import get_logger
from .models import (
    Doctor,
    DoctorAvailability,
    DoctorType,
    Notification,
    NotificationKind,
    Visit,
    VisitReason,
    VisitStatus,
)
from .notifications import Notifier, OutboxNotifier, ScheduleEvent, dispatch
from .scheduling import (
    AvailabilityWindow,
    DayVisit,
    SlotAssignment,
    allocate_time,
    check_booking,
    coerce_reason,
    next_serial,
    now_serving as _now_serving,
    policy_for,
    recompute_day,
)

log = get_logger(__name__)

day_locks = DayLockRegistry(LOCK_TIMEOUT_SECONDS)
_notifier: Notifier = OutboxNotifier()


# =========================
# Bootstrap
# =========================
def init_db() -> None:
    """Creates missing tables."""
    Base.metadata.create_all(bind=db.engine)


def set_notifier(notifier: Notifier) -> Notifier:
    """Swaps the notification collaborator; returns the previous one."""
    global _notifier
    previous, _notifier = _notifier, notifier
    return previous


# =========================
# DTO
# =========================
@dataclass(frozen=True)
class VisitOut:
    id: str
    doctor_id: str
    appointment_date: date
    patient_identity: str
    name: str | None
    phone: str | None
    concern: str | None
    reason: VisitReason
    serial: int
    scheduled_at: datetime
    status: VisitStatus


@dataclass(frozen=True)
class RescheduleResult:
    """Full ordered (visit_id, serial, scheduled_at) list after a recompute. Callers drop anything cached."""
    doctor_id: str
    appointment_date: date
    assignments: tuple[SlotAssignment, ...]


def _visit_out(v: Visit) -> VisitOut:
    return VisitOut(
        id=v.id,
        doctor_id=v.doctor_id,
        appointment_date=v.appointment_date,
        patient_identity=v.patient_identity,
        name=v.name,
        phone=v.phone,
        concern=v.concern,
        reason=v.reason,
        serial=v.serial,
        scheduled_at=v.scheduled_at,
        status=v.status,
    )


# =========================
# Session helpers
# =========================
def _get_doctor(s: Session, doctor_id: str) -> Doctor:
    doctor = s.get(Doctor, doctor_id)
    if not doctor:
        raise NotFoundError(f"Doctor {doctor_id} not found.")
    return doctor


def _window_row(s: Session, doctor_id: str, day: date) -> DoctorAvailability | None:
    q = (
        select(DoctorAvailability)
        .where(and_(DoctorAvailability.doctor_id == doctor_id, DoctorAvailability.availability_date == day))
        .with_for_update()
    )
    return s.scalars(q).first()


def _to_window(row: DoctorAvailability) -> AvailabilityWindow:
    return AvailabilityWindow(
        doctor_id=row.doctor_id,
        day=row.availability_date,
        start_time=row.start_time,
        break_start=row.break_start,
        break_end=row.break_end,
        end_time=row.end_time,
        max_appointments=row.max_appointments,
    )


def _scheduled_visits(s: Session, doctor_id: str, day: date, for_update: bool = True) -> list[Visit]:
    q = (
        select(Visit)
        .where(
            and_(
                Visit.doctor_id == doctor_id,
                Visit.appointment_date == day,
                Visit.status == VisitStatus.SCHEDULED,
            )
        )
        .order_by(Visit.serial.asc())
    )
    if for_update:
        q = q.with_for_update()
    return list(s.scalars(q))


def _apply_recompute(
    s: Session, doctor: Doctor, window: AvailabilityWindow
) -> tuple[RescheduleResult, list[ScheduleEvent]]:
    """
    Recomputes every Scheduled visit of the day and writes back the changed ones.
    Everything is computed before the first write; the caller's session commits or rolls back the whole day.
    """
    visits = _scheduled_visits(s, doctor.id, window.day)
    assignments = recompute_day(
        window,
        [DayVisit(id=v.id, serial=v.serial, reason=v.reason) for v in visits],
        policy_for(doctor.doctor_type),
    )

    by_id = {v.id: v for v in visits}
    events: list[ScheduleEvent] = []
    for a in assignments:
        v = by_id[a.visit_id]
        if (v.serial, v.scheduled_at) == (a.serial, a.scheduled_at):
            continue
        v.serial = a.serial
        v.scheduled_at = a.scheduled_at
        events.append(
            ScheduleEvent(NotificationKind.RESCHEDULED, doctor.id, window.day, v.id, a.serial, a.scheduled_at)
        )

    return RescheduleResult(doctor.id, window.day, assignments), events


# =========================
# Doctors
# =========================
def create_doctor(
    name: str,
    doctor_type: DoctorType | str = DoctorType.GENERAL,
    specialty: str | None = None,
) -> str:
    if isinstance(doctor_type, str):
        doctor_type = DoctorType(doctor_type)
    with db_session() as s:
        d = Doctor(name=name.strip(), doctor_type=doctor_type, specialty=specialty)
        s.add(d)
        s.flush()
        return d.id


def list_doctors_flat() -> list[dict]:
    with db_session() as s:
        rows = s.execute(
            select(Doctor.id, Doctor.name, Doctor.specialty, Doctor.doctor_type)
            .where(Doctor.active.is_(True))
            .order_by(Doctor.name)
        ).all()
        return [
            {"id": r.id, "name": r.name, "specialty": r.specialty, "doctor_type": r.doctor_type.value}
            for r in rows
        ]


# =========================
# Availability windows
# =========================
def get_window(doctor_id: str, day: date) -> dict | None:
    with db_session() as s:
        row = s.scalars(
            select(DoctorAvailability).where(
                and_(DoctorAvailability.doctor_id == doctor_id, DoctorAvailability.availability_date == day)
            )
        ).first()
        if row is None:
            return None
        return {
            "doctor_id": row.doctor_id,
            "availability_date": row.availability_date,
            "start_time": row.start_time,
            "break_start": row.break_start,
            "break_end": row.break_end,
            "end_time": row.end_time,
            "max_appointments": row.max_appointments,
            "location": row.location,
        }


def edit_window(
    doctor_id: str,
    day: date,
    start_time: time,
    break_start: time,
    break_end: time,
    end_time: time,
    max_appointments: int | None = None,
    location: str | None = None,
) -> RescheduleResult:
    """
    Creates or edits a doctor's window for `day` and reschedules the visits already booked on it.
    - max_appointments None: default on create, unchanged on edit
    - a capacity below the visits already booked is rejected
    """
    with day_locks.hold(doctor_id, day):
        with db_session() as s:
            doctor = _get_doctor(s, doctor_id)
            row = _window_row(s, doctor_id, day)

            if max_appointments is None:
                max_appointments = row.max_appointments if row else DEFAULT_MAX_APPOINTMENTS

            window = AvailabilityWindow(
                doctor_id=doctor_id,
                day=day,
                start_time=start_time,
                break_start=break_start,
                break_end=break_end,
                end_time=end_time,
                max_appointments=max_appointments,
            )

            booked = len(_scheduled_visits(s, doctor_id, day))
            if booked > window.max_appointments:
                raise InvalidWindowError(
                    f"Capacity {window.max_appointments} is below the {booked} visits already booked."
                )

            if row is None:
                row = DoctorAvailability(doctor_id=doctor_id, availability_date=day)
                s.add(row)
            row.start_time = start_time
            row.break_start = break_start
            row.break_end = break_end
            row.end_time = end_time
            row.max_appointments = max_appointments
            if location is not None:
                row.location = location
            s.flush()

            result, events = _apply_recompute(s, doctor, window)

    log.info("window_saved", doctor_id=doctor_id, day=day.isoformat(), moved=len(events))
    dispatch(_notifier, events)
    return result


def reschedule_day(doctor_id: str, day: date) -> RescheduleResult:
    """Explicit recompute of a day with its stored window (admin repair)."""
    with day_locks.hold(doctor_id, day):
        with db_session() as s:
            doctor = _get_doctor(s, doctor_id)
            row = _window_row(s, doctor_id, day)
            if row is None:
                raise NoWindowError(f"No availability for doctor {doctor_id} on {day.isoformat()}.")
            result, events = _apply_recompute(s, doctor, _to_window(row))

    log.info("day_rescheduled", doctor_id=doctor_id, day=day.isoformat(), moved=len(events))
    dispatch(_notifier, events)
    return result


# =========================
# Booking (core use case)
# =========================
def book_visit(
    doctor_id: str,
    day: date,
    patient_identity: str,
    reason: VisitReason | str,
    name: str | None = None,
    phone: str | None = None,
    concern: str | None = None,
) -> VisitOut:
    """
    Books the next serial of the day.
    Capacity check, serial, time and insert all happen under the day lock in one transaction.
    """
    reason = coerce_reason(reason)
    try:
        with day_locks.hold(doctor_id, day):
            with db_session() as s:
                doctor = _get_doctor(s, doctor_id)
                row = _window_row(s, doctor_id, day)
                if row is None:
                    raise NoWindowError(f"No availability for doctor {doctor_id} on {day.isoformat()}.")
                window = _to_window(row)

                scheduled = _scheduled_visits(s, doctor_id, day)
                decision = check_booking(window, len(scheduled), patient_identity, [v.patient_identity for v in scheduled])
                serial = next_serial([v.serial for v in scheduled], decision)

                policy = policy_for(doctor.doctor_type)
                at = allocate_time(window, [policy.duration(v.reason) for v in scheduled])

                visit = Visit(
                    doctor_id=doctor_id,
                    appointment_date=day,
                    patient_identity=patient_identity,
                    name=name,
                    phone=phone,
                    concern=concern,
                    reason=reason,
                    serial=serial,
                    scheduled_at=at,
                    status=VisitStatus.SCHEDULED,
                )
                s.add(visit)
                s.flush()
                out = _visit_out(visit)
    except SchedulingError as e:
        log.info("booking_rejected", doctor_id=doctor_id, day=day.isoformat(), code=e.code)
        raise

    log.info("visit_booked", visit_id=out.id, serial=out.serial, scheduled_at=out.scheduled_at.isoformat())
    dispatch(_notifier, [ScheduleEvent(NotificationKind.BOOKED, doctor_id, day, out.id, out.serial, out.scheduled_at)])
    return out


# =========================
# Cancellation / absence / completion
# =========================
_CLOSING_KINDS = {
    VisitStatus.CANCELLED: NotificationKind.CANCELLED,
    VisitStatus.ABSENT: NotificationKind.ABSENT,
    VisitStatus.COMPLETED: NotificationKind.COMPLETED,
}


def _close_visit(visit_id: str, outcome: VisitStatus) -> RescheduleResult:
    # doctor and day decide which lock to take
    with db_session() as s:
        v = s.get(Visit, visit_id)
        if not v:
            raise NotFoundError(f"Visit {visit_id} not found.")
        doctor_id, day = v.doctor_id, v.appointment_date

    with day_locks.hold(doctor_id, day):
        with db_session() as s:
            visit = s.get(Visit, visit_id)
            if visit is None:
                raise NotFoundError(f"Visit {visit_id} not found.")
            if visit.status != VisitStatus.SCHEDULED:
                raise VisitNotScheduledError(f"Visit {visit_id} is already {visit.status.value}.")

            doctor = _get_doctor(s, doctor_id)
            row = _window_row(s, doctor_id, day)
            if row is None:
                raise NoWindowError(f"No availability for doctor {doctor_id} on {day.isoformat()}.")

            visit.status = outcome
            s.flush()

            result, events = _apply_recompute(s, doctor, _to_window(row))

    log.info("visit_closed", visit_id=visit_id, outcome=outcome.value, moved=len(events))
    closed = ScheduleEvent(_CLOSING_KINDS[outcome], doctor_id, day, visit_id, None, None)
    dispatch(_notifier, [closed, *events])
    return result


def cancel_visit(visit_id: str, outcome: VisitStatus | str = VisitStatus.CANCELLED) -> RescheduleResult:
    """Marks the visit Cancelled or Absent; the rest of the day moves up."""
    if isinstance(outcome, str):
        outcome = VisitStatus(outcome)
    if outcome not in (VisitStatus.CANCELLED, VisitStatus.ABSENT):
        raise ValueError("Outcome must be Cancelled or Absent.")
    return _close_visit(visit_id, outcome)


def complete_visit(visit_id: str) -> RescheduleResult:
    return _close_visit(visit_id, VisitStatus.COMPLETED)


# =========================
# Queries
# =========================
def get_day_schedule(doctor_id: str, day: date, include_closed: bool = False) -> list[VisitOut]:
    """Scheduled visits by serial; with include_closed, the closed ones follow by time."""
    with db_session() as s:
        scheduled = _scheduled_visits(s, doctor_id, day, for_update=False)
        out = [_visit_out(v) for v in scheduled]
        if include_closed:
            q = (
                select(Visit)
                .where(
                    and_(
                        Visit.doctor_id == doctor_id,
                        Visit.appointment_date == day,
                        Visit.status != VisitStatus.SCHEDULED,
                    )
                )
                .order_by(Visit.scheduled_at.asc(), Visit.created_at.asc())
            )
            out.extend(_visit_out(v) for v in s.scalars(q))
        return out


def get_visit(visit_id: str) -> VisitOut:
    with db_session() as s:
        v = s.get(Visit, visit_id)
        if not v:
            raise NotFoundError(f"Visit {visit_id} not found.")
        return _visit_out(v)


def now_serving(doctor_id: str, day: date, now: datetime | None = None) -> int:
    """Serial being served at `now` (default: current local time), computed from stored times."""
    return _now_serving(get_day_schedule(doctor_id, day), now or datetime.now())


# =========================
# Notifications (external system simulation)
# =========================
def pending_notifications_flat(limit: int = 50) -> list[dict]:
    """Notifications not yet sent (sent_at NULL), oldest first."""
    with db_session() as s:
        q = select(Notification).where(Notification.sent_at.is_(None)).order_by(Notification.id.asc()).limit(limit)
        return [
            {
                "id": n.id,
                "kind": n.kind.value,
                "doctor_id": n.doctor_id,
                "appointment_date": n.appointment_date,
                "visit_id": n.visit_id,
                "serial": n.serial,
                "scheduled_at": n.scheduled_at,
                "message": n.message,
                "created_at": n.created_at,
            }
            for n in s.scalars(q)
        ]


def mark_notification_sent(notification_id: int) -> bool:
    with db_session() as s:
        n = s.get(Notification, notification_id)
        if not n or n.sent_at is not None:
            return False
        n.sent_at = datetime.utcnow()
        return True
