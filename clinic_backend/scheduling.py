"""
Daily scheduling core.

Pure functions and value objects, no database and no clock:
- durations      : DurationPolicy, ReasonDurationTable, FlatDurationPolicy
- window         : AvailabilityWindow (validated)
- slot allocation: allocate_time / slot_times with break-skip
- serials        : next_serial / compact
- capacity guard : can_book / check_booking
- reschedule     : recompute_day
- projections    : now_serving

services.py is the only caller that persists what these return.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Protocol, Sequence, TypeVar

from .config import FLAT_DURATIONS
from .errors import CapacityExceededError, DuplicateIdentityError, InvalidWindowError, SchedulingError, UnknownReasonError
from .models import DoctorType, VisitReason


# =========================
# Durations
# =========================
REASON_DURATIONS: dict[VisitReason, int] = {
    VisitReason.NEW_PATIENT: 10,
    VisitReason.FOLLOW_UP: 7,
    VisitReason.REPORT_SHOW: 12,
}


def coerce_reason(reason: VisitReason | str) -> VisitReason:
    """Accepts the enum, its value ("Follow Up") or its name ("FOLLOW_UP")."""
    if isinstance(reason, VisitReason):
        return reason
    try:
        return VisitReason(reason)
    except ValueError:
        pass
    try:
        return VisitReason[reason]
    except KeyError:
        raise UnknownReasonError(f"Unknown visit reason: {reason!r}") from None


class DurationPolicy(Protocol):
    def duration(self, reason: VisitReason | str) -> int:
        ...


class ReasonDurationTable:
    """Minutes per visit reason."""

    def __init__(self, durations: dict[VisitReason, int] | None = None) -> None:
        self._durations = dict(REASON_DURATIONS if durations is None else durations)

    def duration(self, reason: VisitReason | str) -> int:
        r = coerce_reason(reason)
        try:
            return self._durations[r]
        except KeyError:
            raise UnknownReasonError(f"No duration configured for {r.value!r}") from None

    def __repr__(self) -> str:
        table = {r.value: m for r, m in self._durations.items()}
        return f"ReasonDurationTable({table})"


@dataclass(frozen=True)
class FlatDurationPolicy:
    """Same duration for every reason (e.g. physiotherapy sessions)."""

    minutes: int

    def __post_init__(self) -> None:
        if self.minutes <= 0:
            raise ValueError("Flat duration must be positive.")

    def duration(self, reason: VisitReason | str) -> int:
        coerce_reason(reason)
        return self.minutes


def policy_for(doctor_type: DoctorType, flat_durations: dict[str, int] | None = None) -> DurationPolicy:
    flat = FLAT_DURATIONS if flat_durations is None else flat_durations
    minutes = flat.get(doctor_type.value)
    if minutes is not None:
        return FlatDurationPolicy(minutes)
    return ReasonDurationTable()


# =========================
# Availability window
# =========================
@dataclass(frozen=True)
class AvailabilityWindow:
    doctor_id: str
    day: date
    start_time: time
    break_start: time
    break_end: time
    end_time: time
    max_appointments: int

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if not (self.start_time < self.break_start < self.break_end < self.end_time):
            raise InvalidWindowError(
                "Window must satisfy start < break start < break end < end "
                f"(got {self.start_time:%H:%M}, {self.break_start:%H:%M}-{self.break_end:%H:%M}, {self.end_time:%H:%M})."
            )
        if self.max_appointments < 1:
            raise InvalidWindowError(f"max_appointments must be at least 1 (got {self.max_appointments}).")

    def at(self, t: time) -> datetime:
        return datetime.combine(self.day, t)

    def capacity_remaining(self, booked_count: int) -> int:
        return max(0, self.max_appointments - booked_count)


# =========================
# Slot allocation
# =========================
def _advance(current: datetime, minutes: int, break_start: datetime, break_end: datetime) -> datetime:
    if minutes < 0:
        raise ValueError(f"Negative duration: {minutes}")
    current += timedelta(minutes=minutes)
    # landing inside the break pushes to its end; jumping over it does not
    if break_start <= current < break_end:
        current = break_end
    return current


def allocate_time(window: AvailabilityWindow, prior_durations: Iterable[int]) -> datetime:
    """
    Start time of the visit that follows `prior_durations` (durations of serials 1..k-1, in order).
    May land after end_time: capacity is enforced by the guard, not here.
    """
    break_start, break_end = window.at(window.break_start), window.at(window.break_end)
    current = window.at(window.start_time)
    for minutes in prior_durations:
        current = _advance(current, minutes, break_start, break_end)
    return current


def slot_times(window: AvailabilityWindow, durations: Sequence[int]) -> list[datetime]:
    """Start times for serials 1..N in one pass; slot_times(w, d)[k-1] == allocate_time(w, d[:k-1])."""
    break_start, break_end = window.at(window.break_start), window.at(window.break_end)
    current = window.at(window.start_time)
    out: list[datetime] = []
    for minutes in durations:
        out.append(current)
        current = _advance(current, minutes, break_start, break_end)
    return out


# =========================
# Capacity guard
# =========================
@dataclass(frozen=True)
class BookingDecision:
    ok: bool
    error: SchedulingError | None = None

    @classmethod
    def admit(cls) -> "BookingDecision":
        return cls(True)

    @classmethod
    def reject(cls, error: SchedulingError) -> "BookingDecision":
        return cls(False, error)


def can_book(
    window: AvailabilityWindow,
    current_count: int,
    identity: str,
    existing_identities: Iterable[str],
) -> BookingDecision:
    if window.capacity_remaining(current_count) == 0:
        return BookingDecision.reject(
            CapacityExceededError(
                f"No slots left on {window.day.isoformat()} ({window.max_appointments} appointments max)."
            )
        )
    if identity in set(existing_identities):
        return BookingDecision.reject(
            DuplicateIdentityError(f"Identity {identity!r} already has a visit on {window.day.isoformat()}.")
        )
    return BookingDecision.admit()


def check_booking(
    window: AvailabilityWindow,
    current_count: int,
    identity: str,
    existing_identities: Iterable[str],
) -> BookingDecision:
    decision = can_book(window, current_count, identity, existing_identities)
    if not decision.ok:
        raise decision.error  # type: ignore[misc]
    return decision


# =========================
# Serials
# =========================
def next_serial(existing_serials: Iterable[int], decision: BookingDecision) -> int:
    """Serial for a new visit. Only valid after the capacity guard admitted the booking."""
    if not decision.ok:
        raise CapacityExceededError("Booking was not admitted by the capacity guard.")
    return max(existing_serials, default=0) + 1


class HasSerial(Protocol):
    serial: int


V = TypeVar("V", bound=HasSerial)


def compact(visits: Sequence[V]) -> list[tuple[V, int]]:
    """Renumbers the surviving visits 1..N keeping their relative order."""
    ordered = sorted(visits, key=lambda v: v.serial)
    return [(v, i) for i, v in enumerate(ordered, start=1)]


# =========================
# Reschedule
# =========================
@dataclass(frozen=True)
class DayVisit:
    """What the recompute needs to know about a Scheduled visit."""

    id: str
    serial: int
    reason: VisitReason


@dataclass(frozen=True)
class SlotAssignment:
    visit_id: str
    serial: int
    scheduled_at: datetime


def recompute_day(
    window: AvailabilityWindow,
    visits: Sequence[DayVisit],
    policy: DurationPolicy,
) -> tuple[SlotAssignment, ...]:
    """
    Full-day recompute: compact serials, then allocate every slot with the current window.
    Same inputs give the same output; an empty day gives ().
    """
    window.validate()
    ordered = compact(visits)
    durations = [policy.duration(v.reason) for v, _ in ordered]
    times = slot_times(window, durations)
    return tuple(
        SlotAssignment(visit_id=v.id, serial=serial, scheduled_at=at)
        for (v, serial), at in zip(ordered, times)
    )


# =========================
# Read-only projections
# =========================
class HasSlot(Protocol):
    serial: int
    scheduled_at: datetime


def now_serving(schedule: Sequence[HasSlot], now: datetime) -> int:
    """
    Serial currently being served: the first visit not yet started at `now`.
    After the last visit it is N+1. Never stored.
    """
    for item in sorted(schedule, key=lambda s: s.serial):
        if now <= item.scheduled_at:
            return item.serial
    return len(schedule) + 1
