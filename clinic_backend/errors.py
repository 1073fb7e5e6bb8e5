"""Errors raised by the scheduling core and the service layer."""
from __future__ import annotations


class SchedulingError(Exception):
    """Base class. `code` is stable and used by the API/CLI to tell errors apart."""

    code = "scheduling_error"

    def __init__(self, message: str = "") -> None:
        self.message = message or (self.__doc__ or self.code)
        super().__init__(self.message)


class InvalidWindowError(SchedulingError):
    """Malformed or overlapping availability window."""

    code = "invalid_window"


class CapacityExceededError(SchedulingError):
    """The day has no free slot left."""

    code = "capacity_exceeded"


class DuplicateIdentityError(SchedulingError):
    """The patient identity already holds a visit with this doctor on this day."""

    code = "duplicate_identity"


class NotFoundError(SchedulingError):
    """Referenced visit or doctor does not exist."""

    code = "not_found"


class NoWindowError(NotFoundError):
    """The doctor has no availability window on this day."""

    code = "no_window"


class VisitNotScheduledError(SchedulingError):
    """The visit has already left the Scheduled state."""

    code = "visit_not_scheduled"


class UnknownReasonError(SchedulingError):
    """Visit reason outside the known set (programming error)."""

    code = "unknown_reason"


class ScheduleBusyError(SchedulingError):
    """The day is being modified by another request; retry."""

    code = "schedule_busy"
