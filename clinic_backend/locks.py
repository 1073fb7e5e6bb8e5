from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import date
from typing import Iterator

from .errors import ScheduleBusyError


class DayLockRegistry:
    """
    One lock per (doctor_id, date): every write to a day's schedule runs while holding it.
    Waiting longer than `timeout` raises ScheduleBusyError so the caller can retry.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, date], threading.Lock] = {}

    def _lock_for(self, doctor_id: str, day: date) -> threading.Lock:
        key = (doctor_id, day)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, doctor_id: str, day: date) -> Iterator[None]:
        lock = self._lock_for(doctor_id, day)
        if not lock.acquire(timeout=self.timeout):
            raise ScheduleBusyError(f"Schedule for {day.isoformat()} is being updated, retry shortly.")
        try:
            yield
        finally:
            lock.release()
