from datetime import date, datetime, time

import pytest

from clinic_backend import services
from clinic_backend.db import configure_engine
from clinic_backend.locks import DayLockRegistry
from clinic_backend.models import DoctorType
from clinic_backend.notifications import OutboxNotifier

DAY = date(2026, 10, 20)


def t(hhmm: str) -> time:
    return time.fromisoformat(hhmm)


def at(hhmm: str, day: date = DAY) -> datetime:
    return datetime.combine(day, t(hhmm))


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    """Fresh SQLite file, fresh day locks and the outbox notifier for every test."""
    url = f"sqlite:///{tmp_path / 'schedule.sqlite'}"
    configure_engine(url)
    services.init_db()
    monkeypatch.setattr(services, "day_locks", DayLockRegistry(timeout=5))
    previous = services.set_notifier(OutboxNotifier())
    yield url
    services.set_notifier(previous)


@pytest.fixture
def doctor_id():
    return services.create_doctor("Dr. Test General", DoctorType.GENERAL, "General Medicine")


@pytest.fixture
def physio_id():
    return services.create_doctor("Dr. Test Physio", DoctorType.PHYSIOTHERAPIST, "Physiotherapy")


@pytest.fixture
def example_window(doctor_id):
    """11:00-16:30, break 13:15-14:30, 3 appointments."""
    services.edit_window(doctor_id, DAY, t("11:00"), t("13:15"), t("14:30"), t("16:30"), max_appointments=3)
    return doctor_id
