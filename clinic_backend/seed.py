from __future__ import annotations

from sqlalchemy import select

from .db import db_session
from .models import Doctor, DoctorType

DOCTORS = [
    ("Dr. Nadia Rahman", "General Medicine", DoctorType.GENERAL),
    ("Dr. Tanvir Karim", "Homeopathy", DoctorType.HOMEOPATHY),
    ("Dr. Sadia Hossain", "Physiotherapy", DoctorType.PHYSIOTHERAPIST),
]


def seed_base() -> None:
    """Inserts the demo doctors (idempotent, matched by name)."""
    with db_session() as s:
        for name, specialty, doctor_type in DOCTORS:
            if s.execute(select(Doctor).where(Doctor.name == name)).scalar_one_or_none() is None:
                s.add(Doctor(name=name, specialty=specialty, doctor_type=doctor_type))
