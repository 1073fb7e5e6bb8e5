from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, time

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Index, Integer, String, Text, Time, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def new_uuid() -> str:
    return str(uuid.uuid4())


class DoctorType(enum.Enum):
    GENERAL = "General"
    HOMEOPATHY = "Homeopathy"
    PHYSIOTHERAPIST = "Physiotherapist"


class VisitReason(enum.Enum):
    NEW_PATIENT = "New Patient"
    FOLLOW_UP = "Follow Up"
    REPORT_SHOW = "Report Show"


class VisitStatus(enum.Enum):
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"
    ABSENT = "Absent"
    CANCELLED = "Cancelled"


class NotificationKind(enum.Enum):
    BOOKED = "Booked"
    CANCELLED = "Cancelled"
    ABSENT = "Absent"
    COMPLETED = "Completed"
    RESCHEDULED = "Rescheduled"


class Doctor(Base):
    __tablename__ = "doctors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    specialty: Mapped[str | None] = mapped_column(String(120), nullable=True)
    doctor_type: Mapped[DoctorType] = mapped_column(Enum(DoctorType), default=DoctorType.GENERAL, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    windows: Mapped[list["DoctorAvailability"]] = relationship(back_populates="doctor", cascade="all, delete-orphan")
    visits: Mapped[list["Visit"]] = relationship(back_populates="doctor", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"Doctor({self.name}, {self.doctor_type.value})"


class DoctorAvailability(Base):
    """One bookable window per doctor per date."""
    __tablename__ = "availability_windows"
    __table_args__ = (
        UniqueConstraint("doctor_id", "availability_date", name="uq_window_doctor_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doctor_id: Mapped[str] = mapped_column(ForeignKey("doctors.id"), nullable=False)
    availability_date: Mapped[date] = mapped_column(Date, nullable=False)

    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    break_start: Mapped[time] = mapped_column(Time, nullable=False)
    break_end: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    max_appointments: Mapped[int] = mapped_column(Integer, nullable=False)

    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    doctor: Mapped["Doctor"] = relationship(back_populates="windows")


class Visit(Base):
    __tablename__ = "visits"
    __table_args__ = (
        Index("ix_visits_doctor_day", "doctor_id", "appointment_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    doctor_id: Mapped[str] = mapped_column(ForeignKey("doctors.id"), nullable=False)
    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)

    # opaque strings from the identity collaborator
    patient_identity: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    concern: Mapped[str | None] = mapped_column(Text, nullable=True)

    reason: Mapped[VisitReason] = mapped_column(Enum(VisitReason), nullable=False)

    # written only by the scheduling core
    serial: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    status: Mapped[VisitStatus] = mapped_column(Enum(VisitStatus), default=VisitStatus.SCHEDULED, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    doctor: Mapped["Doctor"] = relationship(back_populates="visits")


class Notification(Base):
    """Outbox row read by the external notification system."""
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[NotificationKind] = mapped_column(Enum(NotificationKind), nullable=False)

    doctor_id: Mapped[str] = mapped_column(String(36), nullable=False)
    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    visit_id: Mapped[str] = mapped_column(String(36), nullable=False)
    serial: Mapped[int | None] = mapped_column(Integer, nullable=True)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
