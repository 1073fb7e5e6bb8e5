from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Literal

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from clinic_backend import config
from clinic_backend.errors import SchedulingError, UnknownReasonError
from clinic_backend.logging_config import get_logger, setup_logging
from clinic_backend.models import DoctorType, VisitReason, VisitStatus
from clinic_backend.seed import seed_base
from clinic_backend.services import (
    book_visit,
    cancel_visit,
    complete_visit,
    create_doctor,
    edit_window,
    get_day_schedule,
    get_visit,
    get_window,
    init_db,
    list_doctors_flat,
    mark_notification_sent,
    now_serving,
    pending_notifications_flat,
    reschedule_day,
)
from clinic_backend.scheduling import now_serving as project_now_serving

log = get_logger(__name__)

# Bearer scheme so Swagger-UI can attach the admin key
auth_scheme = HTTPBearer(auto_error=False)

app = FastAPI(title="Clinic Scheduling API", version="1.0.0")


# Startup

@app.on_event("startup")
def startup() -> None:
    setup_logging(config.LOG_LEVEL, json=True)
    init_db()
    seed_base()


# Error mapping

ERROR_STATUS = {
    "invalid_window": 422,
    "capacity_exceeded": status.HTTP_409_CONFLICT,
    "duplicate_identity": status.HTTP_409_CONFLICT,
    "visit_not_scheduled": status.HTTP_409_CONFLICT,
    "not_found": status.HTTP_404_NOT_FOUND,
    "no_window": status.HTTP_404_NOT_FOUND,
    "schedule_busy": status.HTTP_503_SERVICE_UNAVAILABLE,
}


@app.exception_handler(SchedulingError)
def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    if isinstance(exc, UnknownReasonError):
        log.error("unknown_reason", path=request.url.path, detail=exc.message)
        return JSONResponse(status_code=500, content={"detail": "Internal error", "code": "internal_error"})

    code = ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST)
    headers = {"Retry-After": "1"} if code == status.HTTP_503_SERVICE_UNAVAILABLE else None
    return JSONResponse(status_code=code, content={"detail": exc.message, "code": exc.code}, headers=headers)


# Auth (admin collaborator)

def verify_admin(credentials: HTTPAuthorizationCredentials | None = Depends(auth_scheme)) -> None:
    """Validate the Bearer token the admin collaborator sends."""
    if credentials is None or credentials.scheme.lower() != "bearer" or credentials.credentials != config.ADMIN_API_KEY:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


# Schemas

class DoctorCreateIn(BaseModel):
    name: str = Field(..., min_length=1)
    specialty: str | None = None
    doctor_type: DoctorType = DoctorType.GENERAL


class WindowIn(BaseModel):
    start_time: time
    break_start: time
    break_end: time
    end_time: time
    max_appointments: int | None = None
    location: str | None = None


class WindowOut(WindowIn):
    doctor_id: str
    availability_date: date
    max_appointments: int


class BookIn(BaseModel):
    # serial and time are never client-supplied
    doctor_id: str
    appointment_date: date
    patient_identity: str = Field(..., min_length=1)
    reason: VisitReason
    name: str | None = None
    phone: str | None = None
    concern: str | None = None


class CancelIn(BaseModel):
    outcome: Literal["Cancelled", "Absent"] = "Cancelled"


class VisitOutModel(BaseModel):
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


class SlotOut(BaseModel):
    visit_id: str
    serial: int
    scheduled_at: datetime


class RescheduleOut(BaseModel):
    doctor_id: str
    appointment_date: date
    assignments: list[SlotOut]


class DayScheduleOut(BaseModel):
    doctor_id: str
    appointment_date: date
    now_serving: int
    visits: list[VisitOutModel]


# Doctors

@app.get("/api/doctors")
def api_doctors() -> list[dict]:
    return list_doctors_flat()


@app.post("/api/doctors", status_code=status.HTTP_201_CREATED, dependencies=[Depends(verify_admin)])
def api_create_doctor(payload: DoctorCreateIn) -> dict[str, Any]:
    doctor_id = create_doctor(payload.name, payload.doctor_type, payload.specialty)
    return {"ok": True, "doctor_id": doctor_id}


# Availability windows

@app.get("/api/doctors/{doctor_id}/windows/{day}", response_model=WindowOut)
def api_get_window(doctor_id: str, day: date) -> dict[str, Any]:
    window = get_window(doctor_id, day)
    if window is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No availability for this day")
    return window


@app.put("/api/doctors/{doctor_id}/windows/{day}", response_model=RescheduleOut, dependencies=[Depends(verify_admin)])
def api_edit_window(doctor_id: str, day: date, payload: WindowIn):
    """Create or edit the window; booked visits are rescheduled in the same transaction."""
    return edit_window(
        doctor_id,
        day,
        start_time=payload.start_time,
        break_start=payload.break_start,
        break_end=payload.break_end,
        end_time=payload.end_time,
        max_appointments=payload.max_appointments,
        location=payload.location,
    )


@app.post(
    "/api/doctors/{doctor_id}/schedule/{day}/reschedule",
    response_model=RescheduleOut,
    dependencies=[Depends(verify_admin)],
)
def api_reschedule(doctor_id: str, day: date):
    return reschedule_day(doctor_id, day)


# Schedule

@app.get("/api/doctors/{doctor_id}/schedule/{day}", response_model=DayScheduleOut)
def api_day_schedule(doctor_id: str, day: date, include_closed: bool = Query(False)) -> dict[str, Any]:
    visits = get_day_schedule(doctor_id, day, include_closed=include_closed)
    scheduled = [v for v in visits if v.status == VisitStatus.SCHEDULED]
    return {
        "doctor_id": doctor_id,
        "appointment_date": day,
        "now_serving": project_now_serving(scheduled, datetime.now()),
        "visits": visits,
    }


@app.get("/api/doctors/{doctor_id}/schedule/{day}/now-serving")
def api_now_serving(doctor_id: str, day: date) -> dict[str, Any]:
    return {"doctor_id": doctor_id, "appointment_date": day, "now_serving": now_serving(doctor_id, day)}


# Visits

@app.post("/api/visits", response_model=VisitOutModel, status_code=status.HTTP_201_CREATED)
def api_book(payload: BookIn):
    return book_visit(
        payload.doctor_id,
        payload.appointment_date,
        payload.patient_identity,
        payload.reason,
        name=payload.name,
        phone=payload.phone,
        concern=payload.concern,
    )


@app.get("/api/visits/{visit_id}", response_model=VisitOutModel)
def api_visit(visit_id: str):
    return get_visit(visit_id)


@app.post("/api/visits/{visit_id}/cancel", response_model=RescheduleOut)
def api_cancel(visit_id: str, payload: CancelIn | None = None):
    outcome = payload.outcome if payload else "Cancelled"
    return cancel_visit(visit_id, VisitStatus(outcome))


@app.post("/api/visits/{visit_id}/complete", response_model=RescheduleOut)
def api_complete(visit_id: str):
    return complete_visit(visit_id)


# Notifications (read by the external notification system)

@app.get("/api/notifications/pending")
def api_pending_notifications(limit: int = 200) -> list[dict]:
    return pending_notifications_flat(limit=limit)


@app.post("/api/notifications/{notification_id}/sent", dependencies=[Depends(verify_admin)])
def api_mark_sent(notification_id: int) -> dict[str, Any]:
    return {"ok": mark_notification_sent(notification_id)}
