import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from clinicdesk.config import APPOINTMENT_SLOT_MINUTES
from clinicdesk.core.audit import log_audit
from clinicdesk.core.availability import parse_date
from clinicdesk.core.schedule_store import resolve_clinic_day
from clinicdesk.core.security import get_current_active_user
from clinicdesk.database import get_db
from clinicdesk.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus
from clinicdesk.models.patient import Patient
from clinicdesk.models.user import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/appointments", tags=["appointments"])


class AppointmentCreate(BaseModel):
    patient_id: int
    doctor_id: int
    clinic_id: int
    appointment_date: date
    appointment_time: time
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    notes: Optional[str] = None


class AppointmentUpdate(BaseModel):
    doctor_id: Optional[int] = None
    appointment_date: Optional[date] = None
    appointment_time: Optional[time] = None
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    clinic_id: int
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    patient_name_at_booking: Optional[str] = None
    patient_phone_at_booking: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


def slot_end(start_time: datetime) -> datetime:
    return start_time + timedelta(minutes=APPOINTMENT_SLOT_MINUTES)


def find_slot_conflict(
    db: Session,
    doctor_id: int,
    clinic_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_appointment_id: Optional[int] = None,
) -> Optional[str]:
    """Return why the slot cannot be booked, or None when it is free."""
    working = [day for day in resolve_clinic_day(db, clinic_id, start_time.date()) if day.doctor_id == doctor_id]
    if not working:
        return f"Doctor is not working at this clinic on {start_time.date()}"

    window = working[0]
    if end_time.date() != start_time.date():
        return "Appointment must end on the same day"
    if window.start_time is not None and start_time.time() < window.start_time:
        return "Appointment starts before the doctor's working hours"
    if window.end_time is not None and end_time.time() > window.end_time:
        return "Appointment ends after the doctor's working hours"

    query = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status.in_(ACTIVE_STATUSES),
        Appointment.start_time < end_time,
        Appointment.end_time > start_time,
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)
    if query.first():
        return "Time slot is not available"
    return None


def _get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Appointment not found",
        )
    return appointment


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    appointment: AppointmentCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    patient = db.query(Patient).filter(Patient.id == appointment.patient_id).first()
    if not patient:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")

    start_time = datetime.combine(appointment.appointment_date, appointment.appointment_time)
    end_time = slot_end(start_time)

    conflict = find_slot_conflict(db, appointment.doctor_id, appointment.clinic_id, start_time, end_time)
    if conflict:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=conflict)

    db_appointment = Appointment(
        patient_id=patient.id,
        doctor_id=appointment.doctor_id,
        clinic_id=appointment.clinic_id,
        start_time=start_time,
        end_time=end_time,
        status=appointment.status,
        patient_name_at_booking=patient.display_name,
        patient_phone_at_booking=patient.mobile_phone,
        notes=appointment.notes,
        created_by=current_user.id,
    )
    db.add(db_appointment)
    db.flush()
    log_audit(
        db,
        current_user,
        "create_appointment",
        "appointments",
        db_appointment.id,
        new_values=appointment.model_dump(),
        request=request,
    )
    db.commit()
    db.refresh(db_appointment)
    logger.info("Booked appointment %s for doctor %s at %s", db_appointment.id, db_appointment.doctor_id, start_time)
    return db_appointment


@router.get("", response_model=List[AppointmentResponse])
async def list_appointments(
    clinic_id: int,
    start_date: str,
    end_date: str,
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    start = parse_date(start_date)
    end = parse_date(end_date)

    query = db.query(Appointment).filter(
        Appointment.clinic_id == clinic_id,
        Appointment.start_time >= datetime.combine(start, time.min),
        Appointment.start_time < datetime.combine(end + timedelta(days=1), time.min),
    )
    if status_filter is not None:
        query = query.filter(Appointment.status == status_filter)
    return query.order_by(Appointment.start_time).all()


@router.get("/pending", response_model=List[AppointmentResponse])
async def list_pending_appointments(
    clinic_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return (
        db.query(Appointment)
        .filter(
            Appointment.clinic_id == clinic_id,
            Appointment.status == AppointmentStatus.PENDING_CONFIRMATION,
        )
        .order_by(Appointment.start_time)
        .all()
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return _get_appointment(db, appointment_id)


@router.put("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: int,
    update: AppointmentUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    appointment = _get_appointment(db, appointment_id)
    old_values = {
        "doctor_id": appointment.doctor_id,
        "start_time": appointment.start_time,
        "status": appointment.status,
    }

    doctor_id = update.doctor_id if update.doctor_id is not None else appointment.doctor_id
    start_time = datetime.combine(
        update.appointment_date or appointment.start_time.date(),
        update.appointment_time or appointment.start_time.time(),
    )
    new_status = update.status or appointment.status

    rescheduled = doctor_id != appointment.doctor_id or start_time != appointment.start_time
    reactivated = new_status in ACTIVE_STATUSES and appointment.status not in ACTIVE_STATUSES
    if new_status in ACTIVE_STATUSES and (rescheduled or reactivated):
        conflict = find_slot_conflict(
            db,
            doctor_id,
            appointment.clinic_id,
            start_time,
            slot_end(start_time),
            exclude_appointment_id=appointment.id,
        )
        if conflict:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=conflict)

    appointment.doctor_id = doctor_id
    appointment.start_time = start_time
    appointment.end_time = slot_end(start_time)
    appointment.status = new_status
    if update.notes is not None:
        appointment.notes = update.notes

    log_audit(
        db,
        current_user,
        "update_appointment",
        "appointments",
        appointment.id,
        old_values=old_values,
        new_values={"doctor_id": doctor_id, "start_time": start_time, "status": new_status},
        request=request,
    )
    db.commit()
    db.refresh(appointment)
    return appointment


@router.patch("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: int,
    update: AppointmentStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    appointment = _get_appointment(db, appointment_id)
    old_status = appointment.status
    if update.status in ACTIVE_STATUSES and old_status not in ACTIVE_STATUSES:
        conflict = find_slot_conflict(
            db,
            appointment.doctor_id,
            appointment.clinic_id,
            appointment.start_time,
            appointment.end_time,
            exclude_appointment_id=appointment.id,
        )
        if conflict:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=conflict)

    appointment.status = update.status
    log_audit(
        db,
        current_user,
        "update_appointment_status",
        "appointments",
        appointment.id,
        old_values={"status": old_status},
        new_values={"status": update.status},
        request=request,
    )
    db.commit()
    db.refresh(appointment)
    return appointment
