from datetime import date, datetime, time, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from clinicdesk.config import DEFAULT_SCHEDULE_DAYS, MAX_SCHEDULE_RANGE_DAYS
from clinicdesk.core.availability import parse_date
from clinicdesk.core.schedule_store import default_range, resolve_clinic_day, resolve_doctor_range
from clinicdesk.core.security import get_current_active_user
from clinicdesk.database import get_db
from clinicdesk.models.appointment import Appointment, AppointmentStatus
from clinicdesk.models.clinic import Clinic, DoctorClinicAssignment
from clinicdesk.models.doctor import Doctor
from clinicdesk.models.user import User

router = APIRouter(prefix="/api", tags=["availability"])


class WorkingDoctor(BaseModel):
    doctor_id: int
    clinic_id: int
    name: str
    specialty: Optional[str] = None
    color: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class ClinicDoctor(BaseModel):
    id: int
    name: str


class DayAppointment(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    appointment_time: str
    end_time: str
    status: AppointmentStatus
    patient_name_at_booking: Optional[str] = None


class ClinicDaySchedule(BaseModel):
    date: date
    clinic_id: int
    doctors: List[WorkingDoctor]
    all_doctors_in_clinic: List[ClinicDoctor]
    appointments: List[DayAppointment]


class WorkingDay(BaseModel):
    date: date
    clinic_id: int
    clinic_name: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None


@router.get("/clinic-day-schedule", response_model=ClinicDaySchedule)
async def get_clinic_day_schedule(
    clinic_id: int = Query(...),
    date_str: str = Query(..., alias="date"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """
    Doctors working at a clinic on a date (after weekly, rule and special
    schedule overrides), the clinic's full roster, and the day's confirmed
    appointments.
    """
    target_date = parse_date(date_str)
    working = resolve_clinic_day(db, clinic_id, target_date)

    doctor_ids = [day.doctor_id for day in working]
    doctors = {d.id: d for d in db.query(Doctor).filter(Doctor.id.in_(doctor_ids)).all()} if doctor_ids else {}

    roster = (
        db.query(Doctor)
        .join(DoctorClinicAssignment)
        .filter(DoctorClinicAssignment.clinic_id == clinic_id)
        .order_by(Doctor.full_name)
        .all()
    )

    start_of_day = datetime.combine(target_date, time.min)
    appointments = (
        db.query(Appointment)
        .filter(
            Appointment.clinic_id == clinic_id,
            Appointment.start_time >= start_of_day,
            Appointment.start_time < start_of_day + timedelta(days=1),
            Appointment.status == AppointmentStatus.CONFIRMED,
        )
        .order_by(Appointment.start_time)
        .all()
    )

    return {
        "date": target_date,
        "clinic_id": clinic_id,
        "doctors": [
            {
                "doctor_id": day.doctor_id,
                "clinic_id": day.clinic_id,
                "name": doctors[day.doctor_id].full_name,
                "specialty": doctors[day.doctor_id].specialty,
                "color": doctors[day.doctor_id].color,
                "start_time": day.start_time,
                "end_time": day.end_time,
            }
            for day in working
        ],
        "all_doctors_in_clinic": [{"id": d.id, "name": d.full_name} for d in roster],
        "appointments": [
            {
                "id": appt.id,
                "doctor_id": appt.doctor_id,
                "patient_id": appt.patient_id,
                "appointment_time": appt.start_time.strftime("%H:%M"),
                "end_time": appt.end_time.strftime("%H:%M"),
                "status": appt.status,
                "patient_name_at_booking": appt.patient_name_at_booking,
            }
            for appt in appointments
        ],
    }


@router.get("/doctor-work-schedule/{doctor_id}", response_model=List[WorkingDay])
async def get_doctor_work_schedule(
    doctor_id: int,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """
    A doctor's upcoming working days across all assigned clinics.
    Defaults to the next DEFAULT_SCHEDULE_DAYS days starting today.
    """
    start, end = default_range(date.today(), DEFAULT_SCHEDULE_DAYS)
    if start_date:
        start = parse_date(start_date)
        end = start + timedelta(days=DEFAULT_SCHEDULE_DAYS - 1)
    if end_date:
        end = parse_date(end_date)

    working_days = resolve_doctor_range(db, doctor_id, start, end, max_days=MAX_SCHEDULE_RANGE_DAYS)

    clinic_names = dict(db.query(Clinic.id, Clinic.name).all())
    return [
        {
            "date": day.date,
            "clinic_id": day.clinic_id,
            "clinic_name": clinic_names.get(day.clinic_id),
            "start_time": day.start_time,
            "end_time": day.end_time,
        }
        for day in working_days
    ]
