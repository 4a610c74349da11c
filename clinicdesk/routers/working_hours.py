from datetime import date, time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from clinicdesk.core.audit import log_audit
from clinicdesk.core.schedule_store import replace_weekly_availability, upsert_special_schedule
from clinicdesk.core.security import ensure_can_edit_doctor_schedule, get_current_active_user
from clinicdesk.database import get_db
from clinicdesk.models.clinic import DoctorClinicAssignment
from clinicdesk.models.doctor import Doctor
from clinicdesk.models.user import User
from clinicdesk.models.working_hours import RecurringRule, SpecialSchedule, WeeklyAvailability

router = APIRouter(prefix="/api", tags=["working-hours"])


class WeeklySlot(BaseModel):
    clinic_id: int
    day_of_week: int
    start_time: time
    end_time: time


class WeeklyAvailabilityResponse(WeeklySlot):
    id: int
    doctor_id: int
    clinic_name: Optional[str] = None

    class Config:
        from_attributes = True


class WeeklyScheduleReplace(BaseModel):
    availability: List[WeeklySlot]


class RuleCreate(BaseModel):
    clinic_id: int
    day_of_week: int
    weeks_of_month: List[int]
    start_time: time
    end_time: time


class RuleResponse(RuleCreate):
    id: int
    doctor_id: int
    clinic_name: Optional[str] = None

    class Config:
        from_attributes = True


class SpecialScheduleCreate(BaseModel):
    doctor_id: int
    clinic_id: int
    schedule_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_available: bool = False


class SpecialScheduleResponse(SpecialScheduleCreate):
    id: int
    clinic_name: Optional[str] = None

    class Config:
        from_attributes = True


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _get_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    if not doctor:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Doctor not found")
    return doctor


def _validate_assignment(db: Session, doctor_id: int, clinic_id: int) -> None:
    assigned = (
        db.query(DoctorClinicAssignment)
        .filter(DoctorClinicAssignment.doctor_id == doctor_id, DoctorClinicAssignment.clinic_id == clinic_id)
        .first()
    )
    if not assigned:
        raise _bad_request(f"Doctor {doctor_id} is not assigned to clinic {clinic_id}")


def _validate_day_of_week(day_of_week: int) -> None:
    if not 0 <= day_of_week <= 6:
        raise _bad_request("day_of_week must be between 0 (Sunday) and 6 (Saturday)")


def _validate_window(start_time: Optional[time], end_time: Optional[time]) -> None:
    if start_time is not None and end_time is not None and start_time >= end_time:
        raise _bad_request("Start time must be before end time")


def _validate_weekly_slot(db: Session, doctor_id: int, slot: WeeklySlot) -> None:
    _validate_day_of_week(slot.day_of_week)
    _validate_window(slot.start_time, slot.end_time)
    _validate_assignment(db, doctor_id, slot.clinic_id)


# --- Weekly availability ---


@router.get("/doctor-availability/{doctor_id}", response_model=List[WeeklyAvailabilityResponse])
async def get_weekly_availability(
    doctor_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    _get_doctor(db, doctor_id)
    return (
        db.query(WeeklyAvailability)
        .filter(WeeklyAvailability.doctor_id == doctor_id)
        .order_by(WeeklyAvailability.day_of_week, WeeklyAvailability.start_time)
        .all()
    )


@router.post(
    "/doctor-availability/{doctor_id}",
    response_model=WeeklyAvailabilityResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_weekly_availability(
    doctor_id: int,
    slot: WeeklySlot,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    _get_doctor(db, doctor_id)
    ensure_can_edit_doctor_schedule(current_user, doctor_id)
    _validate_weekly_slot(db, doctor_id, slot)

    db_slot = WeeklyAvailability(doctor_id=doctor_id, **slot.model_dump())
    db.add(db_slot)
    db.flush()
    log_audit(db, current_user, "create_availability", "doctor_availability", db_slot.id, new_values=slot.model_dump(), request=request)
    db.commit()
    db.refresh(db_slot)
    return db_slot


@router.put("/doctor-availability/{doctor_id}", response_model=List[WeeklyAvailabilityResponse])
async def replace_weekly_schedule(
    doctor_id: int,
    schedule: WeeklyScheduleReplace,
    request: Request,
    clinic_id: Optional[int] = Query(None, description="Only replace rows for this clinic"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    _get_doctor(db, doctor_id)
    ensure_can_edit_doctor_schedule(current_user, doctor_id)
    for slot in schedule.availability:
        _validate_weekly_slot(db, doctor_id, slot)
        if clinic_id is not None and slot.clinic_id != clinic_id:
            raise _bad_request(f"All slots must belong to clinic {clinic_id}")

    slots = [slot.model_dump() for slot in schedule.availability]
    log_audit(
        db,
        current_user,
        "replace_availability",
        "doctor_availability",
        doctor_id,
        new_values={"clinic_id": clinic_id, "availability": slots},
        request=request,
    )
    return replace_weekly_availability(db, doctor_id, slots, clinic_id=clinic_id)


@router.delete("/doctor-availability/{doctor_id}/{availability_id}")
async def delete_weekly_availability(
    doctor_id: int,
    availability_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    ensure_can_edit_doctor_schedule(current_user, doctor_id)
    db_slot = (
        db.query(WeeklyAvailability)
        .filter(WeeklyAvailability.id == availability_id, WeeklyAvailability.doctor_id == doctor_id)
        .first()
    )
    if not db_slot:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Availability not found")

    log_audit(
        db,
        current_user,
        "delete_availability",
        "doctor_availability",
        availability_id,
        old_values={
            "clinic_id": db_slot.clinic_id,
            "day_of_week": db_slot.day_of_week,
            "start_time": db_slot.start_time,
            "end_time": db_slot.end_time,
        },
        request=request,
    )
    db.delete(db_slot)
    db.commit()
    return {"message": "Availability deleted successfully"}


# --- Recurring rules ---


@router.get("/doctor-rules/{doctor_id}", response_model=List[RuleResponse])
async def get_rules(
    doctor_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    _get_doctor(db, doctor_id)
    return (
        db.query(RecurringRule)
        .filter(RecurringRule.doctor_id == doctor_id)
        .order_by(RecurringRule.day_of_week, RecurringRule.start_time)
        .all()
    )


@router.post("/doctor-rules/{doctor_id}", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    doctor_id: int,
    rule: RuleCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    _get_doctor(db, doctor_id)
    ensure_can_edit_doctor_schedule(current_user, doctor_id)
    _validate_day_of_week(rule.day_of_week)
    _validate_window(rule.start_time, rule.end_time)
    weeks = sorted(set(rule.weeks_of_month))
    if not weeks or any(week < 1 or week > 5 for week in weeks):
        raise _bad_request("weeks_of_month must list values between 1 and 5")
    _validate_assignment(db, doctor_id, rule.clinic_id)

    db_rule = RecurringRule(doctor_id=doctor_id, **rule.model_dump(exclude={"weeks_of_month"}), weeks_of_month=weeks)
    db.add(db_rule)
    db.flush()
    log_audit(db, current_user, "create_rule", "doctor_availability_rules", db_rule.id, new_values=rule.model_dump(), request=request)
    db.commit()
    db.refresh(db_rule)
    return db_rule


@router.delete("/doctor-rules/{rule_id}")
async def delete_rule(
    rule_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    db_rule = db.query(RecurringRule).filter(RecurringRule.id == rule_id).first()
    if not db_rule:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rule not found")
    ensure_can_edit_doctor_schedule(current_user, db_rule.doctor_id)

    log_audit(
        db,
        current_user,
        "delete_rule",
        "doctor_availability_rules",
        rule_id,
        old_values={"doctor_id": db_rule.doctor_id, "day_of_week": db_rule.day_of_week, "weeks_of_month": db_rule.weeks_of_month},
        request=request,
    )
    db.delete(db_rule)
    db.commit()
    return {"message": "Rule deleted successfully"}


# --- Special schedules ---


@router.get("/special-schedules/{doctor_id}", response_model=List[SpecialScheduleResponse])
async def get_special_schedules(
    doctor_id: int,
    is_available: Optional[bool] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    _get_doctor(db, doctor_id)
    query = db.query(SpecialSchedule).filter(SpecialSchedule.doctor_id == doctor_id)
    if is_available is not None:
        query = query.filter(SpecialSchedule.is_available == is_available)
    return query.order_by(SpecialSchedule.schedule_date.desc()).all()


@router.post("/special-schedules", response_model=SpecialScheduleResponse, status_code=status.HTTP_201_CREATED)
async def save_special_schedule(
    special: SpecialScheduleCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    _get_doctor(db, special.doctor_id)
    ensure_can_edit_doctor_schedule(current_user, special.doctor_id)
    if special.is_available and special.start_time is None:
        raise _bad_request("An available special schedule needs a start time")
    _validate_window(special.start_time, special.end_time)
    _validate_assignment(db, special.doctor_id, special.clinic_id)

    log_audit(
        db,
        current_user,
        "save_special_schedule",
        "special_schedules",
        f"{special.doctor_id}:{special.schedule_date}",
        new_values=special.model_dump(),
        request=request,
    )
    row, _created = upsert_special_schedule(
        db,
        special.doctor_id,
        special.clinic_id,
        special.schedule_date,
        start_time=special.start_time,
        end_time=special.end_time,
        is_available=special.is_available,
    )
    return row


@router.delete("/special-schedules/{special_schedule_id}")
async def delete_special_schedule(
    special_schedule_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    row = db.query(SpecialSchedule).filter(SpecialSchedule.id == special_schedule_id).first()
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Special schedule not found")
    ensure_can_edit_doctor_schedule(current_user, row.doctor_id)

    log_audit(
        db,
        current_user,
        "delete_special_schedule",
        "special_schedules",
        special_schedule_id,
        old_values={"doctor_id": row.doctor_id, "schedule_date": row.schedule_date, "is_available": row.is_available},
        request=request,
    )
    db.delete(row)
    db.commit()
    return {"message": "Special schedule deleted successfully"}
