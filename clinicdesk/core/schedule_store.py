"""Schedule store - database access for the three availability override layers"""

import logging
from datetime import date, timedelta
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinicdesk.core.availability import (
    ResolvedWorkingDay,
    UnknownEntity,
    day_of_week,
    parse_date,
    resolve_day,
    resolve_range,
)
from clinicdesk.models.clinic import Clinic, DoctorClinicAssignment
from clinicdesk.models.doctor import Doctor
from clinicdesk.models.working_hours import RecurringRule, SpecialSchedule, WeeklyAvailability

logger = logging.getLogger(__name__)

ACTIVE = "active"


def _scheduled_by_assigned_doctor(query, model):
    # Rows count only while the doctor is active and still assigned to the row's clinic
    return query.join(Doctor, Doctor.id == model.doctor_id).join(
        DoctorClinicAssignment,
        and_(
            DoctorClinicAssignment.doctor_id == model.doctor_id,
            DoctorClinicAssignment.clinic_id == model.clinic_id,
        ),
    ).filter(Doctor.status == ACTIVE)


def weekly_rows_for_day(db: Session, clinic_id: int, dow: int) -> List[WeeklyAvailability]:
    query = db.query(WeeklyAvailability).filter(
        WeeklyAvailability.clinic_id == clinic_id,
        WeeklyAvailability.day_of_week == dow,
    )
    return _scheduled_by_assigned_doctor(query, WeeklyAvailability).all()


def rule_rows_for_day(db: Session, clinic_id: int, dow: int) -> List[RecurringRule]:
    # weeks_of_month is a JSON list; membership is checked by the resolver
    query = db.query(RecurringRule).filter(
        RecurringRule.clinic_id == clinic_id,
        RecurringRule.day_of_week == dow,
    )
    return _scheduled_by_assigned_doctor(query, RecurringRule).all()


def special_rows_for_date(db: Session, schedule_date: date) -> List[SpecialSchedule]:
    """Every clinic's special schedules for the date; the resolver applies each to its own clinic."""
    query = db.query(SpecialSchedule).filter(SpecialSchedule.schedule_date == schedule_date)
    return _scheduled_by_assigned_doctor(query, SpecialSchedule).all()


def get_clinic_or_raise(db: Session, clinic_id: int) -> Clinic:
    clinic = db.query(Clinic).filter(Clinic.id == clinic_id).first()
    if not clinic:
        raise UnknownEntity("Clinic", clinic_id)
    return clinic


def get_doctor_or_raise(db: Session, doctor_id: int) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    if not doctor:
        raise UnknownEntity("Doctor", doctor_id)
    return doctor


def resolve_clinic_day(db: Session, clinic_id: int, target_date) -> List[ResolvedWorkingDay]:
    """Who works at ``clinic_id`` on ``target_date`` after all overrides."""
    target_date = parse_date(target_date)
    get_clinic_or_raise(db, clinic_id)

    dow = day_of_week(target_date)
    return resolve_day(
        clinic_id,
        target_date,
        weekly_rows_for_day(db, clinic_id, dow),
        rule_rows_for_day(db, clinic_id, dow),
        special_rows_for_date(db, target_date),
    )


def resolve_doctor_range(
    db: Session,
    doctor_id: int,
    start_date,
    end_date,
    max_days: Optional[int] = None,
) -> List[ResolvedWorkingDay]:
    """A doctor's working days across every clinic the doctor is assigned to."""
    start_date = parse_date(start_date)
    end_date = parse_date(end_date)
    doctor = get_doctor_or_raise(db, doctor_id)
    if doctor.status != ACTIVE:
        logger.info("Doctor %s is %s; no working days resolved", doctor_id, doctor.status)
        return resolve_range(doctor_id, start_date, end_date, [], [], [], max_days=max_days)

    weekly = _scheduled_by_assigned_doctor(
        db.query(WeeklyAvailability).filter(WeeklyAvailability.doctor_id == doctor_id), WeeklyAvailability
    ).all()
    rules = _scheduled_by_assigned_doctor(
        db.query(RecurringRule).filter(RecurringRule.doctor_id == doctor_id), RecurringRule
    ).all()
    specials = _scheduled_by_assigned_doctor(
        db.query(SpecialSchedule).filter(
            SpecialSchedule.doctor_id == doctor_id,
            SpecialSchedule.schedule_date >= start_date,
            SpecialSchedule.schedule_date <= end_date,
        ),
        SpecialSchedule,
    ).all()

    return resolve_range(
        doctor_id,
        start_date,
        end_date,
        weekly,
        rules,
        specials,
        clinic_ids=doctor.clinic_ids,
        max_days=max_days,
    )


def default_range(today: date, days: int) -> Tuple[date, date]:
    return today, today + timedelta(days=days - 1)


def replace_weekly_availability(
    db: Session,
    doctor_id: int,
    slots: Iterable[dict],
    clinic_id: Optional[int] = None,
) -> List[WeeklyAvailability]:
    """
    Replace a doctor's weekly schedule in one transaction.

    The scoped delete and the bulk insert commit together, so readers never
    observe a half-cleared schedule. ``clinic_id`` limits the replacement to
    one clinic; otherwise every clinic's rows for the doctor are replaced.
    """
    try:
        query = db.query(WeeklyAvailability).filter(WeeklyAvailability.doctor_id == doctor_id)
        if clinic_id is not None:
            query = query.filter(WeeklyAvailability.clinic_id == clinic_id)
        removed = query.delete(synchronize_session=False)

        rows = [WeeklyAvailability(doctor_id=doctor_id, **slot) for slot in slots]
        db.add_all(rows)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to replace weekly availability for doctor %s", doctor_id)
        raise

    for row in rows:
        db.refresh(row)
    logger.info(
        "Replaced weekly availability for doctor %s (clinic=%s): %d removed, %d inserted",
        doctor_id,
        clinic_id if clinic_id is not None else "all",
        removed,
        len(rows),
    )
    return rows


def _apply_special_fields(row: SpecialSchedule, clinic_id, start_time, end_time, is_available) -> None:
    row.clinic_id = clinic_id
    row.start_time = start_time
    row.end_time = end_time
    row.is_available = is_available


def upsert_special_schedule(
    db: Session,
    doctor_id: int,
    clinic_id: int,
    schedule_date: date,
    start_time=None,
    end_time=None,
    is_available: bool = False,
) -> Tuple[SpecialSchedule, bool]:
    """Insert or update the single special schedule for (doctor, date). Returns (row, created)."""
    existing = (
        db.query(SpecialSchedule)
        .filter(SpecialSchedule.doctor_id == doctor_id, SpecialSchedule.schedule_date == schedule_date)
        .first()
    )
    if existing:
        _apply_special_fields(existing, clinic_id, start_time, end_time, is_available)
        db.commit()
        db.refresh(existing)
        return existing, False

    row = SpecialSchedule(doctor_id=doctor_id, schedule_date=schedule_date)
    _apply_special_fields(row, clinic_id, start_time, end_time, is_available)
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # Another request inserted the same (doctor, date) first
        db.rollback()
        row = (
            db.query(SpecialSchedule)
            .filter(SpecialSchedule.doctor_id == doctor_id, SpecialSchedule.schedule_date == schedule_date)
            .one()
        )
        _apply_special_fields(row, clinic_id, start_time, end_time, is_available)
        db.commit()
        db.refresh(row)
        return row, False

    db.refresh(row)
    return row, True
