from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinicdesk.core.audit import log_audit
from clinicdesk.core.security import get_current_active_user
from clinicdesk.database import get_db
from clinicdesk.models.patient import Patient
from clinicdesk.models.user import User

router = APIRouter(prefix="/api/patients", tags=["patients"])


class PatientBase(BaseModel):
    dn: str
    dn_old: Optional[str] = None
    id_number: Optional[str] = None
    title: Optional[str] = None
    first_name: str
    last_name: str
    nickname: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None
    chronic_diseases: Optional[str] = None
    allergies: Optional[str] = None
    mobile_phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


class PatientUpdate(BaseModel):
    dn: Optional[str] = None
    dn_old: Optional[str] = None
    id_number: Optional[str] = None
    title: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    nickname: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None
    chronic_diseases: Optional[str] = None
    allergies: Optional[str] = None
    mobile_phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


class PatientResponse(PatientBase):
    id: int
    display_name: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


def _get_patient(db: Session, patient_id: int) -> Patient:
    patient = db.query(Patient).filter(Patient.id == patient_id).first()
    if not patient:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    return patient


def _dn_conflict() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="A patient with this DN already exists",
    )


@router.post("", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
async def create_patient(
    patient: PatientBase,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    if db.query(Patient).filter(Patient.dn == patient.dn).first():
        raise _dn_conflict()

    db_patient = Patient(**patient.model_dump())
    db.add(db_patient)
    try:
        db.flush()
        log_audit(db, current_user, "create_patient", "patients", db_patient.id, new_values=patient.model_dump(), request=request)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise _dn_conflict()
    db.refresh(db_patient)
    return db_patient


@router.get("", response_model=List[PatientResponse])
async def search_patients(
    query: Optional[str] = None,
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """Search patients by name, nickname, mobile phone or DN."""
    q = db.query(Patient)
    if query:
        pattern = f"%{query.strip()}%"
        q = q.filter(
            or_(
                Patient.first_name.ilike(pattern),
                Patient.last_name.ilike(pattern),
                Patient.nickname.ilike(pattern),
                Patient.mobile_phone.ilike(pattern),
                Patient.dn.ilike(pattern),
            )
        )
    return q.order_by(Patient.first_name, Patient.last_name).limit(limit).all()


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return _get_patient(db, patient_id)


@router.put("/{patient_id}", response_model=PatientResponse)
async def update_patient(
    patient_id: int,
    patient_data: PatientUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    patient = _get_patient(db, patient_id)
    updates = patient_data.model_dump(exclude_unset=True)

    if "dn" in updates and updates["dn"] != patient.dn:
        if db.query(Patient).filter(Patient.dn == updates["dn"]).first():
            raise _dn_conflict()

    old_values = {key: getattr(patient, key) for key in updates}
    for key, value in updates.items():
        setattr(patient, key, value)

    try:
        log_audit(
            db,
            current_user,
            "update_patient",
            "patients",
            patient.id,
            old_values=old_values,
            new_values=updates,
            request=request,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise _dn_conflict()
    db.refresh(patient)
    return patient
