import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinicdesk.core.audit import log_audit
from clinicdesk.core.security import get_current_active_user, get_password_hash, require_roles
from clinicdesk.database import get_db
from clinicdesk.models.clinic import Clinic, DoctorClinicAssignment
from clinicdesk.models.doctor import Doctor
from clinicdesk.models.user import User, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/doctors", tags=["doctors"])


class ClinicSummary(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class DoctorCreate(BaseModel):
    full_name: str
    specialty: Optional[str] = None
    clinic_ids: List[int]
    email: EmailStr
    password: Optional[str] = None
    color: Optional[str] = None
    status: str = "active"


class DoctorUpdate(BaseModel):
    clinic_ids: List[int]
    specialty: Optional[str] = None
    email: Optional[EmailStr] = None
    color: Optional[str] = None
    status: Optional[str] = None
    password: Optional[str] = None


class DoctorResponse(BaseModel):
    id: int
    full_name: str
    specialty: Optional[str] = None
    email: Optional[str] = None
    color: Optional[str] = None
    status: str
    clinics: List[ClinicSummary] = []

    class Config:
        from_attributes = True


def _validate_clinic_ids(db: Session, clinic_ids: List[int]) -> List[int]:
    unique_ids = sorted(set(clinic_ids))
    if not unique_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one clinic is required",
        )
    found = {cid for (cid,) in db.query(Clinic.id).filter(Clinic.id.in_(unique_ids)).all()}
    missing = [cid for cid in unique_ids if cid not in found]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown clinic id(s): {', '.join(str(cid) for cid in missing)}",
        )
    return unique_ids


def _get_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    if not doctor:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Doctor not found")
    return doctor


@router.get("", response_model=List[DoctorResponse])
async def list_doctors(
    specialty: Optional[str] = None,
    clinic_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    query = db.query(Doctor)

    if specialty:
        query = query.filter(Doctor.specialty.ilike(f"%{specialty}%"))
    if clinic_id is not None:
        query = query.join(DoctorClinicAssignment).filter(DoctorClinicAssignment.clinic_id == clinic_id)

    return query.order_by(Doctor.full_name).all()


@router.get("/{doctor_id}", response_model=DoctorResponse)
async def get_doctor(
    doctor_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return _get_doctor(db, doctor_id)


@router.post("", response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
async def create_doctor(
    doctor_data: DoctorCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    full_name = doctor_data.full_name.strip()
    if not full_name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Full name is required")
    clinic_ids = _validate_clinic_ids(db, doctor_data.clinic_ids)

    if (
        db.query(Doctor).filter(Doctor.email == doctor_data.email).first()
        or db.query(User).filter(User.email == doctor_data.email).first()
    ):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A doctor with this email already exists",
        )

    # Identity, clinic assignments and login account are committed together
    try:
        doctor = Doctor(
            full_name=full_name,
            specialty=doctor_data.specialty,
            email=doctor_data.email,
            color=doctor_data.color,
            status=doctor_data.status,
        )
        db.add(doctor)
        db.flush()

        db.add_all(DoctorClinicAssignment(doctor_id=doctor.id, clinic_id=cid) for cid in clinic_ids)

        if doctor_data.password:
            db.add(
                User(
                    email=doctor_data.email,
                    hashed_password=get_password_hash(doctor_data.password),
                    full_name=full_name,
                    role=UserRole.DOCTOR,
                    doctor_id=doctor.id,
                )
            )

        log_audit(
            db,
            current_user,
            "create_doctor",
            "doctors",
            doctor.id,
            new_values={"full_name": full_name, "email": doctor_data.email, "clinic_ids": clinic_ids},
            request=request,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("Duplicate doctor or clinic assignment for %s", doctor_data.email)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A doctor with this email already exists, or is already assigned to one of these clinics",
        )

    db.refresh(doctor)
    return doctor


@router.put("/{doctor_id}", response_model=DoctorResponse)
async def update_doctor(
    doctor_id: int,
    doctor_data: DoctorUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    doctor = _get_doctor(db, doctor_id)
    clinic_ids = _validate_clinic_ids(db, doctor_data.clinic_ids)
    old_values = {
        "specialty": doctor.specialty,
        "email": doctor.email,
        "color": doctor.color,
        "status": doctor.status,
        "clinic_ids": sorted(doctor.clinic_ids),
    }

    try:
        updates = doctor_data.model_dump(exclude={"clinic_ids", "password"}, exclude_unset=True)
        for key, value in updates.items():
            setattr(doctor, key, value)

        account = doctor.account
        if account is not None:
            if "email" in updates:
                account.email = doctor.email
            if doctor_data.password:
                account.hashed_password = get_password_hash(doctor_data.password)
        elif doctor_data.password:
            db.add(
                User(
                    email=doctor.email,
                    hashed_password=get_password_hash(doctor_data.password),
                    full_name=doctor.full_name,
                    role=UserRole.DOCTOR,
                    doctor_id=doctor.id,
                )
            )

        # Sync clinic assignments: remove the ones no longer listed, add new ones
        current_ids = set(doctor.clinic_ids)
        for assignment in list(doctor.clinic_assignments):
            if assignment.clinic_id not in clinic_ids:
                doctor.clinic_assignments.remove(assignment)
        for cid in clinic_ids:
            if cid not in current_ids:
                doctor.clinic_assignments.append(DoctorClinicAssignment(clinic_id=cid))

        log_audit(
            db,
            current_user,
            "update_doctor",
            "doctors",
            doctor.id,
            old_values=old_values,
            new_values={**updates, "clinic_ids": clinic_ids},
            request=request,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="This email is already in use by another doctor",
        )

    db.refresh(doctor)
    return doctor
