from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from clinicdesk.core.audit import log_audit
from clinicdesk.core.security import get_current_active_user, require_roles
from clinicdesk.database import get_db
from clinicdesk.models.clinic import Clinic
from clinicdesk.models.user import User, UserRole

router = APIRouter(prefix="/api/clinics", tags=["clinics"])


class ClinicCreate(BaseModel):
    name: str
    address: Optional[str] = None
    phone_number: Optional[str] = None


class ClinicResponse(ClinicCreate):
    id: int

    class Config:
        from_attributes = True


@router.get("", response_model=List[ClinicResponse])
async def list_clinics(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return db.query(Clinic).order_by(Clinic.name).all()


@router.post("", response_model=ClinicResponse, status_code=status.HTTP_201_CREATED)
async def create_clinic(
    clinic: ClinicCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    name = clinic.name.strip()
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Clinic name is required")
    if db.query(Clinic).filter(Clinic.name == name).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A clinic with this name already exists")

    db_clinic = Clinic(name=name, address=clinic.address, phone_number=clinic.phone_number)
    db.add(db_clinic)
    db.flush()
    log_audit(db, current_user, "create_clinic", "clinics", db_clinic.id, new_values={"name": name}, request=request)
    db.commit()
    db.refresh(db_clinic)
    return db_clinic
