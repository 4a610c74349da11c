import json
import logging
from datetime import datetime
from decimal import Decimal
from io import BytesIO
from typing import List, Optional

import qrcode
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy import case
from sqlalchemy.orm import Session

from clinicdesk.core.audit import log_audit
from clinicdesk.core.schedule_store import get_clinic_or_raise, get_doctor_or_raise
from clinicdesk.core.security import get_current_active_user
from clinicdesk.database import get_db
from clinicdesk.models.billing import Treatment
from clinicdesk.models.patient import Patient
from clinicdesk.models.user import User
from clinicdesk.models.visit import AlertLevel, Visit, VisitStatus, VisitTreatment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/visits", tags=["visits"])

ALLOWED_TRANSITIONS = {
    VisitStatus.WAITING: {VisitStatus.IN_PROGRESS, VisitStatus.CANCELLED},
    VisitStatus.IN_PROGRESS: {VisitStatus.COMPLETED, VisitStatus.CANCELLED},
}


class VisitCreate(BaseModel):
    patient_id: int
    clinic_id: int
    doctor_id: Optional[int] = None
    visit_type: Optional[str] = None


class VisitStatusUpdate(BaseModel):
    status: VisitStatus


class VisitResponse(BaseModel):
    id: int
    patient_id: int
    clinic_id: Optional[int] = None
    doctor_id: Optional[int] = None
    check_in_time: datetime
    check_out_time: Optional[datetime] = None
    status: VisitStatus
    waiting_alert_level: AlertLevel
    visit_type: Optional[str] = None

    class Config:
        from_attributes = True


class QueueEntry(VisitResponse):
    patient_name: str


class VisitTreatmentCreate(BaseModel):
    treatment_id: int
    actual_price: Optional[Decimal] = None
    tooth_numbers: Optional[str] = None
    notes: Optional[str] = None


class VisitTreatmentResponse(BaseModel):
    id: int
    visit_id: int
    treatment_id: int
    actual_price: Decimal
    tooth_numbers: Optional[str] = None
    notes: Optional[str] = None
    status: str
    performed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


def get_visit_or_404(db: Session, visit_id: int) -> Visit:
    visit = db.query(Visit).filter(Visit.id == visit_id).first()
    if not visit:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Visit not found")
    return visit


@router.post("", response_model=VisitResponse, status_code=status.HTTP_201_CREATED)
async def check_in(
    visit: VisitCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    patient = db.query(Patient).filter(Patient.id == visit.patient_id).first()
    if not patient:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    get_clinic_or_raise(db, visit.clinic_id)
    if visit.doctor_id is not None:
        get_doctor_or_raise(db, visit.doctor_id)

    db_visit = Visit(
        **visit.model_dump(),
        check_in_time=datetime.now(),
        status=VisitStatus.WAITING,
        waiting_alert_level=AlertLevel.NORMAL,
    )
    db.add(db_visit)
    db.flush()
    log_audit(db, current_user, "check_in", "visits", db_visit.id, new_values=visit.model_dump(), request=request)
    db.commit()
    db.refresh(db_visit)
    logger.info("Patient %s checked in at clinic %s (visit %s)", patient.id, visit.clinic_id, db_visit.id)
    return db_visit


@router.get("/queue", response_model=List[QueueEntry])
async def get_queue(
    clinic_id: int,
    doctor_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """Waiting and in-progress visits, most urgent first, then by arrival."""
    urgency = case(
        (Visit.waiting_alert_level == AlertLevel.CRITICAL, 0),
        (Visit.waiting_alert_level == AlertLevel.WARNING, 1),
        else_=2,
    )
    query = db.query(Visit).filter(
        Visit.clinic_id == clinic_id,
        Visit.status.in_([VisitStatus.WAITING, VisitStatus.IN_PROGRESS]),
    )
    if doctor_id is not None:
        query = query.filter(Visit.doctor_id == doctor_id)

    visits = query.order_by(urgency, Visit.check_in_time, Visit.id).all()
    return [
        {**VisitResponse.model_validate(v).model_dump(), "patient_name": v.patient.display_name}
        for v in visits
    ]


@router.get("/{visit_id}", response_model=VisitResponse)
async def get_visit(
    visit_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return get_visit_or_404(db, visit_id)


@router.patch("/{visit_id}/status", response_model=VisitResponse)
async def update_visit_status(
    visit_id: int,
    update: VisitStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    visit = get_visit_or_404(db, visit_id)
    if update.status not in ALLOWED_TRANSITIONS.get(visit.status, set()):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot move visit from {visit.status.value} to {update.status.value}",
        )

    old_status = visit.status
    visit.status = update.status
    if update.status == VisitStatus.COMPLETED:
        visit.check_out_time = datetime.now()

    log_audit(
        db,
        current_user,
        "update_visit_status",
        "visits",
        visit.id,
        old_values={"status": old_status},
        new_values={"status": update.status},
        request=request,
    )
    db.commit()
    db.refresh(visit)
    return visit


@router.get("/{visit_id}/ticket")
async def get_queue_ticket(
    visit_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    visit = get_visit_or_404(db, visit_id)

    qr = qrcode.QRCode(version=1, box_size=10, border=5)
    ticket_data = {
        "visit_id": visit.id,
        "patient_id": visit.patient_id,
        "patient_name": visit.patient.display_name,
        "clinic_id": visit.clinic_id,
        "check_in_time": visit.check_in_time.isoformat(),
        "status": visit.status.value,
    }
    qr.add_data(json.dumps(ticket_data))
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffered = BytesIO()
    img.save(buffered, format="PNG")
    return Response(content=buffered.getvalue(), media_type="image/png")


# --- Treatments performed during a visit ---


@router.post(
    "/{visit_id}/treatments",
    response_model=VisitTreatmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_visit_treatment(
    visit_id: int,
    item: VisitTreatmentCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    visit = get_visit_or_404(db, visit_id)
    if visit.status == VisitStatus.CANCELLED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Visit is cancelled")
    if visit.billing is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Visit has already been billed")

    treatment = db.query(Treatment).filter(Treatment.id == item.treatment_id).first()
    if not treatment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Treatment not found")

    price = item.actual_price if item.actual_price is not None else treatment.standard_price
    if price < 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Price cannot be negative")

    db_item = VisitTreatment(
        visit_id=visit.id,
        treatment_id=treatment.id,
        actual_price=price,
        tooth_numbers=item.tooth_numbers,
        notes=item.notes,
    )
    db.add(db_item)
    db.flush()
    log_audit(
        db,
        current_user,
        "add_visit_treatment",
        "visit_treatments",
        db_item.id,
        new_values={"visit_id": visit.id, "treatment_id": treatment.id, "actual_price": price},
        request=request,
    )
    db.commit()
    db.refresh(db_item)
    return db_item


@router.get("/{visit_id}/treatments", response_model=List[VisitTreatmentResponse])
async def list_visit_treatments(
    visit_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    visit = get_visit_or_404(db, visit_id)
    return sorted(visit.treatments, key=lambda t: t.id)
