import logging
from datetime import datetime
from decimal import Decimal
from io import BytesIO
from typing import List, Optional
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response
from pydantic import BaseModel
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy.orm import Session

from clinicdesk.core.audit import log_audit
from clinicdesk.core.security import get_current_active_user, require_roles
from clinicdesk.database import get_db
from clinicdesk.models.billing import Billing, PaymentStatus, Treatment
from clinicdesk.models.user import User, UserRole
from clinicdesk.routers.visits import get_visit_or_404

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])


class TreatmentCreate(BaseModel):
    code: str
    name: str
    standard_price: Decimal
    category: Optional[str] = None
    description: Optional[str] = None


class TreatmentResponse(TreatmentCreate):
    id: int

    class Config:
        from_attributes = True


class BillingCreate(BaseModel):
    notes: Optional[str] = None


class PaymentCreate(BaseModel):
    payment_method: str
    amount_paid: Decimal
    transaction_ref: Optional[str] = None


class BillingResponse(BaseModel):
    id: int
    visit_id: int
    total_amount: Decimal
    payment_status: PaymentStatus
    payment_method: Optional[str] = None
    amount_paid: Optional[Decimal] = None
    transaction_ref: Optional[str] = None
    processed_by: Optional[int] = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


def _get_billing(db: Session, billing_id: int) -> Billing:
    billing = db.query(Billing).filter(Billing.id == billing_id).first()
    if not billing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bill not found")
    return billing


def _billable(visit) -> list:
    return [item for item in visit.treatments if item.status != "cancelled"]


# --- Treatment catalogue ---


@router.get("/treatments", response_model=List[TreatmentResponse])
async def list_treatments(
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    query = db.query(Treatment)
    if category:
        query = query.filter(Treatment.category == category)
    return query.order_by(Treatment.code).all()


@router.post("/treatments", response_model=TreatmentResponse, status_code=status.HTTP_201_CREATED)
async def create_treatment(
    treatment: TreatmentCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    if treatment.standard_price < 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Price cannot be negative")
    if db.query(Treatment).filter(Treatment.code == treatment.code).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A treatment with this code already exists")

    db_treatment = Treatment(**treatment.model_dump())
    db.add(db_treatment)
    db.flush()
    log_audit(db, current_user, "create_treatment", "treatments", db_treatment.id, new_values=treatment.model_dump(), request=request)
    db.commit()
    db.refresh(db_treatment)
    return db_treatment


# --- Bills ---


@router.post("/visits/{visit_id}/billing", response_model=BillingResponse, status_code=status.HTTP_201_CREATED)
async def create_billing(
    visit_id: int,
    billing: BillingCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    visit = get_visit_or_404(db, visit_id)
    if visit.billing is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Visit has already been billed")

    items = _billable(visit)
    if not items:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Visit has no treatments to bill")

    total = sum((Decimal(item.actual_price) for item in items), Decimal("0"))
    db_billing = Billing(
        visit_id=visit.id,
        total_amount=total,
        payment_status=PaymentStatus.PENDING,
        notes=billing.notes,
    )
    db.add(db_billing)
    db.flush()
    log_audit(
        db,
        current_user,
        "create_billing",
        "billing",
        db_billing.id,
        new_values={"visit_id": visit.id, "total_amount": total},
        request=request,
    )
    db.commit()
    db.refresh(db_billing)
    return db_billing


@router.get("/billing/{billing_id}", response_model=BillingResponse)
async def get_billing(
    billing_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return _get_billing(db, billing_id)


@router.post("/billing/{billing_id}/pay", response_model=BillingResponse)
async def pay_billing(
    billing_id: int,
    payment: PaymentCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    billing = _get_billing(db, billing_id)
    if billing.payment_status == PaymentStatus.PAID:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Bill is already paid")
    if payment.amount_paid < Decimal(billing.total_amount):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Amount paid is less than the total of {billing.total_amount}",
        )

    billing.payment_status = PaymentStatus.PAID
    billing.payment_method = payment.payment_method
    billing.amount_paid = payment.amount_paid
    billing.transaction_ref = payment.transaction_ref
    billing.processed_by = current_user.id
    billing.paid_at = datetime.now()

    log_audit(
        db,
        current_user,
        "pay_billing",
        "billing",
        billing.id,
        old_values={"payment_status": PaymentStatus.PENDING},
        new_values=payment.model_dump(),
        request=request,
    )
    db.commit()
    db.refresh(billing)
    logger.info("Bill %s paid (%s via %s)", billing.id, billing.amount_paid, billing.payment_method)
    return billing


@router.get("/billing/{billing_id}/receipt")
async def get_receipt(
    billing_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    billing = _get_billing(db, billing_id)
    visit = billing.visit
    patient = visit.patient

    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter)
    styles = getSampleStyleSheet()
    story = []

    title_style = ParagraphStyle(
        "CustomTitle",
        parent=styles["Heading1"],
        fontSize=24,
        spaceAfter=30,
    )
    story.append(Paragraph("Receipt", title_style))

    story.append(Paragraph("Patient Information:", styles["Heading2"]))
    story.append(Paragraph(f"Name: {escape(patient.display_name)}", styles["Normal"]))
    story.append(Paragraph(f"DN: {escape(patient.dn or '')}", styles["Normal"]))
    if visit.clinic is not None:
        story.append(Paragraph(f"Clinic: {escape(visit.clinic.name)}", styles["Normal"]))
    if visit.doctor is not None:
        story.append(Paragraph(f"Doctor: {escape(visit.doctor.full_name)}", styles["Normal"]))
    story.append(Spacer(1, 20))

    story.append(Paragraph("Treatments:", styles["Heading2"]))
    rows = [["Code", "Treatment", "Tooth", "Price"]]
    for item in _billable(visit):
        rows.append([item.treatment.code, item.treatment.name, item.tooth_numbers or "", f"{item.actual_price:.2f}"])
    rows.append(["", "", "Total", f"{Decimal(billing.total_amount):.2f}"])

    table = Table(rows)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.grey),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
                ("ALIGN", (0, 0), (-1, -1), "CENTER"),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("BOTTOMPADDING", (0, 0), (-1, 0), 12),
                ("BACKGROUND", (0, 1), (-1, -1), colors.beige),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                ("GRID", (0, 0), (-1, -1), 1, colors.black),
            ]
        )
    )
    story.append(table)
    story.append(Spacer(1, 20))

    story.append(Paragraph(f"Status: {billing.payment_status.value}", styles["Normal"]))
    if billing.paid_at:
        story.append(Paragraph(f"Paid: {billing.paid_at.strftime('%Y-%m-%d %H:%M')} ({escape(billing.payment_method or '')})", styles["Normal"]))

    doc.build(story)

    return Response(
        content=buffer.getvalue(),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="receipt_{billing.id}.pdf"'},
    )
