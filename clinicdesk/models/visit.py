import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from clinicdesk.database import Base


class VisitStatus(str, enum.Enum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AlertLevel(str, enum.Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class Visit(Base):
    """A patient's check-in at a clinic; drives the waiting queue."""

    __tablename__ = "visits"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="SET NULL"), nullable=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="SET NULL"), nullable=True, index=True)
    check_in_time = Column(DateTime, nullable=False, server_default=func.now())
    check_out_time = Column(DateTime, nullable=True)
    status = Column(Enum(VisitStatus), default=VisitStatus.WAITING, index=True)
    waiting_alert_level = Column(Enum(AlertLevel), default=AlertLevel.NORMAL)
    visit_type = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="visits")
    doctor = relationship("Doctor", back_populates="visits")
    clinic = relationship("Clinic")
    treatments = relationship("VisitTreatment", back_populates="visit", cascade="all, delete-orphan")
    billing = relationship("Billing", back_populates="visit", uselist=False)


class VisitTreatment(Base):
    """A treatment actually performed during a visit."""

    __tablename__ = "visit_treatments"

    id = Column(Integer, primary_key=True, index=True)
    visit_id = Column(Integer, ForeignKey("visits.id", ondelete="CASCADE"), nullable=False, index=True)
    treatment_id = Column(Integer, ForeignKey("treatments.id", ondelete="RESTRICT"), nullable=False)
    actual_price = Column(Numeric(10, 2), nullable=False)
    tooth_numbers = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String, default="completed")  # completed, cancelled
    performed_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    visit = relationship("Visit", back_populates="treatments")
    treatment = relationship("Treatment")
