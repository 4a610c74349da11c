from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from clinicdesk.database import Base


class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    address = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    doctor_assignments = relationship("DoctorClinicAssignment", back_populates="clinic", cascade="all, delete-orphan")


class DoctorClinicAssignment(Base):
    __tablename__ = "doctor_clinic_assignments"
    __table_args__ = (UniqueConstraint("doctor_id", "clinic_id", name="uq_doctor_clinic"),)

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    doctor = relationship("Doctor", back_populates="clinic_assignments")
    clinic = relationship("Clinic", back_populates="doctor_assignments")
