from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from clinicdesk.database import Base


class Doctor(Base):
    """Single doctor identity shared across every clinic the doctor is assigned to."""

    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False, index=True)
    specialty = Column(String, nullable=True)
    email = Column(String, unique=True, index=True)
    color = Column(String, nullable=True)
    status = Column(String, default="active")  # active, inactive
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    account = relationship("User", back_populates="doctor", uselist=False)
    clinic_assignments = relationship(
        "DoctorClinicAssignment", back_populates="doctor", cascade="all, delete-orphan"
    )
    clinics = relationship("Clinic", secondary="doctor_clinic_assignments", viewonly=True, order_by="Clinic.name")
    weekly_availability = relationship("WeeklyAvailability", back_populates="doctor", cascade="all, delete-orphan")
    availability_rules = relationship("RecurringRule", back_populates="doctor", cascade="all, delete-orphan")
    special_schedules = relationship("SpecialSchedule", back_populates="doctor", cascade="all, delete-orphan")
    appointments = relationship("Appointment", back_populates="doctor")
    visits = relationship("Visit", back_populates="doctor")

    @property
    def clinic_ids(self):
        return [assignment.clinic_id for assignment in self.clinic_assignments]
