from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, Time, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from clinicdesk.database import Base


class ClinicNameMixin:
    @property
    def clinic_name(self):
        return self.clinic.name if self.clinic else None


class WeeklyAvailability(ClinicNameMixin, Base):
    __tablename__ = "doctor_availability"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0-6 (Sunday-Saturday)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    doctor = relationship("Doctor", back_populates="weekly_availability")
    clinic = relationship("Clinic")


class RecurringRule(ClinicNameMixin, Base):
    __tablename__ = "doctor_availability_rules"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0-6 (Sunday-Saturday)
    weeks_of_month = Column(JSON, nullable=False)  # e.g. [2, 4] for 2nd and 4th occurrence
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    doctor = relationship("Doctor", back_populates="availability_rules")
    clinic = relationship("Clinic")


class SpecialSchedule(ClinicNameMixin, Base):
    __tablename__ = "special_schedules"
    __table_args__ = (UniqueConstraint("doctor_id", "schedule_date", name="uq_special_schedule_doctor_date"),)

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)
    schedule_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    is_available = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    doctor = relationship("Doctor", back_populates="special_schedules")
    clinic = relationship("Clinic")
