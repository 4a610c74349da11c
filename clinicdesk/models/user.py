import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from clinicdesk.database import Base


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    NURSE = "nurse"


class User(Base):
    """Staff login account. Doctors log in by email, front-desk workers by username."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=True)
    username = Column(String, unique=True, index=True, nullable=True)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String)
    phone_number = Column(String, nullable=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.NURSE)
    is_active = Column(Boolean, default=True)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Set for role == doctor
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=True, unique=True)

    # Relationships
    doctor = relationship("Doctor", back_populates="account")
    audit_logs = relationship("AuditLog", back_populates="user")
