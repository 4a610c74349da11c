from sqlalchemy import Column, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from clinicdesk.database import Base


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    dn = Column(String, unique=True, index=True)  # clinic record number
    dn_old = Column(String, nullable=True)
    id_number = Column(String, nullable=True)
    title = Column(String, nullable=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    nickname = Column(String, nullable=True)
    gender = Column(String, nullable=True)
    date_of_birth = Column(Date, nullable=True)
    chronic_diseases = Column(Text, nullable=True)
    allergies = Column(Text, nullable=True)
    mobile_phone = Column(String, nullable=True, index=True)
    email = Column(String, nullable=True)
    address = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    appointments = relationship("Appointment", back_populates="patient")
    visits = relationship("Visit", back_populates="patient")

    @property
    def display_name(self):
        return f"{self.first_name} {self.last_name}".strip()
