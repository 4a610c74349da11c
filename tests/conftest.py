import os

# Must be set before clinicdesk.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENABLE_SCHEDULER", "false")

from datetime import time  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from clinicdesk.core.security import create_access_token, get_password_hash  # noqa: E402
from clinicdesk.database import Base, get_db  # noqa: E402
from clinicdesk.main import app  # noqa: E402
from clinicdesk.models import (  # noqa: E402
    Clinic,
    Doctor,
    DoctorClinicAssignment,
    Patient,
    User,
    UserRole,
    WeeklyAvailability,
)


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db):
    # No context manager: startup hooks (scheduler) stay off
    return TestClient(app)


def _auth_headers(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id), "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


def _make_user(db, **fields) -> User:
    password = fields.pop("password", "secret123")
    user = User(hashed_password=get_password_hash(password), **fields)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def clinics(db):
    central = Clinic(name="Central")
    north = Clinic(name="North")
    db.add_all([central, north])
    db.commit()
    return central, north


@pytest.fixture
def doctor(db, clinics):
    central, north = clinics
    doc = Doctor(full_name="Ada Lovelace", specialty="Orthodontics", email="ada@example.com", color="#ff0000")
    db.add(doc)
    db.flush()
    db.add_all(
        [
            DoctorClinicAssignment(doctor_id=doc.id, clinic_id=central.id),
            DoctorClinicAssignment(doctor_id=doc.id, clinic_id=north.id),
        ]
    )
    db.commit()
    db.refresh(doc)
    return doc


@pytest.fixture
def other_doctor(db, clinics):
    central, _north = clinics
    doc = Doctor(full_name="Grace Hopper", specialty="Endodontics", email="grace@example.com")
    db.add(doc)
    db.flush()
    db.add(DoctorClinicAssignment(doctor_id=doc.id, clinic_id=central.id))
    db.commit()
    db.refresh(doc)
    return doc


@pytest.fixture
def monday_hours(db, doctor, clinics):
    """Weekly Monday 09:00-17:00 at Central for ``doctor``."""
    central, _north = clinics
    row = WeeklyAvailability(
        doctor_id=doctor.id,
        clinic_id=central.id,
        day_of_week=1,
        start_time=time(9, 0),
        end_time=time(17, 0),
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def patient(db):
    p = Patient(dn="DN-0001", first_name="John", last_name="Smith", mobile_phone="0812345678")
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@pytest.fixture
def admin_user(db):
    return _make_user(db, email="admin@example.com", full_name="Admin", role=UserRole.ADMIN)


@pytest.fixture
def nurse_user(db):
    return _make_user(db, username="frontdesk", full_name="Front Desk", role=UserRole.NURSE)


@pytest.fixture
def doctor_user(db, doctor):
    return _make_user(db, email=doctor.email, full_name=doctor.full_name, role=UserRole.DOCTOR, doctor_id=doctor.id)


@pytest.fixture
def admin_headers(admin_user):
    return _auth_headers(admin_user)


@pytest.fixture
def nurse_headers(nurse_user):
    return _auth_headers(nurse_user)


@pytest.fixture
def doctor_headers(doctor_user):
    return _auth_headers(doctor_user)
