import itertools
import os

# La configuración se lee al importar el paquete: BD en memoria y sin scheduler
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ADMIN_TOKEN"] = "test-admin"
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("LLM_API_KEY", None)

from datetime import date, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from miconsultorio import models
from miconsultorio.database import Base, SessionLocal, engine, get_db
from miconsultorio.main import app

ADMIN_HEADERS = {"X-Admin-Token": "test-admin"}

_seq = itertools.count(1)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def _override():
        yield db

    app.dependency_overrides[get_db] = _override
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ──────────────────────────────────────────────────────────────────────────────
# Fábricas
# ──────────────────────────────────────────────────────────────────────────────
def make_package(db, name="basico", **overrides):
    fields = dict(
        name=name,
        display_name=name.capitalize(),
        description="",
        monthly_price=299,
        annual_price=2990,
        max_clinics=1,
        max_doctors=1,
        max_receptionists=1,
    )
    fields.update(overrides)
    package = models.Package(**fields)
    db.add(package)
    db.commit()
    return package


def make_clinic(db, package_name="basico", status=models.SubscriptionStatus.active, expires_in_days=30, **overrides):
    now = datetime.utcnow()
    clinic = models.Clinic(
        name=overrides.pop("name", "Consultorio Centro"),
        package_name=package_name,
        subscription_status=status,
        subscription_started_at=now,
        subscription_expires_at=None if expires_in_days is None else now + timedelta(days=expires_in_days),
        **overrides,
    )
    db.add(clinic)
    db.commit()
    return clinic


def make_user(db, clinic, role=models.UserRole.doctor, email=None, is_active=True):
    user = models.User(
        name=f"{role.value} de prueba",
        email=email or f"{role.value}-{next(_seq)}@test.mx",
        role=role,
        clinic_id=clinic.id,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    return user


def make_patient(db, clinic, full_name="Ana López"):
    patient = models.Patient(clinic_id=clinic.id, full_name=full_name)
    db.add(patient)
    db.commit()
    return patient


def make_appointment(db, doctor, patient, day, time, status=models.AppointmentStatus.pending):
    appt = models.Appointment(
        patient_id=patient.id,
        doctor_id=doctor.id,
        clinic_id=doctor.clinic_id,
        date=day,
        time=time,
        status=status,
    )
    db.add(appt)
    db.commit()
    return appt


@pytest.fixture
def setup(db):
    """Consultorio en plan básico con un doctor, una recepcionista y un paciente."""
    package = make_package(db)
    clinic = make_clinic(db)
    doctor = make_user(db, clinic, models.UserRole.doctor, email="doctor@test.mx")
    admin = make_user(db, clinic, models.UserRole.admin, email="admin@test.mx")
    patient = make_patient(db, clinic)
    return {
        "package": package,
        "clinic": clinic,
        "doctor": doctor,
        "admin": admin,
        "patient": patient,
        "day": date.today() + timedelta(days=7),
    }


def user_headers(user):
    return {"X-User-Id": str(user.id)}
