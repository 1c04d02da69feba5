# miconsultorio/services/clinics.py
from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import List

from sqlalchemy.orm import Session

from ..config import settings
from .. import models, schemas
from ..errors import NotFoundError

logger = logging.getLogger(__name__)


def create_clinic(db: Session, data: schemas.ClinicCreate) -> models.Clinic:
    """Alta de consultorio: arranca en el paquete por defecto, en periodo de prueba."""
    now = datetime.utcnow()
    clinic = models.Clinic(
        **data.model_dump(),
        package_name=settings.DEFAULT_PACKAGE,
        subscription_status=models.SubscriptionStatus.trial,
        subscription_started_at=now,
        subscription_expires_at=now + timedelta(days=settings.TRIAL_DAYS),
    )
    db.add(clinic)
    db.commit()
    db.refresh(clinic)
    logger.info("Consultorio creado id=%s trial hasta %s", clinic.id, clinic.subscription_expires_at)
    return clinic


def get_clinic(db: Session, clinic_id: int) -> models.Clinic:
    clinic = db.get(models.Clinic, clinic_id)
    if clinic is None:
        raise NotFoundError("Consultorio no encontrado")
    return clinic


def update_clinic(db: Session, clinic_id: int, data: schemas.ClinicUpdate) -> models.Clinic:
    clinic = get_clinic(db, clinic_id)
    for field, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(clinic, field, value)
    db.commit()
    db.refresh(clinic)
    return clinic


# ====== Pacientes ======
def create_patient(db: Session, clinic_id: int, data: schemas.PatientCreate) -> models.Patient:
    get_clinic(db, clinic_id)
    patient = models.Patient(clinic_id=clinic_id, **data.model_dump())
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


def get_patient(db: Session, patient_id: int, clinic_id: int) -> models.Patient:
    patient = db.get(models.Patient, patient_id)
    if patient is None or patient.clinic_id != clinic_id:
        raise NotFoundError("Paciente no encontrado")
    return patient


def list_patients(db: Session, clinic_id: int, search: str | None = None) -> List[models.Patient]:
    q = db.query(models.Patient).filter(models.Patient.clinic_id == clinic_id)
    if search:
        q = q.filter(models.Patient.full_name.ilike(f"%{search.strip()}%"))
    return q.order_by(models.Patient.full_name.asc()).all()
