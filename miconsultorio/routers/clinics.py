from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from .. import models, schemas
from ..deps import get_clinic_id, ok, require_admin
from ..services import clinics as svc

router = APIRouter(tags=["clinics"])


def _clinic(c: models.Clinic) -> schemas.ClinicOut:
    return schemas.ClinicOut.model_validate(c)


def _patient(p: models.Patient) -> schemas.PatientOut:
    return schemas.PatientOut.model_validate(p)


# ====== Consultorios ======
@router.post("/clinics", status_code=201, dependencies=[Depends(require_admin)])
def create_clinic(req: schemas.ClinicCreate, db: Session = Depends(get_db)):
    return ok(_clinic(svc.create_clinic(db, req)), "Consultorio creado exitosamente")


@router.get("/clinics/me")
def my_clinic(clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(_clinic(svc.get_clinic(db, clinic_id)))


@router.put("/clinics/me")
def update_my_clinic(req: schemas.ClinicUpdate, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(_clinic(svc.update_clinic(db, clinic_id, req)), "Consultorio actualizado exitosamente")


# ====== Pacientes ======
@router.get("/patients")
def list_patients(
    search: Optional[str] = None,
    clinic_id: int = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    return ok([_patient(p) for p in svc.list_patients(db, clinic_id, search)])


@router.get("/patients/{patient_id}")
def get_patient(patient_id: int, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(_patient(svc.get_patient(db, patient_id, clinic_id)))


@router.post("/patients", status_code=201)
def create_patient(req: schemas.PatientCreate, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(_patient(svc.create_patient(db, clinic_id, req)), "Paciente creado exitosamente")
