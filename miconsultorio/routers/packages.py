from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from .. import models, schemas
from ..deps import get_clinic_id, ok, require_admin
from ..services import packages as svc
from ..services.entitlements import EntitlementGate

router = APIRouter(prefix="/packages", tags=["packages"])


def _package_out(p: models.Package) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "display_name": p.display_name,
        "description": p.description,
        "monthly_price": p.monthly_price,
        "annual_price": p.annual_price,
        "limits": {
            "max_clinics": p.max_clinics,
            "max_doctors": p.max_doctors,
            "max_receptionists": p.max_receptionists,
            "max_patients": p.max_patients,
            "max_appointments": p.max_appointments,
        },
        "features": p.features(),
        "active": p.active,
    }


def _clinic_out(c: models.Clinic) -> schemas.ClinicOut:
    return schemas.ClinicOut.model_validate(c)


# ──────────────────────────────────────────────────────────────────────────────
# Consultorio actual
# ──────────────────────────────────────────────────────────────────────────────
@router.get("")
def list_packages(db: Session = Depends(get_db)):
    return ok([_package_out(p) for p in svc.list_packages(db)])


@router.get("/mine")
def my_package(clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(EntitlementGate(db).package_info(clinic_id))


@router.get("/check-limit/{kind}")
def check_limit(kind: str, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(EntitlementGate(db).check_limit(clinic_id, kind))


@router.get("/check-feature/{feature}")
def check_feature(feature: str, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(EntitlementGate(db).check_feature(clinic_id, feature))


@router.post("/change")
def change_package(
    req: schemas.ChangePackageRequest,
    clinic_id: int = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    clinic = svc.change_package(db, clinic_id, req.package, req.billing_cycle)
    return ok(_clinic_out(clinic), "Plan actualizado exitosamente")


# ──────────────────────────────────────────────────────────────────────────────
# Administración (X-Admin-Token)
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/seed", status_code=201, dependencies=[Depends(require_admin)])
def seed(db: Session = Depends(get_db)):
    packages = svc.seed_default_packages(db)
    return ok([_package_out(p) for p in packages], "Paquetes inicializados")


@router.get("/admin/clinics", dependencies=[Depends(require_admin)])
def admin_clinics(db: Session = Depends(get_db)):
    return ok(svc.list_clinics_with_package(db))


@router.put("/admin/clinics/{clinic_id}", dependencies=[Depends(require_admin)])
def admin_update_clinic(clinic_id: int, req: schemas.AdminClinicPackageUpdate, db: Session = Depends(get_db)):
    clinic = svc.admin_update_clinic_package(db, clinic_id, req)
    return ok(_clinic_out(clinic), "Paquete del consultorio actualizado")


@router.post("", status_code=201, dependencies=[Depends(require_admin)])
def create_package(req: schemas.PackageIn, db: Session = Depends(get_db)):
    return ok(_package_out(svc.create_package(db, req)), "Paquete creado exitosamente")


@router.put("/{package_id}", dependencies=[Depends(require_admin)])
def update_package(package_id: int, req: schemas.PackageUpdate, db: Session = Depends(get_db)):
    return ok(_package_out(svc.update_package(db, package_id, req)), "Paquete actualizado exitosamente")


@router.delete("/{package_id}", dependencies=[Depends(require_admin)])
def delete_package(package_id: int, db: Session = Depends(get_db)):
    svc.delete_package(db, package_id)
    return ok(message="Paquete eliminado exitosamente")


@router.get("/{name}")
def get_package(name: str, db: Session = Depends(get_db)):
    return ok(_package_out(svc.get_package_by_name(db, name)))
