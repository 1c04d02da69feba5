# miconsultorio/services/packages.py
from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import BadRequestError, ConflictError, NotFoundError
from .entitlements import EntitlementGate

logger = logging.getLogger(__name__)

CYCLE_LENGTH = {
    models.BillingCycle.monthly: relativedelta(months=1),
    models.BillingCycle.annual: relativedelta(years=1),
}

DEFAULT_PACKAGES = [
    {
        "name": "basico",
        "display_name": "Básico",
        "description": "Plan inicial para consultorios pequeños",
        "monthly_price": 299,
        "annual_price": 2990,
        "max_clinics": 1,
        "max_doctors": 1,
        "max_receptionists": 1,
        "features": {},
        "sort_order": 1,
    },
    {
        "name": "profesional",
        "display_name": "Profesional",
        "description": "Plan completo para profesionales independientes",
        "monthly_price": 599,
        "annual_price": 5990,
        "max_clinics": 1,
        "max_doctors": 1,
        "max_receptionists": 1,
        "features": {"uploadDocumentos": True, "uploadImagenes": True, "reportesAvanzados": True},
        "sort_order": 2,
    },
    {
        "name": "clinica",
        "display_name": "Clínica",
        "description": "Plan avanzado para clínicas y equipos médicos",
        "monthly_price": 1199,
        "annual_price": 11990,
        "max_clinics": 1,
        "max_doctors": 2,
        "max_receptionists": 2,
        "features": {
            "uploadDocumentos": True,
            "uploadImagenes": True,
            "reportesAvanzados": True,
            "integraciones": True,
            "soportePrioritario": True,
        },
        "sort_order": 3,
    },
]


def _apply_features(package: models.Package, features: dict) -> None:
    for name, enabled in features.items():
        attr = models.Package.FEATURES.get(name)
        if attr is None:
            raise BadRequestError(f"Feature desconocida: {name}")
        setattr(package, attr, bool(enabled))


def _build_package(data: dict) -> models.Package:
    data = dict(data)
    features = data.pop("features", {}) or {}
    package = models.Package(**data)
    _apply_features(package, features)
    return package


# ====== Catálogo ======
def list_packages(db: Session) -> List[models.Package]:
    return (
        db.query(models.Package)
        .filter(models.Package.active.is_(True))
        .order_by(models.Package.sort_order.asc())
        .all()
    )


def get_package_by_name(db: Session, name: str) -> models.Package:
    package = (
        db.query(models.Package)
        .filter(models.Package.name == name, models.Package.active.is_(True))
        .first()
    )
    if package is None:
        raise NotFoundError(f"Paquete {name} no encontrado")
    return package


def get_package(db: Session, package_id: int) -> models.Package:
    package = db.get(models.Package, package_id)
    if package is None:
        raise NotFoundError("Paquete no encontrado")
    return package


def create_package(db: Session, data: schemas.PackageIn) -> models.Package:
    if db.query(models.Package).filter(models.Package.name == data.name).first():
        raise ConflictError(f"Ya existe un paquete con el nombre: {data.name}")
    package = _build_package(data.model_dump())
    db.add(package)
    db.commit()
    db.refresh(package)
    return package


def update_package(db: Session, package_id: int, data: schemas.PackageUpdate) -> models.Package:
    package = get_package(db, package_id)
    changes = data.model_dump(exclude_unset=True)

    new_name = changes.get("name")
    if new_name:
        new_name = new_name.strip().lower()
        changes["name"] = new_name
        if new_name != package.name and db.query(models.Package).filter(models.Package.name == new_name).first():
            raise ConflictError(f"Ya existe un paquete con el nombre: {new_name}")

    features = changes.pop("features", None)
    for field, value in changes.items():
        setattr(package, field, value)
    if features:
        _apply_features(package, features)

    db.commit()
    db.refresh(package)
    return package


def delete_package(db: Session, package_id: int) -> None:
    package = get_package(db, package_id)
    in_use = (
        db.query(func.count(models.Clinic.id))
        .filter(models.Clinic.package_name == package.name)
        .scalar()
    )
    if in_use:
        raise ConflictError(f"No se puede eliminar el paquete. {in_use} consultorio(s) lo están usando")
    db.delete(package)
    db.commit()


def seed_default_packages(db: Session) -> List[models.Package]:
    if db.query(func.count(models.Package.id)).scalar():
        raise ConflictError("Los paquetes ya están inicializados")
    packages = [_build_package(p) for p in DEFAULT_PACKAGES]
    db.add_all(packages)
    db.commit()
    logger.info("Paquetes inicializados: %s", [p.name for p in packages])
    return packages


# ====== Suscripción del consultorio ======
def start_subscription_cycle(
    clinic: models.Clinic,
    package_name: str,
    billing_cycle: models.BillingCycle,
    status: models.SubscriptionStatus = models.SubscriptionStatus.active,
    started_at: Optional[datetime] = None,
    expires_at: Optional[datetime] = None,
) -> None:
    """
    Abre un ciclo nuevo. Es la única salida de `cancelled`, por eso no pasa por
    la máquina de transiciones.
    """
    started_at = started_at or datetime.utcnow()
    clinic.package_name = package_name
    clinic.billing_cycle = billing_cycle
    clinic.subscription_status = status
    clinic.subscription_started_at = started_at
    clinic.subscription_expires_at = expires_at or (started_at + CYCLE_LENGTH[billing_cycle])


def change_package(
    db: Session,
    clinic_id: int,
    package_name: str,
    billing_cycle: models.BillingCycle = models.BillingCycle.monthly,
) -> models.Clinic:
    clinic = db.get(models.Clinic, clinic_id)
    if clinic is None:
        raise NotFoundError("Consultorio no encontrado")
    package = get_package_by_name(db, package_name)
    start_subscription_cycle(clinic, package.name, billing_cycle)
    db.commit()
    db.refresh(clinic)
    logger.info("Consultorio %s cambió a %s (%s)", clinic.id, package.name, billing_cycle.value)
    return clinic


def admin_update_clinic_package(db: Session, clinic_id: int, data: schemas.AdminClinicPackageUpdate) -> models.Clinic:
    clinic = db.get(models.Clinic, clinic_id)
    if clinic is None:
        raise NotFoundError("Consultorio no encontrado")
    if not db.query(models.Package).filter(models.Package.name == data.package).first():
        raise BadRequestError("Paquete no válido")

    # Ajuste manual del administrador: no valida transiciones
    clinic.package_name = data.package
    if data.billing_cycle:
        clinic.billing_cycle = data.billing_cycle
    if data.status:
        clinic.subscription_status = data.status
    if data.expires_at:
        clinic.subscription_expires_at = data.expires_at
    db.commit()
    db.refresh(clinic)
    return clinic


def list_clinics_with_package(db: Session) -> List[dict]:
    gate = EntitlementGate(db)
    out = []
    for clinic in db.query(models.Clinic).order_by(models.Clinic.id.asc()).all():
        package = db.query(models.Package).filter(models.Package.name == clinic.package_name).first()
        out.append({
            "id": clinic.id,
            "name": clinic.name,
            "package": package.display_name if package else None,
            "package_name": clinic.package_name,
            "subscription_status": clinic.subscription_status.value,
            "expires_at": clinic.subscription_expires_at,
            "usage": {
                "doctors": gate.count_staff(clinic.id, models.UserRole.doctor),
                "receptionists": gate.count_staff(clinic.id, models.UserRole.receptionist),
            },
        })
    return out
