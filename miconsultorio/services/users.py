# miconsultorio/services/users.py
from __future__ import annotations
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import BadRequestError, ConflictError, LimitExceededError, NotFoundError
from .entitlements import EntitlementGate

logger = logging.getLogger(__name__)

# rol → tipo de límite del paquete (los admin no cuentan)
ROLE_LIMITS = {
    models.UserRole.doctor: "doctor",
    models.UserRole.receptionist: "receptionist",
}


def _lock_clinic(db: Session, clinic_id: int) -> Optional[models.Clinic]:
    """
    Bloquea la fila del consultorio hasta el commit (SELECT ... FOR UPDATE en
    Postgres) para que dos altas simultáneas cuenten en serie. SQLite lo ignora.
    """
    return (
        db.query(models.Clinic)
        .filter(models.Clinic.id == clinic_id)
        .with_for_update()
        .first()
    )


def get_user(db: Session, user_id: int, clinic_id: Optional[int] = None) -> models.User:
    user = db.get(models.User, user_id)
    if user is None or (clinic_id is not None and user.clinic_id != clinic_id):
        raise NotFoundError("Usuario no encontrado")
    return user


def list_users(db: Session, clinic_id: Optional[int] = None, page: int = 1, limit: int = 10):
    q = db.query(models.User)
    if clinic_id:
        q = q.filter(models.User.clinic_id == clinic_id)
    total = q.count()
    items = q.order_by(models.User.created_at.desc(), models.User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return items, total


def list_by_role(db: Session, role: models.UserRole, clinic_id: Optional[int] = None) -> List[models.User]:
    q = db.query(models.User).filter(models.User.role == role)
    if clinic_id:
        q = q.filter(models.User.clinic_id == clinic_id)
    return q.order_by(models.User.name.asc()).all()


def create_user(db: Session, data: schemas.UserCreate) -> models.User:
    if data.clinic_id is None:
        raise BadRequestError("Consultorio no identificado")

    clinic = _lock_clinic(db, data.clinic_id)
    if clinic is None:
        raise NotFoundError("Consultorio no encontrado")

    email = data.email.strip().lower()
    if db.query(models.User).filter(func.lower(models.User.email) == email).first():
        raise ConflictError("Ya existe un usuario con ese email")

    kind = ROLE_LIMITS.get(data.role)
    if kind is not None:
        decision = EntitlementGate(db).check_limit(clinic.id, kind)
        if not decision.permitted:
            db.rollback()
            raise LimitExceededError(decision)

    user = models.User(
        name=data.name.strip(),
        email=email,
        role=data.role,
        clinic_id=clinic.id,
        cedulas=list(data.cedulas),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Usuario creado id=%s rol=%s clinic=%s", user.id, user.role.value, user.clinic_id)
    return user


def update_user(db: Session, user_id: int, data: schemas.UserUpdate, clinic_id: Optional[int] = None) -> models.User:
    user = get_user(db, user_id, clinic_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)

    if "email" in changes:
        email = changes["email"].strip().lower()
        other = db.query(models.User).filter(func.lower(models.User.email) == email, models.User.id != user.id).first()
        if other:
            raise ConflictError("Ya existe un usuario con ese email")
        changes["email"] = email

    # Cambiar de rol ocupa un lugar del nuevo tipo
    new_role = changes.get("role")
    if new_role is not None and new_role != user.role and user.is_active:
        kind = ROLE_LIMITS.get(new_role)
        if kind is not None:
            _lock_clinic(db, user.clinic_id)
            decision = EntitlementGate(db).check_limit(user.clinic_id, kind)
            if not decision.permitted:
                db.rollback()
                raise LimitExceededError(decision)

    for field, value in changes.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    return user


def set_user_active(db: Session, user_id: int, is_active: bool, clinic_id: Optional[int] = None) -> models.User:
    user = get_user(db, user_id, clinic_id)
    if is_active and not user.is_active:
        # Reactivar vuelve a contar contra el límite
        kind = ROLE_LIMITS.get(user.role)
        if kind is not None:
            _lock_clinic(db, user.clinic_id)
            decision = EntitlementGate(db).check_limit(user.clinic_id, kind)
            if not decision.permitted:
                db.rollback()
                raise LimitExceededError(decision)
    user.is_active = is_active
    db.commit()
    db.refresh(user)
    return user


def delete_user(db: Session, user_id: int, clinic_id: Optional[int] = None) -> None:
    user = get_user(db, user_id, clinic_id)
    has_appointments = (
        db.query(func.count(models.Appointment.id))
        .filter(models.Appointment.doctor_id == user.id)
        .scalar()
    )
    if has_appointments:
        raise BadRequestError("No se puede eliminar un usuario con citas registradas")
    db.delete(user)
    db.commit()
