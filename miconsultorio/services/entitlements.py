# miconsultorio/services/entitlements.py
from __future__ import annotations
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from .. import models
from ..errors import BadRequestError, NotFoundError, SubscriptionExpiredError, InvalidTransitionError
from ..schemas import FeatureDecision, FeatureStatus, LimitDecision

logger = logging.getLogger(__name__)

S = models.SubscriptionStatus

# Estados que permiten operar
ACTIVE_STATUSES = (S.trial, S.active)

# Máquina de estados de la suscripción. `cancelled` es terminal: sólo se sale
# iniciando un ciclo nuevo (start_subscription_cycle).
SUBSCRIPTION_TRANSITIONS = {
    S.trial: {S.trial, S.active, S.expired, S.cancelled},
    S.active: {S.active, S.expired, S.cancelled},
    S.expired: {S.active, S.cancelled},
    S.cancelled: set(),
}

# tipo de límite → (rol contado, columna del paquete, etiqueta)
LIMIT_KINDS = {
    "doctor": (models.UserRole.doctor, "max_doctors", "doctor(es)"),
    "receptionist": (models.UserRole.receptionist, "max_receptionists", "recepcionista(s)"),
    "consultorio": (None, "max_clinics", "consultorio(s)"),
}


def transition_subscription(clinic: models.Clinic, target: models.SubscriptionStatus) -> None:
    current = clinic.subscription_status
    if target not in SUBSCRIPTION_TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)
    clinic.subscription_status = target


def is_overdue(clinic: models.Clinic, now: datetime) -> bool:
    return (
        clinic.subscription_status in ACTIVE_STATUSES
        and clinic.subscription_expires_at is not None
        and now > clinic.subscription_expires_at
    )


def _expire(db: Session, clinic: models.Clinic) -> bool:
    """
    Pasa la suscripción a `expired` con un UPDATE condicional al estado leído.
    Si otra petición ya la movió, no hace nada. Devuelve True si este llamado
    aplicó la transición.
    """
    previous = clinic.subscription_status
    result = db.execute(
        update(models.Clinic)
        .where(models.Clinic.id == clinic.id)
        .where(models.Clinic.subscription_status == previous)
        .values(subscription_status=S.expired)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(clinic)
    return result.rowcount == 1


def expire_overdue_subscriptions(db: Session, now: Optional[datetime] = None) -> int:
    """Barrido idempotente: vence toda suscripción trial/active con fecha pasada."""
    now = now or datetime.utcnow()
    overdue = (
        db.query(models.Clinic)
        .filter(models.Clinic.subscription_status.in_(ACTIVE_STATUSES))
        .filter(models.Clinic.subscription_expires_at.isnot(None))
        .filter(models.Clinic.subscription_expires_at < now)
        .all()
    )
    expired = 0
    for clinic in overdue:
        if _expire(db, clinic):
            expired += 1
            logger.info("Suscripción vencida (barrido) clinic=%s", clinic.id)
    return expired


class EntitlementGate:
    """
    Decide si un consultorio puede crear personal o usar una función según su
    paquete, y si su suscripción le permite operar.
    """

    def __init__(self, db: Session):
        self.db = db

    # ---------- lookups ----------
    def _clinic(self, clinic_id: int) -> models.Clinic:
        clinic = self.db.get(models.Clinic, clinic_id)
        if clinic is None:
            logger.error("Consultorio inexistente: %s", clinic_id)
            raise NotFoundError("Consultorio no encontrado")
        return clinic

    def _package(self, clinic: models.Clinic) -> models.Package:
        package = (
            self.db.query(models.Package)
            .filter(models.Package.name == clinic.package_name)
            .first()
        )
        if package is None:
            logger.error("Consultorio %s referencia un paquete inexistente: %r", clinic.id, clinic.package_name)
            raise NotFoundError(f"Paquete {clinic.package_name} no encontrado")
        return package

    def count_staff(self, clinic_id: int, role: models.UserRole) -> int:
        return (
            self.db.query(func.count(models.User.id))
            .filter(models.User.clinic_id == clinic_id)
            .filter(models.User.role == role)
            .filter(models.User.is_active.is_(True))
            .scalar()
        ) or 0

    # ---------- decisiones ----------
    def check_limit(self, clinic_id: int, kind: str) -> LimitDecision:
        if kind not in LIMIT_KINDS:
            raise BadRequestError(f"Tipo de límite desconocido: {kind}")

        clinic = self._clinic(clinic_id)
        package = self._package(clinic)
        role, column, label = LIMIT_KINDS[kind]
        limit = getattr(package, column)

        if role is None:
            # Un consultorio por cuenta por ahora
            current, permitted = 1, True
        else:
            current = self.count_staff(clinic.id, role)
            permitted = limit is None or current < limit

        if permitted:
            available = "ilimitado" if limit is None else f"{current} de {limit}"
            message = f"Puedes agregar {label}: {available} en tu plan {package.display_name}"
        else:
            message = f"Has alcanzado el límite de {limit} {label} en tu plan {package.display_name}"
            logger.info("Límite alcanzado clinic=%s kind=%s %s/%s", clinic.id, kind, current, limit)
        return LimitDecision(kind=kind, permitted=permitted, current=current, limit=limit, message=message)

    def check_feature(self, clinic_id: int, feature: str) -> FeatureDecision:
        clinic = self._clinic(clinic_id)
        package = self._package(clinic)

        attr = models.Package.FEATURES.get(feature)
        if attr is None:
            status = FeatureStatus.unknown
            logger.warning("Feature desconocida consultada: %r (clinic=%s)", feature, clinic.id)
        elif getattr(package, attr) is True:
            status = FeatureStatus.enabled
        else:
            status = FeatureStatus.disabled

        return FeatureDecision(
            feature=feature,
            permitted=status is FeatureStatus.enabled,
            status=status,
            package=package.display_name,
            message=(
                f'La función "{feature}" no está disponible en tu plan {package.display_name}. '
                "Actualiza tu plan para acceder."
            ),
        )

    def check_subscription_active(self, clinic_id: int, now: Optional[datetime] = None) -> None:
        """
        Lanza SubscriptionExpiredError si la suscripción no permite operar.
        Si está trial/active pero la fecha de vencimiento ya pasó, la marca como
        `expired` antes de rechazar.
        """
        now = now or datetime.utcnow()
        clinic = self._clinic(clinic_id)

        if clinic.subscription_status not in ACTIVE_STATUSES:
            raise SubscriptionExpiredError(clinic.subscription_status.value, clinic.subscription_expires_at)

        if is_overdue(clinic, now):
            if _expire(self.db, clinic):
                logger.info("Suscripción vencida (lazy) clinic=%s venció=%s", clinic.id, clinic.subscription_expires_at)
            raise SubscriptionExpiredError(S.expired.value, clinic.subscription_expires_at)

    def package_info(self, clinic_id: int, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()
        clinic = self._clinic(clinic_id)
        if is_overdue(clinic, now) and _expire(self.db, clinic):
            logger.info("Suscripción vencida (lazy) clinic=%s", clinic.id)

        package = self._package(clinic)
        usage = {}
        for kind in ("doctor", "receptionist"):
            role, column, _ = LIMIT_KINDS[kind]
            current = self.count_staff(clinic.id, role)
            limit = getattr(package, column)
            usage[kind] = {
                "current": current,
                "limit": limit,
                "available": None if limit is None else max(limit - current, 0),
            }

        return {
            "package": {
                "name": package.name,
                "display_name": package.display_name,
                "description": package.description,
            },
            "subscription": {
                "status": clinic.subscription_status.value,
                "started_at": clinic.subscription_started_at,
                "expires_at": clinic.subscription_expires_at,
                "billing_cycle": clinic.billing_cycle.value,
            },
            "usage": usage,
            "features": package.features(),
        }
