# miconsultorio/deps.py
from __future__ import annotations
import math
from typing import Any, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from . import models
from .errors import BadRequestError, FeatureNotPermittedError
from .services.entitlements import EntitlementGate


# ──────────────────────────────────────────────────────────────────────────────
# Identidad
# El proveedor de auth vive fuera de esta API: el gateway reenvía el id del
# usuario en X-User-Id.
# ──────────────────────────────────────────────────────────────────────────────
def get_current_user(
    x_user_id: Optional[int] = Header(default=None),
    db: Session = Depends(get_db),
) -> models.User:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Falta X-User-Id")
    user = db.get(models.User, x_user_id)
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="Usuario inválido o inactivo")
    return user


def get_clinic_id(user: models.User = Depends(get_current_user)) -> int:
    if not user.clinic_id:
        raise BadRequestError("Consultorio no identificado")
    return user.clinic_id


def require_admin(x_admin_token: Optional[str] = Header(default=None)) -> None:
    expected = (settings.ADMIN_TOKEN or "").strip()
    provided = (x_admin_token or "").strip()
    if not expected:
        raise HTTPException(status_code=403, detail="ADMIN_TOKEN no configurado")
    if provided != expected:
        raise HTTPException(status_code=401, detail="Token inválido")


# ──────────────────────────────────────────────────────────────────────────────
# Gates de paquete
# ──────────────────────────────────────────────────────────────────────────────
def require_active_subscription(
    clinic_id: int = Depends(get_clinic_id),
    db: Session = Depends(get_db),
) -> int:
    EntitlementGate(db).check_subscription_active(clinic_id)
    return clinic_id


def require_feature(feature: str):
    def dependency(
        clinic_id: int = Depends(require_active_subscription),
        db: Session = Depends(get_db),
    ) -> int:
        decision = EntitlementGate(db).check_feature(clinic_id, feature)
        if not decision.permitted:
            raise FeatureNotPermittedError(decision)
        return clinic_id

    return dependency


# ──────────────────────────────────────────────────────────────────────────────
# Respuestas
# ──────────────────────────────────────────────────────────────────────────────
def ok(data: Any = None, message: str = "Success") -> dict:
    return {"success": True, "message": message, "data": data}


def paginated(data: list, page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "success": True,
        "data": data,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next_page": page < total_pages,
            "has_prev_page": page > 1,
        },
    }
