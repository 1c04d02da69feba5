# miconsultorio/routers/admin.py
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from .. import models
from ..deps import require_admin
from ..services.entitlements import expire_overdue_subscriptions
from ..services.scheduling import normalize_day

router = APIRouter(tags=["admin"])

# ──────────────────────────────────────────────────────────────────────────────
# Básicos
# (recuerda: main.py monta este router con prefix="/admin")
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/ping")
def admin_ping():
    return {"ok": True, "ts": datetime.utcnow().isoformat()}


@router.get("/health")
def admin_health(db: Session = Depends(get_db)):
    return {
        "ok": True,
        "app": settings.APP_NAME,
        "env": settings.ENV,
        "tz": settings.TIMEZONE,
        "clinics": db.query(models.Clinic).count(),
        "scheduler": settings.SCHEDULER_ENABLED,
        "ts": datetime.utcnow().isoformat(),
    }

# ──────────────────────────────────────────────────────────────────────────────
# Suscripciones
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/subscriptions/expire", dependencies=[Depends(require_admin)])
def admin_expire_sweep(db: Session = Depends(get_db)):
    """
    Corre a mano el mismo barrido que el job horario. Es idempotente.
    """
    expired = expire_overdue_subscriptions(db)
    return {"ok": True, "expired": expired}

# ──────────────────────────────────────────────────────────────────────────────
# BD: citas de un día (todas las clínicas)
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/db/appointments", dependencies=[Depends(require_admin)])
def admin_db_appointments(
    date: str = Query(..., description="YYYY-MM-DD"),
    db: Session = Depends(get_db),
):
    """
    Lista las citas en BD para la fecha dada, incluidas las canceladas.
    Útil para explicar por qué un slot sale ocupado.
    """
    day = normalize_day(date)
    q = (
        db.query(models.Appointment, models.Patient)
        .join(models.Patient, models.Patient.id == models.Appointment.patient_id)
        .filter(models.Appointment.date == day)
        .order_by(models.Appointment.time.asc())
    )
    items = [{
        "id": ap.id,
        "clinic_id": ap.clinic_id,
        "doctor_id": ap.doctor_id,
        "patient": pa.full_name,
        "time": ap.time,
        "status": ap.status.value,
    } for ap, pa in q.all()]
    return {"ok": True, "date": day.isoformat(), "count": len(items), "items": items}
