from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from .. import models, schemas
from ..deps import get_clinic_id, ok, paginated, require_active_subscription
from ..errors import NotFoundError
from ..services import appointments as svc
from ..services.scheduling import available_slots, normalize_day

router = APIRouter(prefix="/appointments", tags=["appointments"])


def _out(appt: models.Appointment) -> schemas.AppointmentOut:
    return schemas.AppointmentOut.model_validate(appt)


@router.get("")
def list_appointments(
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    status: Optional[models.AppointmentStatus] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    clinic_id: int = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    items, total = svc.list_appointments(
        db, clinic_id,
        doctor_id=doctor_id, patient_id=patient_id, status=status,
        date_from=date_from, date_to=date_to, page=page, limit=limit,
    )
    return paginated([_out(a) for a in items], page, limit, total)


@router.get("/calendar")
def calendar_view(
    month: Optional[int] = Query(default=None, ge=1, le=12),
    year: Optional[int] = None,
    doctor_id: Optional[int] = None,
    clinic_id: int = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    items = svc.calendar_month(db, clinic_id, doctor_id=doctor_id, month=month, year=year)
    return ok([_out(a) for a in items])


@router.get("/slots", response_model=schemas.SlotsResponse)
def get_slots(
    doctor_id: int,
    date: str = Query(..., description="YYYY-MM-DD"),
    clinic_id: int = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    day = normalize_day(date)
    doctor = db.get(models.User, doctor_id)
    if doctor is None or doctor.clinic_id != clinic_id:
        raise NotFoundError("Doctor no encontrado")
    return schemas.SlotsResponse(doctor_id=doctor_id, date=day, slots=available_slots(db, doctor_id, day))


@router.get("/{appointment_id}")
def get_appointment(appointment_id: int, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(_out(svc.get_appointment(db, appointment_id, clinic_id)))


@router.post("", status_code=201)
def create_appointment(
    req: schemas.AppointmentCreate,
    clinic_id: int = Depends(require_active_subscription),
    db: Session = Depends(get_db),
):
    appt = svc.create_appointment(db, clinic_id, req)
    return ok(_out(appt), "Cita creada exitosamente")


@router.put("/{appointment_id}")
def update_appointment(
    appointment_id: int,
    req: schemas.AppointmentUpdate,
    clinic_id: int = Depends(require_active_subscription),
    db: Session = Depends(get_db),
):
    appt = svc.update_appointment(db, appointment_id, req, clinic_id)
    return ok(_out(appt), "Cita actualizada exitosamente")


@router.patch("/{appointment_id}/cancel")
def cancel_appointment(appointment_id: int, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    appt = svc.cancel_appointment(db, appointment_id, clinic_id)
    return ok(_out(appt), "Cita cancelada exitosamente")


@router.delete("/{appointment_id}")
def delete_appointment(appointment_id: int, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    svc.delete_appointment(db, appointment_id, clinic_id)
    return ok(message="Cita eliminada exitosamente")
