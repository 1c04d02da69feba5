# miconsultorio/services/scheduling.py
from __future__ import annotations
import logging
from datetime import datetime, date, timedelta
from typing import List, Optional, Union

import pytz
from dateutil import parser as dtparser
from sqlalchemy.orm import Session

from ..config import settings
from .. import models
from ..errors import BadRequestError, ScheduleConflictError

logger = logging.getLogger(__name__)

SLOT_MINUTES = settings.SLOT_MINUTES

DayLike = Union[date, datetime, str]


# ====== Utilidades de tiempo ======
def normalize_day(value: DayLike) -> date:
    """
    Lleva cualquier fecha (date, datetime o ISO string) al día calendario.
    Dos timestamps del mismo día local son el mismo día, sin importar la hora.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return dtparser.parse(str(value)).date()
    except (ValueError, OverflowError):
        raise BadRequestError("Formato de fecha inválido. Usa YYYY-MM-DD.")


def normalize_time(value: str) -> str:
    """Acepta "9:00" o "09:00" y devuelve HH:MM."""
    try:
        h, m = (value or "").strip().split(":")
        h, m = int(h), int(m)
    except ValueError:
        raise BadRequestError("Formato de hora inválido (HH:MM).")
    if not (0 <= h <= 23 and 0 <= m <= 59):
        raise BadRequestError("Formato de hora inválido (HH:MM).")
    return f"{h:02d}:{m:02d}"


def local_now() -> datetime:
    """Hora actual naive en la zona del consultorio (TIMEZONE)."""
    return datetime.now(pytz.timezone(settings.TIMEZONE)).replace(tzinfo=None)


def describe_slot(day: date, time: str) -> str:
    return f"{time} del {day.strftime('%d/%m/%Y')}"


def _to_minutes(hhmm: str) -> int:
    h, m = hhmm.split(":")
    return int(h) * 60 + int(m)


# ====== Guard de agenda ======
class SchedulerGuard:
    """
    Decide si un doctor puede ocupar un (día, hora). Sin estado: todo se
    recalcula desde la BD en cada llamada.
    """

    def __init__(self, db: Session):
        self.db = db

    def check_conflict(
        self,
        doctor_id: int,
        day: DayLike,
        time: str,
        exclude_appointment_id: Optional[int] = None,
    ) -> Optional[models.Appointment]:
        day_start = normalize_day(day)
        next_day = day_start + timedelta(days=1)

        q = (
            self.db.query(models.Appointment)
            .filter(models.Appointment.doctor_id == doctor_id)
            .filter(models.Appointment.date >= day_start)
            .filter(models.Appointment.date < next_day)
            .filter(models.Appointment.time == time)
            .filter(models.Appointment.status.notin_([models.AppointmentStatus.cancelled]))
        )
        if exclude_appointment_id is not None:
            q = q.filter(models.Appointment.id != exclude_appointment_id)

        conflict = q.first()
        if conflict is not None:
            logger.debug(
                "Conflicto de agenda doctor=%s slot=%s %s con cita=%s",
                doctor_id, day_start.isoformat(), time, conflict.id,
            )
        return conflict

    def ensure_slot_free(
        self,
        doctor_id: int,
        day: DayLike,
        time: str,
        exclude_appointment_id: Optional[int] = None,
    ) -> None:
        conflict = self.check_conflict(doctor_id, day, time, exclude_appointment_id)
        if conflict is not None:
            raise ScheduleConflictError(describe_slot(conflict.date, conflict.time), conflict.id)


# ====== Slots disponibles ======
def available_slots(
    db: Session, doctor_id: int, day: DayLike, now: Optional[datetime] = None
) -> List[str]:
    """
    Genera horas HH:MM cada SLOT_MINUTES entre la apertura y el cierre del
    consultorio del doctor y elimina las que ya tiene ocupadas ese día.
    Si el día es hoy (hora local), tampoco ofrece horas que ya pasaron.
    """
    now = now or local_now()
    day = normalize_day(day)
    doctor = db.get(models.User, doctor_id)
    if doctor is None:
        return []

    clinic = doctor.clinic
    open_hour = (clinic.open_hour if clinic else None) or settings.CLINIC_OPEN_HOUR
    close_hour = (clinic.close_hour if clinic else None) or settings.CLINIC_CLOSE_HOUR

    taken = {
        t for (t,) in db.query(models.Appointment.time)
        .filter(models.Appointment.doctor_id == doctor_id)
        .filter(models.Appointment.date == day)
        .filter(models.Appointment.status != models.AppointmentStatus.cancelled)
        .all()
    }

    # hoy: sólo horas posteriores a la actual
    earliest = now.hour * 60 + now.minute if day == now.date() else -1

    slots = []
    cur = _to_minutes(open_hour)
    end = _to_minutes(close_hour)
    while cur + SLOT_MINUTES <= end:
        hhmm = f"{cur // 60:02d}:{cur % 60:02d}"
        if hhmm not in taken and cur > earliest:
            slots.append(hhmm)
        cur += SLOT_MINUTES

    logger.debug("Slots doctor=%s dia=%s libres=%s ocupados=%s", doctor_id, day.isoformat(), len(slots), sorted(taken))
    return slots
