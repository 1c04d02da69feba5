# miconsultorio/services/appointments.py
from __future__ import annotations
import calendar
import logging
from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import BadRequestError, NotFoundError, ScheduleConflictError
from .scheduling import SchedulerGuard, describe_slot, local_now, normalize_time

logger = logging.getLogger(__name__)

# Campos que mueven la cita en la agenda
SCHEDULING_FIELDS = ("doctor_id", "date", "time")


def _commit_slot(db: Session, appt: models.Appointment) -> None:
    """
    Confirma la escritura. Si dos peticiones pasaron el guard a la vez, el índice
    único parcial rechaza la segunda y aquí se traduce a conflicto de agenda.
    """
    slot = describe_slot(appt.date, appt.time)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if "uq_appointments_doctor_slot" in str(e.orig) or "appointments.doctor_id" in str(e.orig):
            logger.warning("Doble reserva detectada por la BD: doctor=%s slot=%s", appt.doctor_id, slot)
            raise ScheduleConflictError(slot)
        raise


def get_appointment(db: Session, appointment_id: int, clinic_id: Optional[int] = None) -> models.Appointment:
    appt = db.get(models.Appointment, appointment_id)
    if appt is None or (clinic_id is not None and appt.clinic_id != clinic_id):
        raise NotFoundError("Cita no encontrada")
    return appt


def list_appointments(
    db: Session,
    clinic_id: int,
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    status: Optional[models.AppointmentStatus] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = 1,
    limit: int = 10,
):
    q = db.query(models.Appointment).filter(models.Appointment.clinic_id == clinic_id)
    if doctor_id:
        q = q.filter(models.Appointment.doctor_id == doctor_id)
    if patient_id:
        q = q.filter(models.Appointment.patient_id == patient_id)
    if status:
        q = q.filter(models.Appointment.status == status)
    if date_from:
        q = q.filter(models.Appointment.date >= date_from)
    if date_to:
        q = q.filter(models.Appointment.date <= date_to)

    total = q.count()
    items = (
        q.order_by(models.Appointment.date.asc(), models.Appointment.time.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


def create_appointment(db: Session, clinic_id: int, data: schemas.AppointmentCreate) -> models.Appointment:
    clinic = db.get(models.Clinic, clinic_id)
    if clinic is None:
        raise NotFoundError("Consultorio no encontrado")

    patient = db.get(models.Patient, data.patient_id)
    if patient is None or patient.clinic_id != clinic_id:
        raise NotFoundError("Paciente no encontrado")

    doctor = db.get(models.User, data.doctor_id)
    if doctor is None or doctor.clinic_id != clinic_id:
        raise NotFoundError("Doctor no encontrado")
    if doctor.role != models.UserRole.doctor:
        raise BadRequestError("El usuario seleccionado no es doctor")

    time = normalize_time(data.time)
    if data.status != models.AppointmentStatus.cancelled:
        SchedulerGuard(db).ensure_slot_free(doctor.id, data.date, time)

    appt = models.Appointment(
        patient_id=patient.id,
        doctor_id=doctor.id,
        clinic_id=clinic_id,
        date=data.date,
        time=time,
        reason=data.reason,
        diagnosis=data.diagnosis,
        treatment=data.treatment,
        notes=data.notes,
        cost=data.cost,
        status=data.status,
    )
    db.add(appt)
    _commit_slot(db, appt)
    db.refresh(appt)
    logger.info("Cita creada id=%s doctor=%s %s %s", appt.id, appt.doctor_id, appt.date.isoformat(), appt.time)
    return appt


def update_appointment(
    db: Session, appointment_id: int, data: schemas.AppointmentUpdate, clinic_id: Optional[int] = None
) -> models.Appointment:
    appt = get_appointment(db, appointment_id, clinic_id)
    changes = data.model_dump(exclude_unset=True)

    if changes.get("time"):
        changes["time"] = normalize_time(changes["time"])

    if "doctor_id" in changes:
        doctor = db.get(models.User, changes["doctor_id"])
        if doctor is None or doctor.clinic_id != appt.clinic_id:
            raise NotFoundError("Doctor no encontrado")
        if doctor.role != models.UserRole.doctor:
            raise BadRequestError("El usuario seleccionado no es doctor")

    if "patient_id" in changes:
        patient = db.get(models.Patient, changes["patient_id"])
        if patient is None or patient.clinic_id != appt.clinic_id:
            raise NotFoundError("Paciente no encontrado")

    target_status = changes.get("status") or appt.status
    moves_slot = any(changes.get(f) is not None for f in SCHEDULING_FIELDS)
    reactivates = (
        appt.status == models.AppointmentStatus.cancelled
        and target_status != models.AppointmentStatus.cancelled
    )

    # Sólo se valida la agenda si la cita se mueve o vuelve a ocupar su slot
    if (moves_slot or reactivates) and target_status != models.AppointmentStatus.cancelled:
        SchedulerGuard(db).ensure_slot_free(
            changes.get("doctor_id") or appt.doctor_id,
            changes.get("date") or appt.date,
            changes.get("time") or appt.time,
            exclude_appointment_id=appt.id,
        )

    for field, value in changes.items():
        if value is None and field in SCHEDULING_FIELDS + ("status", "patient_id"):
            continue
        setattr(appt, field, value)

    _commit_slot(db, appt)
    db.refresh(appt)
    return appt


def cancel_appointment(db: Session, appointment_id: int, clinic_id: Optional[int] = None) -> models.Appointment:
    appt = get_appointment(db, appointment_id, clinic_id)
    appt.status = models.AppointmentStatus.cancelled
    db.commit()
    db.refresh(appt)
    logger.info("Cita cancelada id=%s", appt.id)
    return appt


def delete_appointment(db: Session, appointment_id: int, clinic_id: Optional[int] = None) -> None:
    appt = get_appointment(db, appointment_id, clinic_id)
    # Los pagos se van con la cita (cascade)
    db.delete(appt)
    db.commit()
    logger.info("Cita eliminada id=%s", appointment_id)


def calendar_month(
    db: Session,
    clinic_id: int,
    doctor_id: Optional[int] = None,
    month: Optional[int] = None,
    year: Optional[int] = None,
):
    today = local_now().date()
    month = month or today.month
    year = year or today.year
    if not 1 <= month <= 12:
        raise BadRequestError("Mes inválido")

    start = date(year, month, 1)
    end = date(year, month, calendar.monthrange(year, month)[1])

    q = (
        db.query(models.Appointment)
        .filter(models.Appointment.clinic_id == clinic_id)
        .filter(models.Appointment.date >= start)
        .filter(models.Appointment.date <= end)
    )
    if doctor_id:
        q = q.filter(models.Appointment.doctor_id == doctor_id)
    return q.order_by(models.Appointment.date.asc(), models.Appointment.time.asc()).all()
