# miconsultorio/services/payments.py
from __future__ import annotations
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import NotFoundError
from .appointments import get_appointment


def create_payment(db: Session, clinic_id: int, data: schemas.PaymentCreate) -> models.Payment:
    appt = get_appointment(db, data.appointment_id, clinic_id)
    payment = models.Payment(
        appointment_id=appt.id,
        clinic_id=appt.clinic_id,
        amount=data.amount,
        method=data.method,
        status=data.status,
        paid_at=data.paid_at or datetime.utcnow(),
        comments=data.comments,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    return payment


def get_payment(db: Session, payment_id: int, clinic_id: int) -> models.Payment:
    payment = db.get(models.Payment, payment_id)
    if payment is None or payment.clinic_id != clinic_id:
        raise NotFoundError("Pago no encontrado")
    return payment


def list_payments(
    db: Session,
    clinic_id: int,
    appointment_id: Optional[int] = None,
    status: Optional[models.PaymentStatus] = None,
    page: int = 1,
    limit: int = 10,
):
    q = db.query(models.Payment).filter(models.Payment.clinic_id == clinic_id)
    if appointment_id:
        q = q.filter(models.Payment.appointment_id == appointment_id)
    if status:
        q = q.filter(models.Payment.status == status)
    total = q.count()
    items = q.order_by(models.Payment.paid_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return items, total


def update_payment(db: Session, payment_id: int, clinic_id: int, data: schemas.PaymentUpdate) -> models.Payment:
    payment = get_payment(db, payment_id, clinic_id)
    for field, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(payment, field, value)
    db.commit()
    db.refresh(payment)
    return payment


def delete_payment(db: Session, payment_id: int, clinic_id: int) -> None:
    payment = get_payment(db, payment_id, clinic_id)
    db.delete(payment)
    db.commit()
