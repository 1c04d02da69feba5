from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from .. import models, schemas
from ..deps import get_clinic_id, ok, paginated
from ..services import payments as svc

router = APIRouter(prefix="/payments", tags=["payments"])


def _out(p: models.Payment) -> schemas.PaymentOut:
    return schemas.PaymentOut.model_validate(p)


@router.get("")
def list_payments(
    appointment_id: Optional[int] = None,
    status: Optional[models.PaymentStatus] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    clinic_id: int = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    items, total = svc.list_payments(db, clinic_id, appointment_id=appointment_id, status=status, page=page, limit=limit)
    return paginated([_out(p) for p in items], page, limit, total)


@router.get("/{payment_id}")
def get_payment(payment_id: int, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(_out(svc.get_payment(db, payment_id, clinic_id)))


@router.post("", status_code=201)
def create_payment(req: schemas.PaymentCreate, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(_out(svc.create_payment(db, clinic_id, req)), "Pago registrado exitosamente")


@router.put("/{payment_id}")
def update_payment(
    payment_id: int,
    req: schemas.PaymentUpdate,
    clinic_id: int = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    return ok(_out(svc.update_payment(db, payment_id, clinic_id, req)), "Pago actualizado exitosamente")


@router.delete("/{payment_id}")
def delete_payment(payment_id: int, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    svc.delete_payment(db, payment_id, clinic_id)
    return ok(message="Pago eliminado exitosamente")
