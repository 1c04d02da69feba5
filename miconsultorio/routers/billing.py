# miconsultorio/routers/billing.py
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from ..database import get_db
from .. import schemas
from ..deps import get_clinic_id, ok
from ..services import billing

router = APIRouter(prefix="/stripe", tags=["billing"])


@router.post("/checkout")
def checkout(req: schemas.CheckoutRequest, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(billing.create_checkout_session(db, clinic_id, req.package, req.billing_cycle))


@router.post("/portal")
def portal(clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(billing.create_customer_portal(db, clinic_id))


@router.post("/cancel")
def cancel(clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    data = billing.cancel_subscription(db, clinic_id)
    return ok(data, "La suscripción se cancelará al final del periodo actual")


# ──────────────────────────────────────────────────────────────────────────────
# Webhook: Stripe necesita el cuerpo crudo para validar la firma
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/webhook")
async def webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    payload = await request.body()
    event = billing.construct_event(payload, stripe_signature)
    handled = billing.process_webhook_event(db, event)
    return {"received": True, "handled": handled}
