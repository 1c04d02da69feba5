# miconsultorio/services/billing.py
from __future__ import annotations
import logging
from datetime import datetime
from typing import Optional

import stripe
from sqlalchemy.orm import Session

from ..config import settings
from .. import models
from ..errors import BadRequestError, InvalidTransitionError, NotFoundError
from .entitlements import transition_subscription
from .packages import start_subscription_cycle

logger = logging.getLogger(__name__)

S = models.SubscriptionStatus

if settings.STRIPE_SECRET_KEY:
    stripe.api_key = settings.STRIPE_SECRET_KEY

# Estado de Stripe → estado local
STRIPE_STATUS_MAP = {
    "active": S.active,
    "past_due": S.expired,
    "unpaid": S.expired,
    "canceled": S.cancelled,
    "trialing": S.trial,
}


def _require_stripe() -> None:
    if not settings.STRIPE_SECRET_KEY:
        raise BadRequestError("Stripe no está configurado. Configure STRIPE_SECRET_KEY.")


def _ts(value) -> Optional[datetime]:
    return datetime.utcfromtimestamp(int(value)) if value else None


def _period(subscription) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    current_period_* viene en la suscripción o, en versiones nuevas del API,
    en el primer item.
    """
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if not end:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            start = items[0].get("current_period_start")
            end = items[0].get("current_period_end")
    return _ts(start), _ts(end)


def _clinic_from_metadata(db: Session, obj) -> Optional[models.Clinic]:
    meta = obj.get("metadata") or {}
    clinic_id = meta.get("clinic_id")
    if not clinic_id:
        logger.error("[Stripe] Evento sin clinic_id en metadata: %s", obj.get("id"))
        return None
    clinic = db.get(models.Clinic, int(clinic_id))
    if clinic is None:
        logger.error("[Stripe] Consultorio no encontrado: %s", clinic_id)
    return clinic


def _apply_status(db: Session, clinic: models.Clinic, target: models.SubscriptionStatus) -> bool:
    try:
        transition_subscription(clinic, target)
    except InvalidTransitionError as e:
        logger.warning("[Stripe] %s (clinic=%s); evento ignorado", e.message, clinic.id)
        db.rollback()
        return False
    return True


# ====== Checkout / portal ======
def get_or_create_customer(db: Session, clinic: models.Clinic) -> str:
    _require_stripe()
    if clinic.stripe_customer_id:
        try:
            stripe.Customer.retrieve(clinic.stripe_customer_id)
            return clinic.stripe_customer_id
        except stripe.InvalidRequestError as e:
            logger.warning("[Stripe] Customer %s no existe, se crea otro: %s", clinic.stripe_customer_id, e)

    customer = stripe.Customer.create(
        email=clinic.email,
        name=clinic.name,
        metadata={"clinic_id": str(clinic.id)},
    )
    clinic.stripe_customer_id = customer["id"]
    db.commit()
    return customer["id"]


def create_checkout_session(
    db: Session, clinic_id: int, package_name: str, billing_cycle: models.BillingCycle
) -> dict:
    _require_stripe()
    clinic = db.get(models.Clinic, clinic_id)
    if clinic is None:
        raise NotFoundError("Consultorio no encontrado")
    package = db.query(models.Package).filter(models.Package.name == package_name).first()
    if package is None:
        raise NotFoundError("Paquete no encontrado")

    price_id = package.stripe_price_monthly if billing_cycle == models.BillingCycle.monthly else package.stripe_price_annual
    if not price_id:
        raise BadRequestError(f"Price ID no configurado para {package_name} {billing_cycle.value}")

    customer_id = get_or_create_customer(db, clinic)
    frontend = settings.FRONTEND_URL.rstrip("/")
    metadata = {"clinic_id": str(clinic.id), "package": package.name, "billing_cycle": billing_cycle.value}

    session = stripe.checkout.Session.create(
        customer=customer_id,
        mode="subscription",
        payment_method_types=["card"],
        line_items=[{"price": price_id, "quantity": 1}],
        success_url=f"{frontend}/configuracion/paquetes?success=true&session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{frontend}/configuracion/paquetes?canceled=true",
        metadata=metadata,
        subscription_data={"metadata": {"clinic_id": str(clinic.id), "package": package.name}},
    )
    return {"session_id": session["id"], "url": session["url"]}


def create_customer_portal(db: Session, clinic_id: int) -> dict:
    _require_stripe()
    clinic = db.get(models.Clinic, clinic_id)
    if clinic is None:
        raise NotFoundError("Consultorio no encontrado")
    if not clinic.stripe_customer_id:
        raise BadRequestError("El consultorio no tiene customer de Stripe")
    session = stripe.billing_portal.Session.create(
        customer=clinic.stripe_customer_id,
        return_url=f"{settings.FRONTEND_URL.rstrip('/')}/configuracion/paquetes",
    )
    return {"url": session["url"]}


def cancel_subscription(db: Session, clinic_id: int) -> dict:
    """Cancela al final del periodo; el webhook `deleted` marca `cancelled`."""
    _require_stripe()
    clinic = db.get(models.Clinic, clinic_id)
    if clinic is None:
        raise NotFoundError("Consultorio no encontrado")
    if not clinic.stripe_subscription_id:
        raise BadRequestError("El consultorio no tiene suscripción activa")
    sub = stripe.Subscription.modify(clinic.stripe_subscription_id, cancel_at_period_end=True)
    return {"subscription_id": sub["id"], "cancel_at_period_end": bool(sub.get("cancel_at_period_end"))}


# ====== Webhook ======
def construct_event(payload: bytes, signature: Optional[str]):
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise BadRequestError("Stripe webhook no configurado (falta STRIPE_WEBHOOK_SECRET)")
    if not signature:
        raise BadRequestError("Falta la firma de Stripe")
    try:
        return stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("[Stripe] Firma inválida: %r", e)
        raise BadRequestError("Firma de Stripe inválida")


def handle_checkout_completed(db: Session, session) -> None:
    clinic = _clinic_from_metadata(db, session)
    if clinic is None:
        return
    meta = session.get("metadata") or {}
    subscription_id = session.get("subscription")
    subscription = stripe.Subscription.retrieve(subscription_id)
    started_at, expires_at = _period(subscription)

    cycle = models.BillingCycle(meta.get("billing_cycle") or "monthly")
    start_subscription_cycle(
        clinic,
        meta.get("package") or clinic.package_name,
        cycle,
        started_at=started_at,
        expires_at=expires_at,
    )
    clinic.stripe_subscription_id = subscription_id
    db.commit()
    logger.info("[Stripe] Suscripción activada clinic=%s paquete=%s vence=%s", clinic.id, clinic.package_name, expires_at)


def handle_subscription_updated(db: Session, subscription) -> None:
    clinic = _clinic_from_metadata(db, subscription)
    if clinic is None:
        return
    target = STRIPE_STATUS_MAP.get(subscription.get("status"))
    if target is None:
        logger.info("[Stripe] Estado %r sin mapeo; clinic=%s sin cambios", subscription.get("status"), clinic.id)
        return
    if not _apply_status(db, clinic, target):
        return
    _, expires_at = _period(subscription)
    if expires_at:
        clinic.subscription_expires_at = expires_at
    db.commit()
    logger.info("[Stripe] Estado actualizado clinic=%s estado=%s", clinic.id, target.value)


def handle_subscription_deleted(db: Session, subscription) -> None:
    clinic = _clinic_from_metadata(db, subscription)
    if clinic is None:
        return
    if not _apply_status(db, clinic, S.cancelled):
        return
    clinic.stripe_subscription_id = None
    db.commit()
    logger.info("[Stripe] Suscripción cancelada clinic=%s", clinic.id)


def _invoice_clinic(db: Session, invoice):
    subscription_id = invoice.get("subscription")
    if not subscription_id:
        return None, None
    subscription = stripe.Subscription.retrieve(subscription_id)
    return _clinic_from_metadata(db, subscription), subscription


def handle_payment_succeeded(db: Session, invoice) -> None:
    clinic, subscription = _invoice_clinic(db, invoice)
    if clinic is None:
        return
    if not _apply_status(db, clinic, S.active):
        return
    _, expires_at = _period(subscription)
    if expires_at:
        clinic.subscription_expires_at = expires_at
    db.commit()
    logger.info("[Stripe] Pago exitoso clinic=%s vence=%s", clinic.id, clinic.subscription_expires_at)


def handle_payment_failed(db: Session, invoice) -> None:
    clinic, _ = _invoice_clinic(db, invoice)
    if clinic is None:
        return
    if not _apply_status(db, clinic, S.expired):
        return
    db.commit()
    logger.info("[Stripe] Pago fallido, suscripción vencida clinic=%s", clinic.id)


_HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_updated,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_payment_succeeded,
    "invoice.payment_failed": handle_payment_failed,
}


def process_webhook_event(db: Session, event) -> bool:
    """Despacha el evento. Devuelve False si el tipo no se maneja."""
    event_type = event.get("type")
    logger.info("[Stripe] Evento recibido: %s", event_type)
    handler = _HANDLERS.get(event_type)
    if handler is None:
        logger.info("[Stripe] Evento no manejado: %s", event_type)
        return False
    handler(db, event["data"]["object"])
    return True
