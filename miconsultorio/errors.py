# miconsultorio/errors.py
from __future__ import annotations
from typing import Any, Dict, Optional


class ApiError(Exception):
    """
    Error de dominio con código HTTP. El handler global de main.py lo convierte en
    {"success": false, "message": ..., **extra}.
    """
    status_code: int = 500

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}
        if status_code is not None:
            self.status_code = status_code


class BadRequestError(ApiError):
    status_code = 400


class ForbiddenError(ApiError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


class ScheduleConflictError(ConflictError):
    """El doctor ya tiene una cita activa en ese día y hora."""

    def __init__(self, slot: str, conflicting_id: Optional[int] = None):
        super().__init__(
            f"El doctor ya tiene una cita a las {slot}",
            extra={"conflict": True, "slot": slot, "appointment_id": conflicting_id},
        )
        self.slot = slot
        self.conflicting_id = conflicting_id


class InvalidTransitionError(ConflictError):
    def __init__(self, current: str, target: str):
        super().__init__(
            f"Transición de suscripción no permitida: {current} → {target}",
            extra={"current": current, "target": target},
        )
        self.current = current
        self.target = target


class LimitExceededError(ForbiddenError):
    def __init__(self, decision):
        super().__init__(
            decision.message,
            extra={
                "limit_reached": True,
                "limit": {
                    "kind": decision.kind,
                    "current": decision.current,
                    "maximum": decision.limit,
                },
            },
        )
        self.decision = decision


class FeatureNotPermittedError(ForbiddenError):
    def __init__(self, decision):
        super().__init__(
            decision.message,
            extra={
                "feature_unavailable": True,
                "feature": decision.feature,
                "feature_status": decision.status.value,
                "current_package": decision.package,
            },
        )
        self.decision = decision


class SubscriptionExpiredError(ForbiddenError):
    def __init__(self, status: str, expires_at=None):
        super().__init__(
            "Tu suscripción ha vencido. Por favor, renueva tu plan para continuar.",
            extra={
                "subscription_expired": True,
                "status": status,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )
        self.status = status
        self.expires_at = expires_at
