from datetime import datetime, timedelta

import pytest

from miconsultorio import models, schemas
from miconsultorio.errors import (
    BadRequestError, InvalidTransitionError, LimitExceededError, SubscriptionExpiredError,
)
from miconsultorio.schemas import FeatureStatus
from miconsultorio.services import users as user_svc
from miconsultorio.services.entitlements import (
    EntitlementGate, expire_overdue_subscriptions, transition_subscription,
)
from miconsultorio.services.packages import start_subscription_cycle

from conftest import make_clinic, make_package, make_user

S = models.SubscriptionStatus


def _new_doctor(clinic_id, n):
    return schemas.UserCreate(name=f"Dr. {n}", email=f"dr{n}@test.mx", role=models.UserRole.doctor, clinic_id=clinic_id)


# ====== Límites ======
def test_limit_boundary_allows_up_to_the_maximum(db):
    make_package(db, "clinica", max_doctors=2)
    clinic = make_clinic(db, "clinica")
    gate = EntitlementGate(db)

    make_user(db, clinic, models.UserRole.doctor)
    decision = gate.check_limit(clinic.id, "doctor")
    assert decision.permitted and decision.current == 1 and decision.limit == 2
    assert "límite" not in decision.message

    user_svc.create_user(db, _new_doctor(clinic.id, 2))
    decision = gate.check_limit(clinic.id, "doctor")
    assert not decision.permitted
    assert decision.current == 2
    assert "límite de 2" in decision.message

    with pytest.raises(LimitExceededError) as exc:
        user_svc.create_user(db, _new_doctor(clinic.id, 3))
    assert exc.value.status_code == 403
    assert exc.value.extra == {"limit_reached": True, "limit": {"kind": "doctor", "current": 2, "maximum": 2}}
    assert gate.count_staff(clinic.id, models.UserRole.doctor) == 2


@pytest.mark.parametrize("existing", [0, 1000])
def test_unlimited_package_always_permits(db, existing):
    make_package(db, "ilimitado", max_doctors=None)
    clinic = make_clinic(db, "ilimitado")
    db.add_all([
        models.User(name=f"Dr {i}", email=f"bulk{i}@test.mx", role=models.UserRole.doctor, clinic_id=clinic.id)
        for i in range(existing)
    ])
    db.commit()

    decision = EntitlementGate(db).check_limit(clinic.id, "doctor")
    assert decision.permitted
    assert decision.current == existing
    assert decision.limit is None
    assert "ilimitado" in decision.message
    assert "None" not in decision.message


def test_inactive_staff_does_not_count(db):
    make_package(db)
    clinic = make_clinic(db)
    make_user(db, clinic, models.UserRole.receptionist, is_active=False)
    assert EntitlementGate(db).check_limit(clinic.id, "receptionist").permitted


def test_reactivating_user_over_the_limit_is_refused(db):
    make_package(db)
    clinic = make_clinic(db)
    make_user(db, clinic, models.UserRole.doctor)
    idle = make_user(db, clinic, models.UserRole.doctor, is_active=False)
    with pytest.raises(LimitExceededError):
        user_svc.set_user_active(db, idle.id, True)


def test_admins_are_not_limited(db):
    make_package(db, max_doctors=0, max_receptionists=0)
    clinic = make_clinic(db)
    user = user_svc.create_user(db, schemas.UserCreate(
        name="Dueña", email="owner@test.mx", role=models.UserRole.admin, clinic_id=clinic.id,
    ))
    assert user.role == models.UserRole.admin


def test_unknown_limit_kind_is_a_bad_request(db):
    make_package(db)
    clinic = make_clinic(db)
    with pytest.raises(BadRequestError):
        EntitlementGate(db).check_limit(clinic.id, "pacientes")


def test_single_clinic_is_always_permitted(db):
    make_package(db)
    clinic = make_clinic(db)
    decision = EntitlementGate(db).check_limit(clinic.id, "consultorio")
    assert decision.permitted and decision.current == 1


# ====== Funciones ======
def test_feature_follows_package_flag(db):
    package = make_package(db, integrations=False)
    clinic = make_clinic(db)
    gate = EntitlementGate(db)

    decision = gate.check_feature(clinic.id, "integraciones")
    assert not decision.permitted
    assert decision.status is FeatureStatus.disabled
    assert decision.package == "Basico"

    package.integrations = True
    db.commit()
    decision = gate.check_feature(clinic.id, "integraciones")
    assert decision.permitted
    assert decision.status is FeatureStatus.enabled


def test_unknown_feature_is_tagged_and_denied(db):
    make_package(db)
    clinic = make_clinic(db)
    decision = EntitlementGate(db).check_feature(clinic.id, "telemedicina")
    assert decision.status is FeatureStatus.unknown
    assert not decision.permitted


# ====== Suscripción ======
def test_overdue_subscription_expires_lazily(db):
    make_package(db)
    clinic = make_clinic(db, status=S.active, expires_in_days=-1)
    with pytest.raises(SubscriptionExpiredError) as exc:
        EntitlementGate(db).check_subscription_active(clinic.id)
    assert exc.value.extra["subscription_expired"] is True

    db.expire_all()
    stored = db.get(models.Clinic, clinic.id)
    assert stored.subscription_status == S.expired


def test_trial_within_its_period_permits(db):
    make_package(db)
    clinic = make_clinic(db, status=S.trial, expires_in_days=10)
    EntitlementGate(db).check_subscription_active(clinic.id)
    assert db.get(models.Clinic, clinic.id).subscription_status == S.trial


def test_overdue_trial_also_expires(db):
    make_package(db)
    clinic = make_clinic(db, status=S.trial, expires_in_days=-2)
    with pytest.raises(SubscriptionExpiredError):
        EntitlementGate(db).check_subscription_active(clinic.id)
    assert clinic.subscription_status == S.expired


@pytest.mark.parametrize("status", [S.expired, S.cancelled])
def test_inactive_statuses_are_refused(db, status):
    make_package(db)
    clinic = make_clinic(db, status=status, expires_in_days=30)
    with pytest.raises(SubscriptionExpiredError) as exc:
        EntitlementGate(db).check_subscription_active(clinic.id)
    assert exc.value.status == status.value


def test_sweep_is_idempotent(db):
    make_package(db)
    late_a = make_clinic(db, status=S.active, expires_in_days=-1, name="A")
    late_b = make_clinic(db, status=S.trial, expires_in_days=-3, name="B")
    on_time = make_clinic(db, status=S.active, expires_in_days=5, name="C")
    no_expiry = make_clinic(db, status=S.active, expires_in_days=None, name="D")

    assert expire_overdue_subscriptions(db) == 2
    assert expire_overdue_subscriptions(db) == 0

    db.expire_all()
    assert db.get(models.Clinic, late_a.id).subscription_status == S.expired
    assert db.get(models.Clinic, late_b.id).subscription_status == S.expired
    assert db.get(models.Clinic, on_time.id).subscription_status == S.active
    assert db.get(models.Clinic, no_expiry.id).subscription_status == S.active


def test_package_info_reports_usage(db):
    make_package(db, max_doctors=3, upload_documents=True)
    clinic = make_clinic(db)
    make_user(db, clinic, models.UserRole.doctor)
    info = EntitlementGate(db).package_info(clinic.id)
    assert info["usage"]["doctor"] == {"current": 1, "limit": 3, "available": 2}
    assert info["features"]["uploadDocumentos"] is True
    assert info["features"]["integraciones"] is False
    assert info["subscription"]["status"] == "active"


# ====== Máquina de estados ======
def test_cancelled_is_terminal_for_transitions(db):
    make_package(db)
    clinic = make_clinic(db, status=S.cancelled)
    with pytest.raises(InvalidTransitionError):
        transition_subscription(clinic, S.active)


def test_expired_can_be_renewed(db):
    make_package(db)
    clinic = make_clinic(db, status=S.expired)
    transition_subscription(clinic, S.active)
    assert clinic.subscription_status == S.active


def test_new_cycle_leaves_cancelled(db):
    make_package(db)
    make_package(db, "profesional")
    clinic = make_clinic(db, status=S.cancelled)
    started = datetime(2025, 1, 31, 12, 0)
    start_subscription_cycle(clinic, "profesional", models.BillingCycle.monthly, started_at=started)
    assert clinic.subscription_status == S.active
    assert clinic.package_name == "profesional"
    assert clinic.subscription_expires_at == datetime(2025, 2, 28, 12, 0)

    start_subscription_cycle(clinic, "profesional", models.BillingCycle.annual, started_at=started)
    assert clinic.subscription_expires_at == started + timedelta(days=365)
