from datetime import datetime

import pytest

from miconsultorio import models, schemas
from miconsultorio.errors import BadRequestError, ConflictError, NotFoundError
from miconsultorio.services import packages as svc
from miconsultorio.services.entitlements import EntitlementGate

from conftest import make_clinic, make_package


def test_seed_creates_default_packages_once(db):
    created = svc.seed_default_packages(db)
    assert [p.name for p in created] == ["basico", "profesional", "clinica"]

    clinica = svc.get_package_by_name(db, "clinica")
    assert clinica.max_doctors == 2
    assert clinica.features()["integraciones"] is True
    assert svc.get_package_by_name(db, "basico").features()["uploadDocumentos"] is False

    with pytest.raises(ConflictError):
        svc.seed_default_packages(db)


def test_create_package_rejects_duplicate_names(db):
    data = schemas.PackageIn(name=" Premium ", display_name="Premium", monthly_price=10, annual_price=100,
                             features={"integraciones": True})
    package = svc.create_package(db, data)
    assert package.name == "premium"
    assert package.integrations is True
    with pytest.raises(ConflictError):
        svc.create_package(db, data)


def test_unknown_feature_name_is_rejected_on_create(db):
    data = schemas.PackageIn(name="raro", display_name="Raro", monthly_price=0, annual_price=0,
                             features={"teletransporte": True})
    with pytest.raises(BadRequestError):
        svc.create_package(db, data)


def test_package_in_use_cannot_be_deleted(db):
    package = make_package(db)
    make_clinic(db)
    with pytest.raises(ConflictError):
        svc.delete_package(db, package.id)


def test_update_package_toggles_features(db):
    package = make_package(db)
    updated = svc.update_package(db, package.id, schemas.PackageUpdate(features={"reportesAvanzados": True}, max_doctors=5))
    assert updated.advanced_reports is True
    assert updated.max_doctors == 5


def test_change_package_starts_active_cycle(db):
    make_package(db)
    make_package(db, "profesional")
    clinic = make_clinic(db, status=models.SubscriptionStatus.expired)
    clinic = svc.change_package(db, clinic.id, "profesional", models.BillingCycle.annual)
    assert clinic.package_name == "profesional"
    assert clinic.subscription_status == models.SubscriptionStatus.active
    assert clinic.billing_cycle == models.BillingCycle.annual
    assert clinic.subscription_expires_at.year == clinic.subscription_started_at.year + 1


def test_change_to_missing_package_is_not_found(db):
    make_package(db)
    clinic = make_clinic(db)
    with pytest.raises(NotFoundError):
        svc.change_package(db, clinic.id, "platino")


def test_admin_update_skips_transition_rules(db):
    make_package(db)
    clinic = make_clinic(db, status=models.SubscriptionStatus.cancelled)
    expires = datetime(2030, 1, 1)
    clinic = svc.admin_update_clinic_package(db, clinic.id, schemas.AdminClinicPackageUpdate(
        package="basico", status=models.SubscriptionStatus.active, expires_at=expires,
    ))
    assert clinic.subscription_status == models.SubscriptionStatus.active
    assert clinic.subscription_expires_at == expires


def test_admin_clinic_listing_includes_usage(db):
    make_package(db)
    make_clinic(db)
    rows = svc.list_clinics_with_package(db)
    assert rows[0]["package"] == "Basico"
    assert rows[0]["usage"] == {"doctors": 0, "receptionists": 0}


def test_package_created_without_limit_is_unlimited(db):
    data = schemas.PackageIn(name="ilimitado", display_name="Ilimitado", monthly_price=0, annual_price=0,
                             max_doctors=None, max_receptionists=None)
    package = svc.create_package(db, data)
    db.expire_all()
    stored = db.get(models.Package, package.id)
    assert stored.max_doctors is None
    assert stored.max_receptionists is None
    assert stored.max_clinics == 1

    clinic = make_clinic(db, "ilimitado")
    decision = EntitlementGate(db).check_limit(clinic.id, "doctor")
    assert decision.permitted
    assert decision.limit is None
