from datetime import datetime, timedelta

from miconsultorio import models

from conftest import ADMIN_HEADERS, make_clinic, make_package, make_user, user_headers


def _booking(setup, day="2024-01-10", time="09:00"):
    return {
        "patient_id": setup["patient"].id,
        "doctor_id": setup["doctor"].id,
        "date": day,
        "time": time,
        "reason": "Consulta general",
    }


def test_end_to_end_limits_and_double_booking(client, setup):
    headers = user_headers(setup["admin"])
    clinic_id = setup["clinic"].id

    # plan básico: 1 doctor y ya lo tiene
    r = client.post("/users", headers=ADMIN_HEADERS, json={
        "name": "Dra. Segunda", "email": "segunda@test.mx", "role": "doctor", "clinic_id": clinic_id,
    })
    assert r.status_code == 403
    body = r.json()
    assert body["success"] is False
    assert body["limit_reached"] is True
    assert body["limit"] == {"kind": "doctor", "current": 1, "maximum": 1}

    r = client.post("/appointments", headers=headers, json=_booking(setup))
    assert r.status_code == 201, r.text
    first_id = r.json()["data"]["id"]

    r = client.post("/appointments", headers=headers, json=_booking(setup))
    assert r.status_code == 409
    assert r.json()["conflict"] is True
    assert r.json()["appointment_id"] == first_id
    assert r.json()["message"] == "El doctor ya tiene una cita a las 09:00 del 10/01/2024"

    r = client.patch(f"/appointments/{first_id}/cancel", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "cancelled"

    r = client.post("/appointments", headers=headers, json=_booking(setup))
    assert r.status_code == 201
    assert r.json()["data"]["id"] != first_id


def test_booking_accepts_iso_timestamp_for_date(client, setup):
    r = client.post("/appointments", headers=user_headers(setup["admin"]),
                    json=_booking(setup, day="2024-01-10T15:30:00"))
    assert r.status_code == 201
    assert r.json()["data"]["date"] == "2024-01-10"


def test_booking_with_expired_subscription_is_refused(client, db, setup):
    clinic = setup["clinic"]
    clinic.subscription_expires_at = datetime.utcnow() - timedelta(hours=1)
    db.commit()

    r = client.post("/appointments", headers=user_headers(setup["admin"]), json=_booking(setup))
    assert r.status_code == 403
    assert r.json()["subscription_expired"] is True
    assert r.json()["status"] == "expired"


def test_requests_without_user_are_unauthorized(client, setup):
    assert client.get("/appointments").status_code == 401
    assert client.get("/appointments", headers={"X-User-Id": "9999"}).status_code == 401


def test_admin_endpoints_require_token(client, setup):
    r = client.post("/packages/seed", headers={"X-Admin-Token": "otro"})
    assert r.status_code == 401


def test_list_appointments_is_paginated(client, setup):
    headers = user_headers(setup["admin"])
    for time in ("09:00", "09:30", "10:00"):
        assert client.post("/appointments", headers=headers, json=_booking(setup, time=time)).status_code == 201

    r = client.get("/appointments", headers=headers, params={"page": 1, "limit": 2})
    body = r.json()
    assert [a["time"] for a in body["data"]] == ["09:00", "09:30"]
    assert body["pagination"]["total"] == 3
    assert body["pagination"]["has_next_page"] is True


def test_slots_endpoint(client, db, setup):
    clinic = setup["clinic"]
    clinic.open_hour, clinic.close_hour = "09:00", "10:00"
    db.commit()
    day = setup["day"].isoformat()
    headers = user_headers(setup["admin"])
    client.post("/appointments", headers=headers, json=_booking(setup, day=day, time="09:00"))

    r = client.get("/appointments/slots", headers=headers, params={"doctor_id": setup["doctor"].id, "date": day})
    assert r.status_code == 200
    assert r.json()["slots"] == ["09:30"]


def test_ai_endpoint_is_feature_gated(client, setup):
    r = client.post("/ai/suggest-treatment", headers=user_headers(setup["admin"]), json={"diagnosis": "Migraña"})
    assert r.status_code == 403
    body = r.json()
    assert body["feature_unavailable"] is True
    assert body["feature"] == "integraciones"
    assert body["feature_status"] == "disabled"
    assert body["current_package"] == "Basico"


def test_check_feature_endpoint_reports_unknown(client, setup):
    r = client.get("/packages/check-feature/telepatia", headers=user_headers(setup["admin"]))
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "unknown"
    assert r.json()["data"]["permitted"] is False


def test_my_package_endpoint(client, setup):
    r = client.get("/packages/mine", headers=user_headers(setup["admin"]))
    data = r.json()["data"]
    assert data["package"]["name"] == "basico"
    assert data["usage"]["doctor"]["current"] == 1


def test_seed_and_list_packages(client, db):
    r = client.post("/packages/seed", headers=ADMIN_HEADERS)
    assert r.status_code == 201
    assert client.post("/packages/seed", headers=ADMIN_HEADERS).status_code == 409
    names = [p["name"] for p in client.get("/packages").json()["data"]]
    assert names == ["basico", "profesional", "clinica"]


def test_create_clinic_starts_in_trial(client, db):
    make_package(db)
    r = client.post("/clinics", headers=ADMIN_HEADERS, json={"name": "Clínica Norte"})
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["subscription_status"] == "trial"
    assert data["package_name"] == "basico"


def test_delete_appointment_cascades_payments(client, db, setup):
    headers = user_headers(setup["admin"])
    appt_id = client.post("/appointments", headers=headers, json=_booking(setup)).json()["data"]["id"]
    r = client.post("/payments", headers=headers, json={"appointment_id": appt_id, "amount": 500, "method": "cash"})
    assert r.status_code == 201

    assert client.delete(f"/appointments/{appt_id}", headers=headers).status_code == 200
    assert db.query(models.Payment).count() == 0


def test_other_clinic_cannot_see_appointment(client, db, setup):
    headers = user_headers(setup["admin"])
    appt_id = client.post("/appointments", headers=headers, json=_booking(setup)).json()["data"]["id"]

    other = make_clinic(db, name="Otra")
    intruder = make_user(db, other, models.UserRole.admin)
    r = client.get(f"/appointments/{appt_id}", headers=user_headers(intruder))
    assert r.status_code == 404


def test_webhook_without_secret_is_rejected(client, db):
    r = client.post("/stripe/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})
    assert r.status_code == 400


def test_admin_expire_sweep(client, db):
    make_package(db)
    make_clinic(db, status=models.SubscriptionStatus.active, expires_in_days=-1)
    r = client.post("/admin/subscriptions/expire", headers=ADMIN_HEADERS)
    assert r.json() == {"ok": True, "expired": 1}
