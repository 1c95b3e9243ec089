import uuid

from .conftest import create_patient


def _order(patient_id, **overrides):
    payload = {
        "patient_id": str(patient_id),
        "days": 7,
        "risk_level": "standard",
        "start_date": "2024-01-01",
        "prescriber_id": "dr-lee",
    }
    payload.update(overrides)
    return payload


def test_create_and_list_orders(client, db):
    patient = create_patient(db, first_name="Morgan", last_name="Hale")
    resp = client.post("/api/takehome/orders", json=_order(patient.id))
    assert resp.status_code == 201
    order = resp.json()
    assert order["status"] == "pending"
    assert order["end_date"] == "2024-01-07"
    assert order["patient_name"] == "Morgan Hale"

    listed = client.get("/api/takehome/orders").json()
    assert [o["id"] for o in listed] == [order["id"]]


def test_order_days_capped_by_risk_level(client, db):
    patient = create_patient(db)
    resp = client.post("/api/takehome/orders", json=_order(patient.id, days=5, risk_level="high"))
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]
    assert len(body["reasons"]) == 1
    assert "at most 3" in body["reasons"][0]

    assert client.post("/api/takehome/orders", json=_order(patient.id, days=14, risk_level="low")).status_code == 201
    assert client.post("/api/takehome/orders", json=_order(patient.id, days=15, risk_level="low")).status_code == 400


def test_order_env_override(client, db, monkeypatch):
    monkeypatch.setenv("TAKEHOME_MAX_DAYS_HIGH", "5")
    patient = create_patient(db)
    resp = client.post("/api/takehome/orders", json=_order(patient.id, days=5, risk_level="high"))
    assert resp.status_code == 201


def test_order_blocked_by_active_hold(client, db):
    patient = create_patient(db)
    client.post(
        "/api/takehome/holds",
        json={"patient_id": str(patient.id), "hold_type": "diversion_suspected", "reason": "Tamper evident seal broken"},
    )
    resp = client.post("/api/takehome/orders", json=_order(patient.id, days=30))
    assert resp.status_code == 400
    reasons = resp.json()["reasons"]
    assert len(reasons) == 2
    assert "Patient has an active compliance hold" in reasons


def test_order_rejects_unknown_risk_level_and_patient(client):
    resp = client.post("/api/takehome/orders", json=_order(uuid.uuid4(), risk_level="extreme"))
    assert resp.status_code == 400
    resp = client.post("/api/takehome/orders", json=_order(uuid.uuid4()))
    assert resp.status_code == 404
