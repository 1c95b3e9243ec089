import uuid
from datetime import date, datetime, time

import pytest

from .conftest import TestingSessionLocal, create_patient, issue_bottles
from diversion import models, schemas
from diversion.config import get_settings
from diversion.errors import NotFoundError, WindowViolationError
from diversion.services import issuance, verification

DETROIT = (42.3314, -83.0458)


def _scan(db, bottle, *, patient_id=None, gps=None, now):
    payload = schemas.ScanRequest(
        qr_code_data=bottle.qr_code_data,
        patient_id=patient_id or bottle.patient_id,
        gps_location=schemas.GeoLocation(latitude=gps[0], longitude=gps[1]) if gps else None,
    )
    outcome = verification.verify_scan(db, payload, now=now, ip_address="10.0.0.9")
    db.commit()
    return outcome


def test_scan_inside_window_marks_bottle_consumed(db):
    patient = create_patient(db)
    bottles = issue_bottles(db, patient.id)
    outcome = _scan(db, bottles[0], now=datetime(2024, 1, 1, 8, 15))
    assert outcome.verified is True
    assert outcome.failures == []
    assert outcome.message == "Dose consumption verified successfully"

    session = TestingSessionLocal()
    stored = session.get(models.TakeHomeBottle, bottles[0].id)
    assert stored.status == "consumed"
    assert stored.compliance_status == "compliant"
    assert stored.consumed_at is not None
    log = session.get(models.ScanLogEntry, outcome.scan_log.id)
    assert log.scan_type == "consumption"
    assert log.verification_passed is True
    assert log.is_within_dosing_window is True
    assert log.ip_address == "10.0.0.9"
    session.close()


def test_second_scan_never_moves_status_backwards(db):
    patient = create_patient(db)
    bottles = issue_bottles(db, patient.id)
    _scan(db, bottles[0], now=datetime(2024, 1, 1, 8, 0))
    again = _scan(db, bottles[0], now=datetime(2024, 1, 1, 8, 5))
    assert again.verified is False
    assert again.failures == ["already_consumed"]

    session = TestingSessionLocal()
    assert session.get(models.TakeHomeBottle, bottles[0].id).status == "consumed"
    logs = session.query(models.ScanLogEntry).filter_by(bottle_id=bottles[0].id, scan_type="consumption").count()
    assert logs == 2
    session.close()


def test_scan_after_window_is_time_violation(db):
    patient = create_patient(db)
    bottles = issue_bottles(db, patient.id)
    outcome = _scan(db, bottles[0], now=datetime(2024, 1, 1, 12, 30))
    assert outcome.verified is False
    assert outcome.failures == ["time_violation"]
    assert outcome.details["time"]["minutes_outside_window"] == 90
    assert "return to clinic" in outcome.message

    session = TestingSessionLocal()
    stored = session.get(models.TakeHomeBottle, bottles[0].id)
    assert stored.status == "dispensed"
    assert stored.compliance_status == "pending"
    session.close()


def test_scan_on_wrong_day_is_date_violation(db):
    patient = create_patient(db)
    bottles = issue_bottles(db, patient.id)
    outcome = _scan(db, bottles[1], now=datetime(2024, 1, 1, 8, 0))
    assert outcome.failures == ["date_violation"]


def test_custom_window_is_honoured(db):
    patient = create_patient(db)
    bottles = issue_bottles(db, patient.id, window=(time(14, 0), time(16, 0)))
    assert _scan(db, bottles[0], now=datetime(2024, 1, 1, 8, 0)).failures == ["time_violation"]
    assert _scan(db, bottles[0], now=datetime(2024, 1, 1, 15, 0)).verified is True


def test_wrong_patient_scan_raises_single_critical_alert(db):
    owner = create_patient(db)
    other = create_patient(db, first_name="Casey")
    bottles = issue_bottles(db, owner.id)

    outcome = _scan(db, bottles[0], patient_id=other.id, now=datetime(2024, 1, 1, 8, 0))
    assert outcome.failures == ["wrong_patient"]
    _scan(db, bottles[0], patient_id=other.id, now=datetime(2024, 1, 1, 8, 1))

    session = TestingSessionLocal()
    alerts = session.query(models.ComplianceAlert).filter_by(alert_type="wrong_patient_scan").all()
    assert len(alerts) == 1
    assert alerts[0].severity == "critical"
    assert alerts[0].dea_reportable is True
    assert alerts[0].patient_id == owner.id
    assert session.get(models.TakeHomeBottle, bottles[0].id).status == "dispensed"
    session.close()


def test_geofence_enforced_for_registered_home(db):
    patient = create_patient(db, home=DETROIT)
    bottles = issue_bottles(db, patient.id)

    at_home = _scan(db, bottles[0], gps=(42.3315, -83.0459), now=datetime(2024, 1, 1, 7, 0))
    assert at_home.verified is True
    assert at_home.details["location"]["verified"] is True

    away = _scan(db, bottles[1], gps=(42.4000, -83.0458), now=datetime(2024, 1, 2, 7, 0))
    assert away.verified is False
    assert away.failures == ["location_violation"]
    assert away.details["location"]["distance_from_home_meters"] > 7000

    session = TestingSessionLocal()
    alert = session.query(models.ComplianceAlert).filter_by(alert_type="location_violation").one()
    assert alert.severity == "high"
    assert alert.callback_required is True
    assert alert.callback_due_at is not None
    log = session.get(models.ScanLogEntry, away.scan_log.id)
    assert log.is_within_home_geofence is False
    session.close()


def test_missing_gps_fails_geofence(db):
    patient = create_patient(db, home=DETROIT)
    bottles = issue_bottles(db, patient.id)
    outcome = _scan(db, bottles[0], now=datetime(2024, 1, 1, 7, 0))
    assert outcome.failures == ["location_violation"]


def test_no_registered_home_skips_geofence(db):
    patient = create_patient(db)
    bottles = issue_bottles(db, patient.id)
    outcome = _scan(db, bottles[0], gps=(40.0, -75.0), now=datetime(2024, 1, 1, 7, 0))
    assert outcome.verified is True
    assert outcome.details["location"]["enforced"] is False


def test_unknown_token_is_recorded_and_not_found(client, db):
    patient = create_patient(db)
    token = issuance.encode_token({"bottle_number": 1, "nonce": "forged"})
    resp = client.post(
        "/api/takehome/verify-scan",
        json={"qr_code_data": token, "patient_id": str(patient.id)},
        headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
    )
    assert resp.status_code == 404
    assert resp.json() == {"error": "Invalid QR code"}

    session = TestingSessionLocal()
    log = session.query(models.ScanLogEntry).filter_by(qr_code_hash=issuance.hash_token(token)).one()
    assert log.bottle_id is None
    assert log.verification_passed is False
    assert log.verification_failures == ["unknown_token"]
    assert log.ip_address == "203.0.113.7"
    session.close()


def test_unknown_token_service_error(db):
    payload = schemas.ScanRequest(qr_code_data="garbage")
    with pytest.raises(NotFoundError):
        verification.verify_scan(db, payload, now=datetime(2024, 1, 1, 8, 0))
    db.rollback()


def test_verify_scan_route_reports_wrong_patient(client, db):
    owner = create_patient(db)
    other = create_patient(db, first_name="Casey")
    bottles = issue_bottles(db, owner.id)
    resp = client.post(
        "/api/takehome/verify-scan",
        json={"qr_code_data": bottles[0].qr_code_data, "patient_id": str(other.id)},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["verified"] is False
    assert data["failures"] == ["wrong_patient"]
    assert data["bottle_number"] == 1
    assert data["scan_log_id"]

    alerts = client.get("/api/takehome/alerts", params={"status": "open"}).json()
    assert [a["alert_type"] for a in alerts] == ["wrong_patient_scan"]


def test_check_dosing_window_counts_minutes_outside():
    settings = get_settings()
    bottle = models.TakeHomeBottle(
        scheduled_date=date(2024, 1, 1),
        dosing_window_start=time(6, 0),
        dosing_window_end=time(11, 0),
    )
    early = datetime(2024, 1, 1, 5, 30, tzinfo=settings.timezone)
    with pytest.raises(WindowViolationError) as exc_info:
        verification.check_dosing_window(bottle, early, settings)
    assert exc_info.value.code == "time_violation"
    assert exc_info.value.minutes_outside == 30

    verification.check_dosing_window(bottle, datetime(2024, 1, 1, 11, 0, tzinfo=settings.timezone), settings)


def test_haversine_distance():
    assert verification.haversine_meters(*DETROIT, *DETROIT) == 0
    one_degree = verification.haversine_meters(0.0, 0.0, 1.0, 0.0)
    assert 111000 < one_degree < 111400


def test_payload_with_wrong_owner_is_token_mismatch(db):
    patient = create_patient(db)
    bottles = issue_bottles(db, patient.id)
    forged = issuance.decode_token(bottles[0].qr_code_data)
    forged["patient_id"] = str(uuid.uuid4())
    # point the bottle at the forged token so the hash lookup resolves
    bottle = db.get(models.TakeHomeBottle, bottles[0].id)
    token = issuance.encode_token(forged)
    bottle.qr_code_hash = issuance.hash_token(token)
    db.commit()
    outcome = verification.verify_scan(
        db,
        schemas.ScanRequest(qr_code_data=token),
        now=datetime(2024, 1, 1, 8, 0),
    )
    assert outcome.failures == ["token_mismatch"]
    db.rollback()


def test_window_violations_raise_medium_alerts(db):
    patient = create_patient(db)
    bottles = issue_bottles(db, patient.id)

    _scan(db, bottles[0], now=datetime(2024, 1, 1, 12, 30))
    _scan(db, bottles[0], now=datetime(2024, 1, 1, 12, 45))
    _scan(db, bottles[1], now=datetime(2024, 1, 2, 13, 30))
    _scan(db, bottles[2], now=datetime(2024, 1, 2, 8, 0))

    session = TestingSessionLocal()
    late = session.query(models.ComplianceAlert).filter_by(bottle_id=bottles[0].id).one()
    assert late.alert_type == "time_violation"
    assert late.severity == "medium"
    assert late.clinical_review_required is True
    assert late.callback_required is False
    assert late.callback_due_at is None
    assert "90 minutes outside the dosing window" in late.alert_description

    very_late = session.query(models.ComplianceAlert).filter_by(bottle_id=bottles[1].id).one()
    assert very_late.callback_required is True
    assert very_late.callback_due_at is not None

    early = session.query(models.ComplianceAlert).filter_by(bottle_id=bottles[2].id).one()
    assert early.alert_type == "date_violation"
    assert early.alert_title == "Dosing Date Violation"
    session.close()


def test_scan_within_closing_minute_is_accepted(db):
    patient = create_patient(db)
    bottles = issue_bottles(db, patient.id)
    settings = get_settings()

    verification.check_dosing_window(
        bottles[0], datetime(2024, 1, 1, 11, 0, 59, tzinfo=settings.timezone), settings
    )
    with pytest.raises(WindowViolationError) as exc_info:
        verification.check_dosing_window(
            bottles[0], datetime(2024, 1, 1, 11, 1, 0, tzinfo=settings.timezone), settings
        )
    assert exc_info.value.minutes_outside == 1

    outcome = _scan(db, bottles[0], now=datetime(2024, 1, 1, 11, 0, 30))
    assert outcome.verified is True


def test_losing_consumption_race_is_already_processed(db):
    patient = create_patient(db)
    bottles = issue_bottles(db, patient.id)

    stale = TestingSessionLocal()
    stale_bottle = stale.get(models.TakeHomeBottle, bottles[0].id)
    assert stale_bottle.status == "dispensed"

    winner = _scan(db, bottles[0], now=datetime(2024, 1, 1, 8, 0))
    assert winner.verified is True

    loser = verification.verify_scan(
        stale,
        schemas.ScanRequest(qr_code_data=bottles[0].qr_code_data, patient_id=patient.id),
        now=datetime(2024, 1, 1, 8, 1),
    )
    stale.commit()
    assert loser.verified is False
    assert loser.failures == ["already_processed"]
    stale.close()

    session = TestingSessionLocal()
    stored = session.get(models.TakeHomeBottle, bottles[0].id)
    assert stored.status == "consumed"
    logs = (
        session.query(models.ScanLogEntry)
        .filter_by(bottle_id=bottles[0].id, scan_type="consumption")
        .order_by(models.ScanLogEntry.scanned_at.asc())
        .all()
    )
    assert [log.verification_passed for log in logs] == [True, False]
    assert logs[1].verification_failures == ["already_processed"]
    session.close()


CHICAGO = (41.8781, -87.6298)


def _travel(db, patient_id, *, status="approved", start=date(2024, 1, 1), end=date(2024, 1, 2)):
    record = models.TravelException(
        patient_id=patient_id,
        start_date=start,
        end_date=end,
        temporary_address="233 S Wacker Dr",
        temporary_latitude=CHICAGO[0],
        temporary_longitude=CHICAGO[1],
        status=status,
    )
    db.add(record)
    db.commit()
    return record


def test_approved_travel_exception_satisfies_geofence(db):
    patient = create_patient(db, home=DETROIT)
    bottles = issue_bottles(db, patient.id)
    _travel(db, patient.id)

    away = _scan(db, bottles[0], gps=(41.8790, -87.6300), now=datetime(2024, 1, 1, 8, 0))
    assert away.verified is True
    assert away.details["location"]["travel_exception"] is True

    expired = _scan(db, bottles[2], gps=(41.8790, -87.6300), now=datetime(2024, 1, 3, 8, 0))
    assert expired.failures == ["location_violation"]

    # outside the default 500 m travel radius
    too_far = _scan(db, bottles[1], gps=(41.9000, -87.6298), now=datetime(2024, 1, 2, 8, 0))
    assert too_far.failures == ["location_violation"]


def test_pending_travel_exception_is_ignored(db):
    patient = create_patient(db, home=DETROIT)
    bottles = issue_bottles(db, patient.id)
    _travel(db, patient.id, status="pending")

    outcome = _scan(db, bottles[0], gps=CHICAGO, now=datetime(2024, 1, 1, 8, 0))
    assert outcome.failures == ["location_violation"]
    assert outcome.details["location"]["travel_exception"] is False


def test_travel_exception_routes(client, db):
    patient = create_patient(db, home=DETROIT)
    payload = {
        "patient_id": str(patient.id),
        "start_date": "2024-01-01",
        "end_date": "2024-01-05",
        "temporary_address": "233 S Wacker Dr",
        "temporary_latitude": CHICAGO[0],
        "temporary_longitude": CHICAGO[1],
        "reason": "Family emergency",
        "requested_by": "rn-ortiz",
    }
    created = client.post("/api/takehome/travel-exceptions", json=payload)
    assert created.status_code == 201
    record = created.json()
    assert record["status"] == "pending"

    backwards = client.post(
        "/api/takehome/travel-exceptions",
        json={**payload, "start_date": "2024-01-05", "end_date": "2024-01-01"},
    )
    assert backwards.status_code == 400
    missing = client.post("/api/takehome/travel-exceptions", json={**payload, "patient_id": str(uuid.uuid4())})
    assert missing.status_code == 404

    approved = client.put(
        f"/api/takehome/travel-exceptions/{record['id']}",
        json={"action": "approve", "decided_by": "dr-lee"},
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    assert approved.json()["decided_by"] == "dr-lee"

    again = client.put(
        f"/api/takehome/travel-exceptions/{record['id']}",
        json={"action": "deny", "decided_by": "dr-kim"},
    )
    assert again.status_code == 409
    unknown = client.put(
        f"/api/takehome/travel-exceptions/{uuid.uuid4()}",
        json={"action": "approve", "decided_by": "dr-lee"},
    )
    assert unknown.status_code == 404

    listed = client.get("/api/takehome/travel-exceptions", params={"status": "approved"}).json()
    assert [r["id"] for r in listed] == [record["id"]]
    assert client.get("/api/takehome/travel-exceptions", params={"status": "pending"}).json() == []

    actions = [
        entry.action
        for entry in db.query(models.AuditLog).filter_by(patient_id=patient.id).order_by(models.AuditLog.created_at)
    ]
    assert actions == ["travel_exception.requested", "travel_exception.approved"]
