import re
import uuid
from datetime import date, datetime, timedelta, timezone

from .conftest import TestingSessionLocal, create_patient, issue_bottles
from diversion import models, schemas
from diversion.services import alerts, dea, holds, missed_doses, risk

REFERENCE = re.compile(r"^DEA-\d{13}-[0-9A-F]{6}$")


class NullSink:
    def enqueue(self, patient_id, message, *, alert=None):
        pass


def _missed_dose_alert(db, patient):
    bottles = issue_bottles(db, patient.id, count=1)
    missed_doses.run_missed_dose_sweep(db, now=datetime(2024, 1, 1, 12, 0), sink=NullSink())
    db.commit()
    return db.query(models.ComplianceAlert).filter_by(bottle_id=bottles[0].id).one()


def test_sync_report_marks_alert_reported(client, db):
    patient = create_patient(db)
    alert = _missed_dose_alert(db, patient)

    resp = client.post(
        "/api/dea/sync",
        json={
            "event_type": "missed_dose",
            "event_data": {"note": "Patient unreachable"},
            "patient_id": str(patient.id),
            "bottle_id": str(alert.bottle_id),
            "alert_id": str(alert.id),
        },
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    reference = body["dea_reference"]
    assert REFERENCE.match(reference)
    report = body["report"]
    assert report["sync_status"] == "synced"
    assert report["event_data"]["note"] == "Patient unreachable"
    assert report["event_data"]["alert_id"] == str(alert.id)
    assert report["event_data"]["patient_id"] == str(patient.id)

    session = TestingSessionLocal()
    stored = session.get(models.ComplianceAlert, alert.id)
    assert stored.status == "reported_to_dea"
    assert stored.resolution_notes == f"Reported to DEA with reference: {reference}"
    assert stored.resolved_at is not None
    session.close()

    again = client.post("/api/dea/sync", json={"event_type": "missed_dose", "alert_id": str(alert.id)})
    assert again.status_code == 409


def test_sync_report_validation(client):
    resp = client.post("/api/dea/sync", json={"event_type": "missed_dose", "alert_id": str(uuid.uuid4())})
    assert resp.status_code == 404
    resp = client.post("/api/dea/sync", json={"event_type": "  "})
    assert resp.status_code == 400

    session = TestingSessionLocal()
    assert session.query(models.DEAReport).count() == 0
    session.close()


def test_reference_numbers_are_unique():
    now = datetime(2024, 1, 1, 12, 0)
    references = {dea.generate_reference(now) for _ in range(50)}
    assert len(references) == 50
    assert all(REFERENCE.match(ref) for ref in references)


def test_dashboard_on_empty_store(client):
    resp = client.get("/api/dea/sync")
    assert resp.status_code == 200
    data = resp.json()
    assert data["reports"] == []
    assert data["risk_scores"] == []
    stats = data["statistics"]
    assert stats["total_reports"] == 0
    assert stats["total_scans"] == 0
    assert stats["compliance_rate"] == 100
    assert stats["high_risk_patients"] == 0


def test_dashboard_statistics(client, db):
    patient = create_patient(db)
    alert = _missed_dose_alert(db, patient)
    client.post("/api/dea/sync", json={"event_type": "missed_dose", "alert_id": str(alert.id)})

    data = client.get("/api/dea/sync").json()
    stats = data["statistics"]
    assert stats["total_reports"] == 1
    assert stats["synced_reports"] == 1
    assert stats["total_alerts"] == 1
    assert stats["open_alerts"] == 0
    # one dispensing scan, no consumption scans
    assert stats["total_scans"] == 1
    assert stats["successful_scans"] == 1
    assert len(data["alerts"]) == 1
    assert data["alerts"][0]["status"] == "reported_to_dea"


def test_confirm_alert_reports_to_dea(client, db):
    patient = create_patient(db)
    alert = _missed_dose_alert(db, patient)
    resp = client.post(
        f"/api/takehome/alerts/{alert.id}/confirm",
        json={"confirmed_by": "dr-lee", "notes": "Confirmed by phone"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["alert"]["status"] == "reported_to_dea"
    assert REFERENCE.match(body["dea_reference"])

    again = client.post(f"/api/takehome/alerts/{alert.id}/confirm", json={})
    assert again.status_code == 409

    session = TestingSessionLocal()
    report = session.query(models.DEAReport).one()
    assert report.event_type == "missed_dose"
    assert report.event_data["confirmed_by"] == "dr-lee"
    session.close()


def test_resolve_alert(client, db):
    patient = create_patient(db)
    alert = _missed_dose_alert(db, patient)
    blank = client.post(f"/api/takehome/alerts/{alert.id}/resolve", json={"resolution_notes": " "})
    assert blank.status_code == 400

    resp = client.post(
        f"/api/takehome/alerts/{alert.id}/resolve",
        json={"resolution_notes": "Dose taken late, witnessed at clinic", "resolved_by": "rn-ortiz"},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "resolved"

    again = client.post(f"/api/takehome/alerts/{alert.id}/resolve", json={"resolution_notes": "dup"})
    assert again.status_code == 409
    missing = client.post(f"/api/takehome/alerts/{uuid.uuid4()}/resolve", json={"resolution_notes": "x"})
    assert missing.status_code == 404


def test_risk_scores_weight_findings(db):
    patient = create_patient(db)
    bottles = issue_bottles(db, patient.id, count=3, start=date(2024, 1, 1))
    for bottle in bottles[:2]:
        bottle.status = "missed"
    db.add(
        models.ScanLogEntry(
            bottle_id=bottles[2].id,
            patient_id=patient.id,
            qr_code_hash=bottles[2].qr_code_hash,
            scan_type="consumption",
            verification_passed=False,
            verification_failures=["time_violation"],
            scanned_at=datetime(2024, 1, 3, 13, 0),
        )
    )
    alerts.raise_alert(
        db,
        patient_id=patient.id,
        bottle_id=bottles[2].id,
        alert_type="wrong_patient_scan",
        severity="critical",
        title="Wrong patient",
        description="test",
        now=datetime(2024, 1, 3, 13, 0),
    )
    holds.open_hold(
        db,
        schemas.HoldCreate(patient_id=patient.id, hold_type="diversion_suspected", reason="Review"),
        now=datetime(2024, 1, 3, 13, 0),
    )
    db.commit()

    scores = risk.compute_risk_scores(db, now=datetime(2024, 1, 4, 9, 0))
    assert len(scores) == 1
    row = scores[0]
    assert row["missed_doses_30_days"] == 2
    assert row["failed_scans_30_days"] == 1
    assert row["open_critical_alerts"] == 1
    assert row["active_holds"] == 1
    assert row["risk_score"] == 2 * 15 + 10 + 25 + 20
    assert row["risk_level"] == "critical"
    assert row["compliance_score"] == 100 - row["risk_score"]

    later = risk.compute_risk_scores(db, now=datetime(2024, 1, 4, 9, 0) + timedelta(days=60))
    assert later == []


def test_risk_level_boundaries():
    assert risk.risk_level_for(0) == "low"
    assert risk.risk_level_for(24) == "low"
    assert risk.risk_level_for(25) == "moderate"
    assert risk.risk_level_for(50) == "high"
    assert risk.risk_level_for(75) == "critical"


def test_risk_lookback_uses_facility_time(db):
    patient = create_patient(db)
    bottles = issue_bottles(db, patient.id, count=1, start=date(2024, 2, 1))
    # 20:00 in New York is 01:00 UTC the next day, so the lookback starts at 2024-01-03T01:00Z
    for scanned_at in (
        datetime(2024, 1, 2, 22, 0, tzinfo=timezone.utc),
        datetime(2024, 1, 3, 2, 0, tzinfo=timezone.utc),
    ):
        db.add(
            models.ScanLogEntry(
                bottle_id=bottles[0].id,
                patient_id=patient.id,
                qr_code_hash=bottles[0].qr_code_hash,
                scan_type="consumption",
                verification_passed=False,
                verification_failures=["time_violation"],
                scanned_at=scanned_at,
            )
        )
    db.commit()

    scores = risk.compute_risk_scores(db, now=datetime(2024, 2, 1, 20, 0))
    assert scores[0]["failed_scans_30_days"] == 1
    assert scores[0]["assessment_date"] == datetime(2024, 2, 2, 1, 0, tzinfo=timezone.utc)
