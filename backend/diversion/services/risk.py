"""Naive weighted diversion-risk scoring per patient."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from .. import models
from ..config import TakeHomeSettings, as_utc, get_settings, local_now

LOOKBACK_DAYS = 30

WEIGHT_MISSED_DOSE = 15
WEIGHT_FAILED_SCAN = 10
WEIGHT_CRITICAL_ALERT = 25
WEIGHT_ACTIVE_HOLD = 20


def risk_level_for(score: int) -> str:
    if score >= 75:
        return "critical"
    if score >= 50:
        return "high"
    if score >= 25:
        return "moderate"
    return "low"


def compute_risk_scores(
    db: Session,
    *,
    now: datetime | None = None,
    settings: TakeHomeSettings | None = None,
) -> list[dict]:
    """Score every patient with take-home bottles scheduled in the lookback window."""

    settings = settings or get_settings()
    current = local_now(settings, now)
    today = current.date()
    since_date = today - timedelta(days=LOOKBACK_DAYS)
    since = as_utc(current) - timedelta(days=LOOKBACK_DAYS)

    bottles = (
        db.query(models.TakeHomeBottle)
        .filter(models.TakeHomeBottle.scheduled_date >= since_date)
        .filter(models.TakeHomeBottle.scheduled_date <= today)
        .all()
    )
    if not bottles:
        return []
    patient_ids = {bottle.patient_id for bottle in bottles}

    missed: dict = defaultdict(int)
    for bottle in bottles:
        if bottle.status == "missed":
            missed[bottle.patient_id] += 1

    consumption_scans = (
        db.query(models.ScanLogEntry)
        .filter(models.ScanLogEntry.scan_type == "consumption")
        .filter(models.ScanLogEntry.patient_id.in_(patient_ids))
        .filter(models.ScanLogEntry.scanned_at >= since)
        .all()
    )
    failed: dict = defaultdict(int)
    geofence_checked: dict = defaultdict(int)
    geofence_passed: dict = defaultdict(int)
    for scan in consumption_scans:
        if not scan.verification_passed:
            failed[scan.patient_id] += 1
        if scan.is_within_home_geofence is not None:
            geofence_checked[scan.patient_id] += 1
            if scan.is_within_home_geofence:
                geofence_passed[scan.patient_id] += 1

    critical_alerts: dict = defaultdict(int)
    for alert in (
        db.query(models.ComplianceAlert)
        .filter(models.ComplianceAlert.patient_id.in_(patient_ids))
        .filter(models.ComplianceAlert.severity == "critical")
        .filter(models.ComplianceAlert.status == "open")
        .all()
    ):
        critical_alerts[alert.patient_id] += 1

    active_holds: dict = defaultdict(int)
    for hold in (
        db.query(models.ComplianceHold)
        .filter(models.ComplianceHold.patient_id.in_(patient_ids))
        .filter(models.ComplianceHold.status == "active")
        .all()
    ):
        active_holds[hold.patient_id] += 1

    patients = {
        patient.id: patient
        for patient in db.query(models.Patient).filter(models.Patient.id.in_(patient_ids)).all()
    }
    assessed_at = as_utc(current)
    scores = []
    for patient_id in patient_ids:
        score = min(
            100,
            WEIGHT_MISSED_DOSE * missed[patient_id]
            + WEIGHT_FAILED_SCAN * failed[patient_id]
            + WEIGHT_CRITICAL_ALERT * critical_alerts[patient_id]
            + WEIGHT_ACTIVE_HOLD * active_holds[patient_id],
        )
        checked = geofence_checked[patient_id]
        patient = patients.get(patient_id)
        scores.append(
            {
                "patient_id": patient_id,
                "patient_name": patient.display_name if patient else "Unknown Patient",
                "risk_score": score,
                "risk_level": risk_level_for(score),
                "compliance_score": 100 - score,
                "location_compliance_rate": round(geofence_passed[patient_id] / checked * 100, 1) if checked else 100.0,
                "missed_doses_30_days": missed[patient_id],
                "failed_scans_30_days": failed[patient_id],
                "open_critical_alerts": critical_alerts[patient_id],
                "active_holds": active_holds[patient_id],
                "assessment_date": assessed_at,
            }
        )
    scores.sort(key=lambda row: row["risk_score"], reverse=True)
    return scores
