"""DEA reporting bridge for diversion-relevant events."""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models
from ..config import as_utc
from ..errors import ConflictError, NotFoundError, ValidationError

# purpose: mirror missed doses, overrides, and holds into an immutable DEA report log
# inputs: event type, event payload, patient/bottle/scan/alert identifiers
# outputs: DEAReport rows with unique reference numbers; linked alerts marked reported
# status: active

REPORTED = "reported_to_dea"


def generate_reference(now: datetime) -> str:
    return f"DEA-{int(now.timestamp() * 1000)}-{secrets.token_hex(3).upper()}"


def create_report(
    db: Session,
    *,
    event_type: str,
    event_data: dict[str, Any] | None = None,
    patient_id: UUID | None = None,
    bottle_id: UUID | None = None,
    scan_log_id: UUID | None = None,
    alert_id: UUID | None = None,
    now: datetime | None = None,
) -> models.DEAReport:
    """Write a report row and, when linked, mark the alert as reported.

    Both writes join the caller's transaction; the caller commits them together.
    """

    if not (event_type or "").strip():
        raise ValidationError("event_type is required")
    timestamp = as_utc(now)
    alert = None
    if alert_id is not None:
        alert = db.get(models.ComplianceAlert, alert_id)
        if alert is None:
            raise NotFoundError("Compliance alert not found")
        if alert.status == REPORTED:
            raise ConflictError("Compliance alert has already been reported to the DEA")

    reference = generate_reference(timestamp)
    report = models.DEAReport(
        event_type=event_type.strip(),
        event_data={
            **(event_data or {}),
            "patient_id": str(patient_id) if patient_id else None,
            "bottle_qr_id": str(bottle_id) if bottle_id else None,
            "scan_log_id": str(scan_log_id) if scan_log_id else None,
            "alert_id": str(alert_id) if alert_id else None,
            "reported_at": timestamp.isoformat(),
        },
        dea_reference_number=reference,
        sync_status="synced",
        reported_at=timestamp,
        synced_at=timestamp,
    )
    db.add(report)

    if alert is not None:
        alert.status = REPORTED
        alert.resolution_notes = f"Reported to DEA with reference: {reference}"
        alert.resolved_at = timestamp
    db.flush()
    return report


def list_reports(db: Session, *, limit: int = 500) -> list[models.DEAReport]:
    return (
        db.query(models.DEAReport)
        .order_by(models.DEAReport.reported_at.desc())
        .limit(limit)
        .all()
    )


def build_statistics(
    reports: list[models.DEAReport],
    alerts: list[models.ComplianceAlert],
    scan_logs: list[models.ScanLogEntry],
    risk_levels: list[str],
) -> dict[str, int]:
    total_scans = len(scan_logs)
    successful_scans = sum(1 for log in scan_logs if log.verification_passed)
    return {
        "total_reports": len(reports),
        "synced_reports": sum(1 for r in reports if r.sync_status == "synced"),
        "pending_reports": sum(1 for r in reports if r.sync_status == "pending"),
        "total_alerts": len(alerts),
        "open_alerts": sum(1 for a in alerts if a.status == "open"),
        "resolved_alerts": sum(1 for a in alerts if a.status == "resolved"),
        "total_scans": total_scans,
        "successful_scans": successful_scans,
        "failed_scans": total_scans - successful_scans,
        "compliance_rate": round(successful_scans / total_scans * 100) if total_scans else 100,
        "high_risk_patients": sum(1 for level in risk_levels if level in {"high", "critical"}),
    }
