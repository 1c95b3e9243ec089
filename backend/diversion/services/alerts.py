"""Compliance alert creation and staff follow-up actions."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session

from .. import audit, models
from ..config import as_utc
from ..database import insert_ignore
from ..errors import ConflictError, NotFoundError, ValidationError
from . import dea as dea_service


def raise_alert(
    db: Session,
    *,
    patient_id: UUID,
    alert_type: str,
    severity: str,
    title: str,
    description: str,
    bottle_id: UUID | None = None,
    scan_log_id: UUID | None = None,
    callback_required: bool = False,
    callback_hours: int | None = None,
    clinical_review_required: bool = False,
    dea_reportable: bool = False,
    now: datetime | None = None,
) -> models.ComplianceAlert | None:
    """Insert an alert unless one of the same type already exists for the bottle.

    Returns the new alert, or ``None`` when the uniqueness constraint absorbed it.
    """

    timestamp = as_utc(now)
    db.flush()
    alert_id = uuid.uuid4()
    written = insert_ignore(
        db,
        models.ComplianceAlert,
        {
            "id": alert_id,
            "patient_id": patient_id,
            "bottle_id": bottle_id,
            "scan_log_id": scan_log_id,
            "alert_type": alert_type,
            "severity": severity,
            "alert_title": title,
            "alert_description": description,
            "callback_required": callback_required,
            "callback_due_at": timestamp + timedelta(hours=callback_hours) if callback_hours else None,
            "clinical_review_required": clinical_review_required,
            "dea_reportable": dea_reportable,
            "notified": False,
            "status": "open",
            "created_at": timestamp,
        },
        ["bottle_id", "alert_type"],
    )
    if not written:
        return None
    return db.get(models.ComplianceAlert, alert_id)


def list_alerts(
    db: Session,
    *,
    status: str | None = None,
    patient_id: UUID | None = None,
    limit: int = 200,
) -> list[models.ComplianceAlert]:
    query = db.query(models.ComplianceAlert)
    if status:
        query = query.filter(models.ComplianceAlert.status == status)
    if patient_id:
        query = query.filter(models.ComplianceAlert.patient_id == patient_id)
    return query.order_by(models.ComplianceAlert.created_at.desc()).limit(limit).all()


def get_alert(db: Session, alert_id: UUID) -> models.ComplianceAlert:
    alert = db.get(models.ComplianceAlert, alert_id)
    if alert is None:
        raise NotFoundError("Compliance alert not found")
    return alert


def _transition(db: Session, alert: models.ComplianceAlert, from_statuses: set[str], **values) -> None:
    result = db.execute(
        sa.update(models.ComplianceAlert)
        .where(
            models.ComplianceAlert.id == alert.id,
            models.ComplianceAlert.status.in_(from_statuses),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(f"Compliance alert is already {alert.status}")
    db.refresh(alert)


def resolve_alert(
    db: Session,
    alert_id: UUID,
    *,
    resolution_notes: str,
    resolved_by: str | None = None,
    now: datetime | None = None,
) -> models.ComplianceAlert:
    if not (resolution_notes or "").strip():
        raise ValidationError("resolution_notes is required")
    alert = get_alert(db, alert_id)
    timestamp = as_utc(now)
    _transition(
        db,
        alert,
        {"open", "confirmed"},
        status="resolved",
        resolution_notes=resolution_notes.strip(),
        resolved_at=timestamp,
    )
    audit.log_action(
        db,
        resolved_by,
        "compliance_alert.resolved",
        target_type="compliance_alert",
        target_id=alert.id,
        details={"resolution_notes": resolution_notes.strip()},
        patient_id=alert.patient_id,
        created_at=timestamp,
    )
    return alert


def confirm_alert(
    db: Session,
    alert_id: UUID,
    *,
    confirmed_by: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> tuple[models.ComplianceAlert, models.DEAReport]:
    """Confirm an open alert and report it through the DEA bridge."""

    alert = get_alert(db, alert_id)
    timestamp = as_utc(now)
    _transition(db, alert, {"open"}, status="confirmed")
    report = dea_service.create_report(
        db,
        event_type=alert.alert_type,
        event_data={
            "alert_title": alert.alert_title,
            "severity": alert.severity,
            "confirmed_by": confirmed_by,
            "notes": notes,
        },
        patient_id=alert.patient_id,
        bottle_id=alert.bottle_id,
        scan_log_id=alert.scan_log_id,
        alert_id=alert.id,
        now=timestamp,
    )
    audit.log_action(
        db,
        confirmed_by,
        "compliance_alert.confirmed",
        target_type="compliance_alert",
        target_id=alert.id,
        details={"dea_reference": report.dea_reference_number, "notes": notes},
        patient_id=alert.patient_id,
        created_at=timestamp,
    )
    return alert, report
