"""Compliance hold lifecycle: open, clear, sign, override, and follow-up review."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session, joinedload

from .. import audit, models, schemas
from ..config import TakeHomeSettings, as_utc, get_settings
from ..errors import ConflictError, NotFoundError, ValidationError
from . import dea as dea_service

# purpose: gate take-home dispensing behind holds that only authorized roles can clear
# inputs: hold payloads, staff identity, requester network origin
# outputs: ComplianceHold transitions, audit rows, review tasks, DEA reports
# status: active

logger = logging.getLogger(__name__)

ACTIVE = "active"
CLEARED = "cleared"


@dataclass
class OverrideOutcome:
    hold: models.ComplianceHold
    audit_entry: models.AuditLog
    review_task: models.ComplianceReviewTask
    dea_report: models.DEAReport | None = None


def has_active_hold(db: Session, patient_id: UUID, hold_type: str | None = None) -> bool:
    query = db.query(models.ComplianceHold.id).filter(
        models.ComplianceHold.patient_id == patient_id,
        models.ComplianceHold.status == ACTIVE,
    )
    if hold_type:
        query = query.filter(models.ComplianceHold.hold_type == hold_type)
    return db.query(query.exists()).scalar()


def ensure_no_active_hold(db: Session, patient_id: UUID) -> None:
    if has_active_hold(db, patient_id):
        raise ConflictError("Patient has an active compliance hold")


def list_holds(db: Session, *, include_cleared: bool = False) -> list[models.ComplianceHold]:
    query = db.query(models.ComplianceHold).options(joinedload(models.ComplianceHold.patient))
    if not include_cleared:
        query = query.filter(models.ComplianceHold.status == ACTIVE)
    return query.order_by(models.ComplianceHold.created_at.desc()).all()


def get_hold(db: Session, hold_id: UUID) -> models.ComplianceHold:
    hold = db.get(models.ComplianceHold, hold_id)
    if hold is None:
        raise NotFoundError("Compliance hold not found")
    return hold


def open_hold(
    db: Session,
    payload: schemas.HoldCreate,
    *,
    now: datetime | None = None,
) -> models.ComplianceHold:
    """Create an active hold for a patient."""

    if not payload.reason.strip():
        raise ValidationError("reason is required")
    if not payload.hold_type.strip():
        raise ValidationError("hold_type is required")
    if db.get(models.Patient, payload.patient_id) is None:
        raise NotFoundError("Patient not found")
    timestamp = as_utc(now)
    hold = models.ComplianceHold(
        patient_id=payload.patient_id,
        hold_type=payload.hold_type.strip(),
        reason=payload.reason.strip(),
        severity=payload.severity,
        status=ACTIVE,
        requires_clearance_from=list(payload.requires_clearance_from or []),
        clearance_signatures=[],
        created_by=payload.created_by or "System",
        created_by_role=payload.created_by_role or "Provider",
        notes=payload.notes,
        created_at=timestamp,
        updated_at=timestamp,
    )
    db.add(hold)
    db.flush()
    audit.log_action(
        db,
        hold.created_by,
        "compliance_hold.opened",
        target_type="compliance_hold",
        target_id=hold.id,
        details={"hold_type": hold.hold_type, "severity": hold.severity, "reason": hold.reason},
        patient_id=hold.patient_id,
        created_at=timestamp,
    )
    return hold


def _transition_to_cleared(db: Session, hold: models.ComplianceHold, **values) -> None:
    # single conditional write; a concurrent clearance leaves zero rows affected
    result = db.execute(
        sa.update(models.ComplianceHold)
        .where(
            models.ComplianceHold.id == hold.id,
            models.ComplianceHold.status == ACTIVE,
        )
        .values(status=CLEARED, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Compliance hold is already cleared")
    db.refresh(hold)


def clear_hold(
    db: Session,
    hold_id: UUID,
    *,
    cleared_by: str,
    notes: str | None = None,
    now: datetime | None = None,
    ip_address: str | None = None,
) -> models.ComplianceHold:
    """Directly clear an active hold."""

    if not (cleared_by or "").strip():
        raise ValidationError("cleared_by is required")
    hold = get_hold(db, hold_id)
    if hold.status != ACTIVE:
        raise ConflictError("Compliance hold is already cleared")
    timestamp = as_utc(now)
    _transition_to_cleared(
        db,
        hold,
        cleared_by=cleared_by,
        cleared_at=timestamp,
        notes=notes if notes is not None else hold.notes,
        updated_at=timestamp,
    )
    audit.log_action(
        db,
        cleared_by,
        "compliance_hold.cleared",
        target_type="compliance_hold",
        target_id=hold.id,
        details={"notes": notes},
        patient_id=hold.patient_id,
        ip_address=ip_address,
        created_at=timestamp,
    )
    return hold


def _requirements_met(required: list[str], signatures: list[dict]) -> bool:
    signed_roles = {str(sig.get("role") or "").lower() for sig in signatures}
    return all(role.lower() in signed_roles for role in required)


def sign_hold(
    db: Session,
    hold_id: UUID,
    *,
    signer: str,
    role: str | None,
    notes: str | None = None,
    now: datetime | None = None,
    ip_address: str | None = None,
) -> models.ComplianceHold:
    """Record one clearance signature; clears the hold when every role has signed."""

    if not (role or "").strip():
        raise ValidationError("role is required to sign a hold")
    hold = get_hold(db, hold_id)
    if hold.status != ACTIVE:
        raise ConflictError("Compliance hold is already cleared")
    timestamp = as_utc(now)
    signatures = list(hold.clearance_signatures or [])
    signatures.append({"by": signer, "role": role.strip(), "at": timestamp.isoformat()})
    hold.clearance_signatures = signatures
    if notes is not None:
        hold.notes = notes
    hold.updated_at = timestamp
    db.flush()
    audit.log_action(
        db,
        signer,
        "compliance_hold.signed",
        target_type="compliance_hold",
        target_id=hold.id,
        details={"role": role.strip(), "notes": notes},
        patient_id=hold.patient_id,
        ip_address=ip_address,
        created_at=timestamp,
    )
    if _requirements_met(list(hold.requires_clearance_from or []), signatures):
        _transition_to_cleared(db, hold, cleared_by=signer, cleared_at=timestamp, updated_at=timestamp)
    return hold


def override_hold(
    db: Session,
    hold_id: UUID,
    payload: schemas.HoldOverrideRequest,
    *,
    ip_address: str | None = None,
    now: datetime | None = None,
    settings: TakeHomeSettings | None = None,
) -> OverrideOutcome:
    """Clear a hold by override, leaving an audit row, a review task, and a DEA report."""

    settings = settings or get_settings()
    justification = (payload.override_reason or "").strip()
    if len(justification) < settings.override_min_reason:
        raise ValidationError(
            f"Override justification must be at least {settings.override_min_reason} characters"
        )
    if not (payload.overridden_by or "").strip():
        raise ValidationError("overridden_by is required")
    hold = get_hold(db, hold_id)
    if hold.status != ACTIVE:
        raise ConflictError("Compliance hold is already cleared")

    timestamp = as_utc(now)
    review_due_at = timestamp + timedelta(hours=settings.override_review_hours)
    _transition_to_cleared(
        db,
        hold,
        cleared_by=payload.overridden_by,
        cleared_at=timestamp,
        override_reason=justification,
        override_type=payload.override_type,
        overridden_by=payload.overridden_by,
        review_due_at=review_due_at,
        updated_at=timestamp,
    )
    entry = audit.log_action(
        db,
        payload.overridden_by,
        "compliance_hold.override",
        target_type="compliance_hold",
        target_id=hold.id,
        details={
            "justification": justification,
            "override_type": payload.override_type,
            "timestamp": timestamp.isoformat(),
            "ip_address": ip_address,
            "review_due_at": review_due_at.isoformat(),
        },
        patient_id=hold.patient_id,
        ip_address=ip_address,
        created_at=timestamp,
    )
    task = models.ComplianceReviewTask(
        hold_id=hold.id,
        patient_id=hold.patient_id,
        task_type="override_review",
        due_at=review_due_at,
        status="pending",
        created_at=timestamp,
    )
    db.add(task)
    db.flush()

    report = None
    if settings.dea_report_on_override:
        report = dea_service.create_report(
            db,
            event_type="override",
            event_data={
                "hold_id": str(hold.id),
                "hold_type": hold.hold_type,
                "override_type": payload.override_type,
                "justification": justification,
                "overridden_by": payload.overridden_by,
            },
            patient_id=hold.patient_id,
            now=timestamp,
        )
    logger.info("Compliance hold %s overridden by %s", hold.id, payload.overridden_by)
    return OverrideOutcome(hold=hold, audit_entry=entry, review_task=task, dea_report=report)


def list_review_tasks(
    db: Session,
    *,
    status: str | None = "pending",
    due_only: bool = False,
    now: datetime | None = None,
) -> list[models.ComplianceReviewTask]:
    query = db.query(models.ComplianceReviewTask)
    if status:
        query = query.filter(models.ComplianceReviewTask.status == status)
    if due_only:
        query = query.filter(models.ComplianceReviewTask.due_at <= as_utc(now))
    return query.order_by(models.ComplianceReviewTask.due_at.asc()).all()


def complete_review_task(
    db: Session,
    task_id: UUID,
    payload: schemas.ReviewTaskComplete,
    *,
    now: datetime | None = None,
) -> models.ComplianceReviewTask:
    task = db.get(models.ComplianceReviewTask, task_id)
    if task is None:
        raise NotFoundError("Review task not found")
    timestamp = as_utc(now)
    result = db.execute(
        sa.update(models.ComplianceReviewTask)
        .where(
            models.ComplianceReviewTask.id == task_id,
            models.ComplianceReviewTask.status == "pending",
        )
        .values(
            status="completed",
            completed_by=payload.completed_by,
            completed_at=timestamp,
            notes=payload.notes,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Review task is already completed")
    db.refresh(task)
    audit.log_action(
        db,
        payload.completed_by,
        "compliance_review.completed",
        target_type="compliance_review_task",
        target_id=task.id,
        details={"hold_id": str(task.hold_id), "notes": payload.notes},
        patient_id=task.patient_id,
        created_at=timestamp,
    )
    return task
