from datetime import datetime, timezone
from uuid import UUID
from sqlalchemy.orm import Session
from sqlalchemy import func
from . import models


def log_action(
    db: Session,
    actor: str | None,
    action: str,
    target_type: str | None = None,
    target_id: str | UUID | None = None,
    details: dict | None = None,
    *,
    patient_id: UUID | None = None,
    ip_address: str | None = None,
    created_at: datetime | None = None,
):
    """Append an audit-trail row to the caller's unit of work."""

    log = models.AuditLog(
        actor=actor,
        action=action,
        target_type=target_type,
        target_id=UUID(str(target_id)) if target_id else None,
        patient_id=patient_id,
        details=details or {},
        ip_address=ip_address,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(log)
    db.flush()
    return log


def generate_report(
    db: Session,
    start: datetime,
    end: datetime,
    actor: str | None = None,
):
    query = db.query(models.AuditLog).filter(
        models.AuditLog.created_at >= start,
        models.AuditLog.created_at <= end,
    )
    if actor:
        query = query.filter(models.AuditLog.actor == actor)
    rows = (
        query.with_entities(models.AuditLog.action, func.count(models.AuditLog.id))
        .group_by(models.AuditLog.action)
        .all()
    )
    return [{"action": r[0], "count": r[1]} for r in rows]


def request_origin(request) -> str | None:
    """Best-effort network origin of a request for the audit trail."""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None
