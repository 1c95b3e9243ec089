from uuid import UUID
from datetime import datetime
from sqlalchemy.orm import Session
from fastapi import APIRouter, Depends
from ..database import get_db
from .. import models, schemas, audit

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/", response_model=list[schemas.AuditLogOut])
def list_logs(
    patient_id: UUID | None = None,
    action: str | None = None,
    db: Session = Depends(get_db),
):
    query = db.query(models.AuditLog)
    if patient_id:
        query = query.filter(models.AuditLog.patient_id == patient_id)
    if action:
        query = query.filter(models.AuditLog.action == action)
    return query.order_by(models.AuditLog.created_at.desc()).limit(500).all()


@router.get("/report", response_model=list[schemas.AuditReportRow])
def audit_report(
    start: datetime,
    end: datetime,
    actor: str | None = None,
    db: Session = Depends(get_db),
):
    return audit.generate_report(db, start, end, actor)
