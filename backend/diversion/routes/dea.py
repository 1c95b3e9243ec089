"""DEA reporting bridge API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import commit_or_raise, get_db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..services import dea, risk

# purpose: record diversion events for the DEA and summarise reporting activity
# status: active
# depends_on: diversion.services.dea, diversion.services.risk

router = APIRouter(prefix="/api/dea", tags=["dea"])

ALERT_LIMIT = 200
SCAN_LOG_LIMIT = 500


@router.post("/sync", status_code=status.HTTP_201_CREATED, response_model=schemas.DEASyncResponse)
def sync_report(payload: schemas.DEASyncRequest, db: Session = Depends(get_db)):
    try:
        report = dea.create_report(
            db,
            event_type=payload.event_type,
            event_data=payload.event_data,
            patient_id=payload.patient_id,
            bottle_id=payload.bottle_id,
            scan_log_id=payload.scan_log_id,
            alert_id=payload.alert_id,
        )
    except ValidationError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except NotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ConflictError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    commit_or_raise(db)
    return schemas.DEASyncResponse(
        report=schemas.DEAReportOut.model_validate(report),
        dea_reference=report.dea_reference_number,
    )


@router.get("/sync", response_model=schemas.DEADashboard)
def reporting_dashboard(db: Session = Depends(get_db)):
    reports = dea.list_reports(db)
    alerts = (
        db.query(models.ComplianceAlert)
        .order_by(models.ComplianceAlert.created_at.desc())
        .limit(ALERT_LIMIT)
        .all()
    )
    scan_logs = (
        db.query(models.ScanLogEntry)
        .order_by(models.ScanLogEntry.scanned_at.desc())
        .limit(SCAN_LOG_LIMIT)
        .all()
    )
    risk_scores = risk.compute_risk_scores(db)
    statistics = dea.build_statistics(
        reports,
        alerts,
        scan_logs,
        [row["risk_level"] for row in risk_scores],
    )
    return schemas.DEADashboard(
        reports=[schemas.DEAReportOut.model_validate(r) for r in reports],
        alerts=[schemas.AlertOut.model_validate(a) for a in alerts],
        scan_logs=[schemas.ScanLogOut.model_validate(s) for s in scan_logs],
        risk_scores=[schemas.RiskScoreOut(**row) for row in risk_scores],
        statistics=schemas.DEAStatistics(**statistics),
    )
