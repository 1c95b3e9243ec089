"""Take-home kit, scan verification, missed-dose, and alert API routes."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from .. import audit, barcodes, models, schemas
from ..database import commit_or_raise, get_db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..services import alerts, issuance, missed_doses, verification

# purpose: expose bottle issuance, consumption scanning, and the missed-dose sweep
# status: active
# depends_on: diversion.services.issuance, diversion.services.verification, diversion.services.missed_doses

router = APIRouter(prefix="/api/takehome", tags=["takehome"])


def _serialize_issued(bottle: models.TakeHomeBottle) -> schemas.IssuedBottle:
    return schemas.IssuedBottle(
        id=bottle.id,
        bottle_number=bottle.bottle_number,
        scheduled_date=bottle.scheduled_date,
        qr_code_data=bottle.qr_code_data,
        qr_code_hash=bottle.qr_code_hash,
        label_code=bottle.label_code,
    )


def _serialize_scan(outcome: verification.ScanOutcome) -> schemas.ScanResult:
    bottle = outcome.bottle
    return schemas.ScanResult(
        verified=outcome.verified,
        bottle_id=bottle.id if bottle else None,
        bottle_number=bottle.bottle_number if bottle else None,
        medication=bottle.medication_name if bottle else None,
        dose=bottle.dose_amount if bottle else None,
        failures=outcome.failures,
        message=outcome.message,
        scan_log_id=outcome.scan_log.id,
        verification_details=outcome.details,
    )


@router.post(
    "/qr-generate",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.KitIssueResponse,
)
def generate_kit(payload: schemas.KitIssueRequest, db: Session = Depends(get_db)):
    try:
        bottles = issuance.issue_kit(db, payload)
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
    return schemas.KitIssueResponse(
        patient_id=payload.patient_id,
        authorization_id=payload.authorization_id,
        medication_name=bottles[0].medication_name,
        dose_amount=bottles[0].dose_amount,
        bottles=[_serialize_issued(bottle) for bottle in bottles],
    )


@router.post("/verify-scan", response_model=schemas.ScanResult)
def verify_scan(
    payload: schemas.ScanRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        outcome = verification.verify_scan(db, payload, ip_address=audit.request_origin(request))
    except NotFoundError as exc:
        # the rejected attempt stays on record
        commit_or_raise(db)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    commit_or_raise(db)
    return _serialize_scan(outcome)


@router.post("/check-missed-doses", response_model=schemas.MissedDoseSweepResult)
def check_missed_doses(as_of: datetime | None = None, db: Session = Depends(get_db)):
    result = missed_doses.run_missed_dose_sweep(db, now=as_of)
    commit_or_raise(db)
    return schemas.MissedDoseSweepResult(**asdict(result))


@router.get("/bottles", response_model=list[schemas.BottleOut])
def list_bottles(
    patient_id: UUID | None = None,
    bottle_status: str | None = Query(None, alias="status"),
    scheduled_date: date | None = None,
    db: Session = Depends(get_db),
):
    return issuance.list_bottles(
        db,
        patient_id=patient_id,
        status=bottle_status,
        scheduled_date=scheduled_date,
    )


@router.get("/bottles/{bottle_id}/label")
def bottle_label(bottle_id: UUID, db: Session = Depends(get_db)):
    bottle = db.get(models.TakeHomeBottle, bottle_id)
    if bottle is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bottle not found")
    caption = f"#{bottle.bottle_number} {bottle.scheduled_date.isoformat()}"
    png = barcodes.render_bottle_label(bottle.label_code, caption=caption)
    return Response(content=png, media_type="image/png")


@router.get("/alerts", response_model=list[schemas.AlertOut])
def list_alerts(
    alert_status: str | None = Query(None, alias="status"),
    patient_id: UUID | None = None,
    db: Session = Depends(get_db),
):
    return alerts.list_alerts(db, status=alert_status, patient_id=patient_id)


@router.post("/alerts/{alert_id}/confirm", response_model=schemas.AlertConfirmResponse)
def confirm_alert(
    alert_id: UUID,
    payload: schemas.AlertConfirmRequest,
    db: Session = Depends(get_db),
):
    try:
        alert, report = alerts.confirm_alert(
            db,
            alert_id,
            confirmed_by=payload.confirmed_by,
            notes=payload.notes,
        )
    except NotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ConflictError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    commit_or_raise(db)
    return schemas.AlertConfirmResponse(
        alert=schemas.AlertOut.model_validate(alert),
        dea_reference=report.dea_reference_number,
    )


@router.post("/alerts/{alert_id}/resolve", response_model=schemas.AlertOut)
def resolve_alert(
    alert_id: UUID,
    payload: schemas.AlertResolveRequest,
    db: Session = Depends(get_db),
):
    try:
        alert = alerts.resolve_alert(
            db,
            alert_id,
            resolution_notes=payload.resolution_notes,
            resolved_by=payload.resolved_by,
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
    return alert
