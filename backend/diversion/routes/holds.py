"""Compliance hold and follow-up review API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from .. import audit, models, schemas
from ..config import as_utc
from ..database import commit_or_raise, get_db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..services import holds

# purpose: let staff inspect, clear, sign, and override compliance holds
# status: active
# depends_on: diversion.services.holds

router = APIRouter(prefix="/api/takehome", tags=["holds"])


def _serialize_hold(hold: models.ComplianceHold) -> schemas.HoldOut:
    patient = hold.patient
    return schemas.HoldOut(
        id=hold.id,
        patient_id=hold.patient_id,
        patient_name=patient.display_name if patient else "Unknown Patient",
        mrn=patient.mrn if patient else None,
        hold_type=hold.hold_type,
        reason=hold.reason,
        severity=hold.severity,
        status=hold.status,
        requires_clearance_from=hold.requires_clearance_from or [],
        clearance_signatures=hold.clearance_signatures or [],
        created_by=hold.created_by,
        created_by_role=hold.created_by_role,
        notes=hold.notes,
        cleared_by=hold.cleared_by,
        cleared_at=hold.cleared_at,
        override_type=hold.override_type,
        overridden_by=hold.overridden_by,
        review_due_at=hold.review_due_at,
        created_at=hold.created_at,
    )


def _serialize_task(task: models.ComplianceReviewTask) -> schemas.ReviewTaskOut:
    return schemas.ReviewTaskOut(
        id=task.id,
        hold_id=task.hold_id,
        patient_id=task.patient_id,
        task_type=task.task_type,
        due_at=task.due_at,
        status=task.status,
        overdue=task.status == "pending" and as_utc(task.due_at) <= as_utc(),
        completed_by=task.completed_by,
        completed_at=task.completed_at,
        notes=task.notes,
    )


@router.get("/holds", response_model=list[schemas.HoldOut])
def list_holds(include_cleared: bool = False, db: Session = Depends(get_db)):
    return [_serialize_hold(hold) for hold in holds.list_holds(db, include_cleared=include_cleared)]


@router.post("/holds", status_code=status.HTTP_201_CREATED, response_model=schemas.HoldOut)
def open_hold(payload: schemas.HoldCreate, db: Session = Depends(get_db)):
    try:
        hold = holds.open_hold(db, payload)
    except ValidationError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except NotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    commit_or_raise(db)
    return _serialize_hold(hold)


@router.put("/holds", response_model=schemas.HoldOut)
def update_hold(
    payload: schemas.HoldUpdate,
    request: Request,
    db: Session = Depends(get_db),
):
    origin = audit.request_origin(request)
    try:
        if payload.action == "sign":
            hold = holds.sign_hold(
                db,
                payload.id,
                signer=payload.cleared_by,
                role=payload.role,
                notes=payload.notes,
                ip_address=origin,
            )
        else:
            hold = holds.clear_hold(
                db,
                payload.id,
                cleared_by=payload.cleared_by,
                notes=payload.notes,
                ip_address=origin,
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
    return _serialize_hold(hold)


@router.post("/holds/{hold_id}/override", response_model=schemas.HoldOverrideResponse)
def override_hold(
    hold_id: UUID,
    payload: schemas.HoldOverrideRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        outcome = holds.override_hold(
            db,
            hold_id,
            payload,
            ip_address=audit.request_origin(request),
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
    return schemas.HoldOverrideResponse(
        hold=_serialize_hold(outcome.hold),
        audit_id=outcome.audit_entry.id,
        review_task_id=outcome.review_task.id,
        review_due_at=outcome.review_task.due_at,
        dea_reference=outcome.dea_report.dea_reference_number if outcome.dea_report else None,
    )


@router.get("/reviews", response_model=list[schemas.ReviewTaskOut])
def list_reviews(due: bool = False, db: Session = Depends(get_db)):
    return [_serialize_task(task) for task in holds.list_review_tasks(db, due_only=due)]


@router.post("/reviews/{task_id}/complete", response_model=schemas.ReviewTaskOut)
def complete_review(
    task_id: UUID,
    payload: schemas.ReviewTaskComplete,
    db: Session = Depends(get_db),
):
    try:
        task = holds.complete_review_task(db, task_id, payload)
    except NotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ConflictError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    commit_or_raise(db)
    return _serialize_task(task)
