"""Travel exception API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from .. import audit, schemas
from ..database import commit_or_raise, get_db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..services import travel

# purpose: let staff request and decide temporary dosing locations
# status: active
# depends_on: diversion.services.travel

router = APIRouter(prefix="/api/takehome", tags=["travel"])


@router.get("/travel-exceptions", response_model=list[schemas.TravelExceptionOut])
def list_travel_exceptions(
    patient_id: UUID | None = None,
    status_filter: str | None = Query(None, alias="status"),
    db: Session = Depends(get_db),
):
    return travel.list_travel_exceptions(db, patient_id=patient_id, status=status_filter)


@router.post(
    "/travel-exceptions",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.TravelExceptionOut,
)
def create_travel_exception(payload: schemas.TravelExceptionCreate, db: Session = Depends(get_db)):
    try:
        record = travel.create_travel_exception(db, payload)
    except ValidationError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except NotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    commit_or_raise(db)
    return record


@router.put("/travel-exceptions/{travel_id}", response_model=schemas.TravelExceptionOut)
def decide_travel_exception(
    travel_id: UUID,
    payload: schemas.TravelExceptionDecision,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        record = travel.decide_travel_exception(
            db,
            travel_id,
            action=payload.action,
            decided_by=payload.decided_by,
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
    return record
