"""Take-home order API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import commit_or_raise, get_db
from ..errors import NotFoundError, OrderIneligibleError
from ..services import orders

router = APIRouter(prefix="/api/takehome", tags=["orders"])


def _serialize_order(order: models.TakeHomeOrder) -> schemas.TakeHomeOrderOut:
    return schemas.TakeHomeOrderOut(
        id=order.id,
        patient_id=order.patient_id,
        patient_name=order.patient.display_name if order.patient else "Unknown Patient",
        days=order.days,
        risk_level=order.risk_level,
        start_date=order.start_date,
        end_date=order.end_date,
        prescriber_id=order.prescriber_id,
        status=order.status,
        created_at=order.created_at,
    )


@router.get("/orders", response_model=list[schemas.TakeHomeOrderOut])
def list_orders(db: Session = Depends(get_db)):
    return [_serialize_order(order) for order in orders.list_orders(db)]


@router.post("/orders", status_code=status.HTTP_201_CREATED, response_model=schemas.TakeHomeOrderOut)
def create_order(payload: schemas.TakeHomeOrderCreate, db: Session = Depends(get_db)):
    try:
        order = orders.create_order(db, payload)
    except OrderIneligibleError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(exc), "reasons": exc.reasons},
        ) from exc
    except NotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    commit_or_raise(db)
    return _serialize_order(order)
