"""Take-home order authorizations and their eligibility rules."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.orm import Session, joinedload

from .. import audit, models, schemas
from ..config import TakeHomeSettings, as_utc, get_settings
from ..errors import NotFoundError, OrderIneligibleError
from . import holds as hold_service


def eligibility_reasons(
    db: Session,
    payload: schemas.TakeHomeOrderCreate,
    settings: TakeHomeSettings,
) -> list[str]:
    reasons = []
    if payload.days < 1:
        reasons.append("days must be at least 1")
    max_days = settings.max_days_by_risk.get(payload.risk_level)
    if max_days is not None and payload.days > max_days:
        reasons.append(
            f"Risk level {payload.risk_level} allows at most {max_days} take-home days; {payload.days} requested"
        )
    if hold_service.has_active_hold(db, payload.patient_id):
        reasons.append("Patient has an active compliance hold")
    return reasons


def list_orders(db: Session) -> list[models.TakeHomeOrder]:
    return (
        db.query(models.TakeHomeOrder)
        .options(joinedload(models.TakeHomeOrder.patient))
        .order_by(models.TakeHomeOrder.created_at.desc())
        .all()
    )


def create_order(
    db: Session,
    payload: schemas.TakeHomeOrderCreate,
    *,
    now: datetime | None = None,
    settings: TakeHomeSettings | None = None,
) -> models.TakeHomeOrder:
    """Create a pending order after checking take-home eligibility."""

    settings = settings or get_settings()
    if db.get(models.Patient, payload.patient_id) is None:
        raise NotFoundError("Patient not found")
    reasons = eligibility_reasons(db, payload, settings)
    if reasons:
        raise OrderIneligibleError(reasons)

    timestamp = as_utc(now)
    order = models.TakeHomeOrder(
        patient_id=payload.patient_id,
        days=payload.days,
        risk_level=payload.risk_level,
        start_date=payload.start_date,
        end_date=payload.start_date + timedelta(days=payload.days - 1),
        prescriber_id=payload.prescriber_id or "unknown",
        status="pending",
        created_at=timestamp,
    )
    db.add(order)
    db.flush()
    audit.log_action(
        db,
        payload.prescriber_id,
        "takehome_order.created",
        target_type="takehome_order",
        target_id=order.id,
        details={"days": order.days, "risk_level": order.risk_level},
        patient_id=order.patient_id,
        created_at=timestamp,
    )
    return order
