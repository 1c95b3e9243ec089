"""Staff-approved travel exceptions to a patient's home geofence."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session

from .. import audit, models, schemas
from ..config import as_utc
from ..errors import ConflictError, NotFoundError, ValidationError

# purpose: record temporary dosing locations that verification accepts while approved
# inputs: travel requests, staff decisions
# outputs: TravelException rows and their audit trail
# status: active

PENDING = "pending"
DECISIONS = {"approve": "approved", "deny": "denied"}


def create_travel_exception(
    db: Session,
    payload: schemas.TravelExceptionCreate,
    *,
    now: datetime | None = None,
) -> models.TravelException:
    if payload.end_date < payload.start_date:
        raise ValidationError("end_date must not be before start_date")
    if not -90 <= payload.temporary_latitude <= 90 or not -180 <= payload.temporary_longitude <= 180:
        raise ValidationError("temporary location is not a valid coordinate")
    if payload.temporary_geofence_radius_meters is not None and payload.temporary_geofence_radius_meters <= 0:
        raise ValidationError("temporary_geofence_radius_meters must be positive")
    if db.get(models.Patient, payload.patient_id) is None:
        raise NotFoundError("Patient not found")
    timestamp = as_utc(now)
    travel = models.TravelException(
        **payload.model_dump(),
        status=PENDING,
        created_at=timestamp,
    )
    db.add(travel)
    db.flush()
    audit.log_action(
        db,
        payload.requested_by,
        "travel_exception.requested",
        target_type="travel_exception",
        target_id=travel.id,
        details={"start_date": travel.start_date.isoformat(), "end_date": travel.end_date.isoformat()},
        patient_id=travel.patient_id,
        created_at=timestamp,
    )
    return travel


def list_travel_exceptions(
    db: Session,
    *,
    patient_id: UUID | None = None,
    status: str | None = None,
) -> list[models.TravelException]:
    query = db.query(models.TravelException)
    if patient_id:
        query = query.filter(models.TravelException.patient_id == patient_id)
    if status:
        query = query.filter(models.TravelException.status == status)
    return query.order_by(models.TravelException.start_date.desc()).all()


def decide_travel_exception(
    db: Session,
    travel_id: UUID,
    *,
    action: str,
    decided_by: str,
    now: datetime | None = None,
    ip_address: str | None = None,
) -> models.TravelException:
    """Approve or deny a pending request; decisions are final."""

    if action not in DECISIONS:
        raise ValidationError(f"Unknown travel exception action: {action}")
    if not (decided_by or "").strip():
        raise ValidationError("decided_by is required")
    travel = db.get(models.TravelException, travel_id)
    if travel is None:
        raise NotFoundError("Travel exception not found")
    timestamp = as_utc(now)
    result = db.execute(
        sa.update(models.TravelException)
        .where(
            models.TravelException.id == travel_id,
            models.TravelException.status == PENDING,
        )
        .values(status=DECISIONS[action], decided_by=decided_by.strip(), decided_at=timestamp)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Travel exception has already been decided")
    db.refresh(travel)
    audit.log_action(
        db,
        travel.decided_by,
        f"travel_exception.{travel.status}",
        target_type="travel_exception",
        target_id=travel.id,
        patient_id=travel.patient_id,
        ip_address=ip_address,
        created_at=timestamp,
    )
    return travel
