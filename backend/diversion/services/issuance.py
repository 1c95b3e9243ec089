"""Take-home kit issuance: one signed, QR-encoded token per scheduled dose."""

from __future__ import annotations

import base64
import hashlib
import json
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from .. import audit, barcodes, models, schemas
from ..config import TakeHomeSettings, get_settings
from ..errors import NotFoundError, ValidationError
from . import holds as hold_service

# purpose: create the bottle rows and dispensing scan logs for a take-home kit
# inputs: KitIssueRequest payload, dispensing timestamp
# outputs: persisted TakeHomeBottle rows with tokens and scheduled dates
# status: active


def encode_token(payload: dict[str, Any]) -> str:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_token(token: str) -> dict[str, Any] | None:
    """Return the payload embedded in ``token`` or ``None`` if it is unreadable."""

    try:
        raw = base64.urlsafe_b64decode(token.encode("ascii"))
        payload = json.loads(raw)
    except (ValueError, UnicodeError):
        return None
    return payload if isinstance(payload, dict) else None


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def build_schedule(start_date: date, count: int) -> list[date]:
    return [start_date + timedelta(days=offset) for offset in range(count)]


def _validate_request(payload: schemas.KitIssueRequest) -> None:
    if payload.bottle_count is None or payload.bottle_count <= 0:
        raise ValidationError("bottle_count must be at least 1")
    if payload.start_date is None:
        raise ValidationError("start_date is required")
    if not (payload.medication_name or "").strip():
        raise ValidationError("medication_name is required")
    if payload.dose_amount is None or payload.dose_amount <= 0:
        raise ValidationError("dose_amount must be greater than zero")
    if payload.dosing_window and payload.dosing_window.start >= payload.dosing_window.end:
        raise ValidationError("dosing window must end after it starts")


def _check_authorization(db: Session, payload: schemas.KitIssueRequest) -> None:
    if payload.authorization_id is None:
        return
    order = db.get(models.TakeHomeOrder, payload.authorization_id)
    if order is None:
        return
    if order.patient_id != payload.patient_id:
        raise ValidationError("Authorization belongs to a different patient")
    if payload.bottle_count > order.days:
        raise ValidationError(
            f"Authorization allows {order.days} take-home days; {payload.bottle_count} requested"
        )


def issue_kit(
    db: Session,
    payload: schemas.KitIssueRequest,
    *,
    now: datetime | None = None,
    settings: TakeHomeSettings | None = None,
) -> list[models.TakeHomeBottle]:
    """Persist one bottle and one dispensing scan per scheduled dose.

    All rows are added to the caller's session; the caller commits once so a
    failure anywhere in the batch leaves no partial kit behind.
    """

    settings = settings or get_settings()
    issued_at = now or datetime.now(timezone.utc)
    _validate_request(payload)

    patient = db.get(models.Patient, payload.patient_id)
    if patient is None:
        raise NotFoundError("Patient not found")
    hold_service.ensure_no_active_hold(db, payload.patient_id)
    _check_authorization(db, payload)

    window_start = payload.dosing_window.start if payload.dosing_window else settings.window_start
    window_end = payload.dosing_window.end if payload.dosing_window else settings.window_end
    location = payload.dispensing_location
    medication = payload.medication_name.strip()

    bottles: list[models.TakeHomeBottle] = []
    for index, scheduled_date in enumerate(build_schedule(payload.start_date, payload.bottle_count)):
        token_payload = {
            "patient_id": str(payload.patient_id),
            "bottle_number": index + 1,
            "medication": medication,
            "dose": payload.dose_amount,
            "scheduled_date": scheduled_date.isoformat(),
            "nonce": secrets.token_hex(16),
            "issued_at": issued_at.isoformat(),
        }
        token = encode_token(token_payload)
        bottle = models.TakeHomeBottle(
            patient_id=payload.patient_id,
            organization_id=payload.organization_id,
            authorization_id=payload.authorization_id,
            bottle_number=index + 1,
            medication_name=medication,
            dose_amount=payload.dose_amount,
            scheduled_date=scheduled_date,
            dosing_window_start=window_start,
            dosing_window_end=window_end,
            dispensed_at=issued_at,
            dispensed_by=payload.dispensed_by,
            dispensing_latitude=location.latitude if location else None,
            dispensing_longitude=location.longitude if location else None,
            qr_code_data=token,
            qr_code_hash=hash_token(token),
            label_code=barcodes.generate_label_code(),
            status="dispensed",
            compliance_status="pending",
        )
        db.add(bottle)
        bottles.append(bottle)
    db.flush()

    for bottle in bottles:
        db.add(
            models.ScanLogEntry(
                bottle_id=bottle.id,
                qr_code_hash=bottle.qr_code_hash,
                patient_id=bottle.patient_id,
                scan_type="dispensing",
                latitude=location.latitude if location else None,
                longitude=location.longitude if location else None,
                accuracy_meters=location.accuracy if location else None,
                address_resolved=location.address if location else None,
                verification_passed=True,
                verification_failures=[],
                scanned_by=payload.dispensed_by,
                scanned_at=issued_at,
            )
        )

    audit.log_action(
        db,
        payload.dispensed_by,
        "takehome_kit.issued",
        target_type="takehome_authorization",
        target_id=payload.authorization_id,
        details={
            "bottle_count": payload.bottle_count,
            "medication": medication,
            "dose_amount": payload.dose_amount,
            "start_date": payload.start_date.isoformat(),
            "bottle_ids": [str(bottle.id) for bottle in bottles],
        },
        patient_id=payload.patient_id,
        created_at=issued_at,
    )
    return bottles


def list_bottles(
    db: Session,
    *,
    patient_id=None,
    status: str | None = None,
    scheduled_date: date | None = None,
) -> list[models.TakeHomeBottle]:
    query = db.query(models.TakeHomeBottle)
    if patient_id is not None:
        query = query.filter(models.TakeHomeBottle.patient_id == patient_id)
    if status:
        query = query.filter(models.TakeHomeBottle.status == status)
    if scheduled_date:
        query = query.filter(models.TakeHomeBottle.scheduled_date == scheduled_date)
    return query.order_by(
        models.TakeHomeBottle.scheduled_date.asc(),
        models.TakeHomeBottle.bottle_number.asc(),
    ).all()
