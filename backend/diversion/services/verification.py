"""Consumption scan verification for take-home bottles."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import sqlalchemy as sa
from prometheus_client import Counter
from sqlalchemy.orm import Session

from .. import models, schemas
from ..config import TakeHomeSettings, as_utc, get_settings, local_now
from ..errors import NotFoundError, WindowViolationError
from . import alerts as alert_service
from .issuance import decode_token, hash_token

# purpose: validate a patient's consumption scan against bottle, window, and home geofence
# inputs: scanned token, scanning patient, GPS fix, scan time
# outputs: consumption ScanLogEntry for every attempt; bottle marked consumed on success
# status: active

logger = logging.getLogger(__name__)

SCAN_VERIFICATIONS = Counter(
    "takehome_scan_verifications_total",
    "Consumption scans by verification result",
    ["result"],
)

EARTH_RADIUS_METERS = 6371000


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _minutes_between(later: datetime, earlier: datetime) -> int:
    return math.ceil((later - earlier).total_seconds() / 60)


def _to_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def dosing_window_bounds(
    bottle: models.TakeHomeBottle,
    settings: TakeHomeSettings,
) -> tuple[datetime, datetime]:
    """Local opening and closing instants of the bottle's window; the closing minute is scannable."""

    start = bottle.dosing_window_start or settings.window_start
    end = bottle.dosing_window_end or settings.window_end
    opens = datetime.combine(bottle.scheduled_date, start, tzinfo=settings.timezone)
    closes = datetime.combine(bottle.scheduled_date, end, tzinfo=settings.timezone)
    return opens, closes


def window_has_closed(
    bottle: models.TakeHomeBottle,
    at: datetime,
    settings: TakeHomeSettings,
) -> bool:
    _, closes = dosing_window_bounds(bottle, settings)
    return _to_minute(at) > closes


def check_dosing_window(
    bottle: models.TakeHomeBottle,
    scanned_at: datetime,
    settings: TakeHomeSettings,
) -> None:
    """Raise WindowViolationError unless ``scanned_at`` (local) is inside the bottle's window.

    Comparison is by whole minute, so the closing minute itself still counts.
    """

    opens, closes = dosing_window_bounds(bottle, settings)
    scanned_minute = _to_minute(scanned_at)
    same_day = scanned_at.date() == bottle.scheduled_date
    if scanned_minute < opens:
        raise WindowViolationError(
            f"Dose is not scannable until {opens.isoformat()}",
            code="time_violation" if same_day else "date_violation",
            minutes_outside=_minutes_between(opens, scanned_minute),
        )
    if scanned_minute > closes:
        raise WindowViolationError(
            f"Dosing window closed at {closes.isoformat()}",
            code="time_violation" if same_day else "date_violation",
            minutes_outside=_minutes_between(scanned_minute, closes),
        )


@dataclass
class LocationCheck:
    enforced: bool
    verified: bool
    distance_meters: float | None = None
    address: models.PatientHomeAddress | None = None
    travel_exception: models.TravelException | None = None


def _approved_travel_exception(
    db: Session,
    patient_id,
    on: date,
) -> models.TravelException | None:
    return (
        db.query(models.TravelException)
        .filter(models.TravelException.patient_id == patient_id)
        .filter(models.TravelException.status == "approved")
        .filter(models.TravelException.start_date <= on)
        .filter(models.TravelException.end_date >= on)
        .filter(models.TravelException.temporary_latitude.isnot(None))
        .filter(models.TravelException.temporary_longitude.isnot(None))
        .order_by(models.TravelException.start_date.desc())
        .first()
    )


def check_location(
    db: Session,
    patient_id,
    gps: schemas.GeoLocation | None,
    settings: TakeHomeSettings,
    on: date | None = None,
) -> LocationCheck:
    """Check the fix against the patient's home geofence, then any approved travel exception for ``on``."""

    addresses = (
        db.query(models.PatientHomeAddress)
        .filter(models.PatientHomeAddress.patient_id == patient_id)
        .filter(models.PatientHomeAddress.is_active.is_(True))
        .filter(models.PatientHomeAddress.latitude.isnot(None))
        .filter(models.PatientHomeAddress.longitude.isnot(None))
        .order_by(models.PatientHomeAddress.address_type.asc())
        .all()
    )
    if not addresses:
        return LocationCheck(enforced=False, verified=True)
    if gps is None:
        return LocationCheck(enforced=True, verified=False)

    nearest: LocationCheck | None = None
    for address in addresses:
        distance = haversine_meters(gps.latitude, gps.longitude, address.latitude, address.longitude)
        radius = address.geofence_radius_meters or settings.default_geofence_meters
        if distance <= radius:
            return LocationCheck(enforced=True, verified=True, distance_meters=distance, address=address)
        if nearest is None or distance < nearest.distance_meters:
            nearest = LocationCheck(enforced=True, verified=False, distance_meters=distance, address=address)

    if on is not None:
        travel = _approved_travel_exception(db, patient_id, on)
        if travel is not None:
            distance = haversine_meters(
                gps.latitude, gps.longitude, travel.temporary_latitude, travel.temporary_longitude
            )
            radius = travel.temporary_geofence_radius_meters or settings.travel_geofence_meters
            if distance <= radius:
                return LocationCheck(
                    enforced=True, verified=True, distance_meters=distance, travel_exception=travel
                )
    return nearest


@dataclass
class ScanOutcome:
    verified: bool
    bottle: models.TakeHomeBottle | None
    scan_log: models.ScanLogEntry
    failures: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> str:
        if self.verified:
            return "Dose consumption verified successfully"
        return f"Verification failed: {', '.join(self.failures)}. Please return to clinic immediately."


def _record_scan(db: Session, **values) -> models.ScanLogEntry:
    scan_log = models.ScanLogEntry(scan_type="consumption", **values)
    db.add(scan_log)
    db.flush()
    return scan_log


def _gps_values(gps: schemas.GeoLocation | None) -> dict[str, Any]:
    if gps is None:
        return {}
    return {
        "latitude": gps.latitude,
        "longitude": gps.longitude,
        "accuracy_meters": gps.accuracy,
        "address_resolved": gps.address,
    }


def _token_matches(payload: dict[str, Any] | None, bottle: models.TakeHomeBottle) -> bool:
    if payload is None:
        return False
    return (
        payload.get("bottle_number") == bottle.bottle_number
        and payload.get("scheduled_date") == bottle.scheduled_date.isoformat()
        and payload.get("patient_id") == str(bottle.patient_id)
    )


def verify_scan(
    db: Session,
    payload: schemas.ScanRequest,
    *,
    now: datetime | None = None,
    ip_address: str | None = None,
    settings: TakeHomeSettings | None = None,
) -> ScanOutcome:
    """Verify a consumption scan, recording the attempt whatever the result.

    Raises NotFoundError when the token resolves to no bottle; the failed
    attempt has already been added to the session by then.
    """

    settings = settings or get_settings()
    scanned_local = local_now(settings, now)
    scanned_at = as_utc(scanned_local)
    gps = payload.gps_location
    token_hash = hash_token(payload.qr_code_data)

    bottle = (
        db.query(models.TakeHomeBottle)
        .filter(models.TakeHomeBottle.qr_code_hash == token_hash)
        .one_or_none()
    )
    if bottle is None:
        _record_scan(
            db,
            qr_code_hash=token_hash,
            patient_id=payload.patient_id,
            verification_passed=False,
            verification_failures=["unknown_token"],
            ip_address=ip_address,
            scanned_by=payload.scanned_by,
            scanned_at=scanned_at,
            **_gps_values(gps),
        )
        SCAN_VERIFICATIONS.labels("unknown_token").inc()
        logger.warning("Scan with unresolvable token from %s", ip_address)
        raise NotFoundError("Invalid QR code")

    base_values = {
        "bottle_id": bottle.id,
        "qr_code_hash": token_hash,
        "patient_id": payload.patient_id or bottle.patient_id,
        "ip_address": ip_address,
        "scanned_by": payload.scanned_by,
        "scanned_at": scanned_at,
        **_gps_values(gps),
    }

    # identity and lifecycle failures end the check early
    early_failure = None
    if not _token_matches(decode_token(payload.qr_code_data), bottle):
        early_failure = "token_mismatch"
    elif payload.patient_id is not None and payload.patient_id != bottle.patient_id:
        early_failure = "wrong_patient"
    elif bottle.status != "dispensed":
        early_failure = f"already_{bottle.status}"
    if early_failure:
        scan_log = _record_scan(
            db,
            verification_passed=False,
            verification_failures=[early_failure],
            **base_values,
        )
        if early_failure == "wrong_patient":
            alert_service.raise_alert(
                db,
                patient_id=bottle.patient_id,
                bottle_id=bottle.id,
                scan_log_id=scan_log.id,
                alert_type="wrong_patient_scan",
                severity="critical",
                title="Wrong Patient Scanned Medication",
                description=(
                    f"Patient {payload.patient_id} attempted to scan medication belonging to another patient"
                ),
                callback_required=True,
                dea_reportable=True,
                now=scanned_at,
            )
        SCAN_VERIFICATIONS.labels(early_failure).inc()
        return ScanOutcome(verified=False, bottle=bottle, scan_log=scan_log, failures=[early_failure])

    failures: list[str] = []
    minutes_outside = 0
    window_failure = None
    try:
        check_dosing_window(bottle, scanned_local, settings)
        within_window = True
    except WindowViolationError as exc:
        within_window = False
        minutes_outside = exc.minutes_outside
        window_failure = exc.code
        failures.append(exc.code)

    location = check_location(db, bottle.patient_id, gps, settings, on=scanned_local.date())
    if not location.verified:
        failures.append("location_violation")

    verified = not failures
    if verified:
        result = db.execute(
            sa.update(models.TakeHomeBottle)
            .where(
                models.TakeHomeBottle.id == bottle.id,
                models.TakeHomeBottle.status == "dispensed",
            )
            .values(
                status="consumed",
                compliance_status="compliant",
                consumed_at=scanned_at,
                consumption_latitude=gps.latitude if gps else None,
                consumption_longitude=gps.longitude if gps else None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            verified = False
            failures.append("already_processed")
        db.refresh(bottle)

    scan_log = _record_scan(
        db,
        is_within_home_geofence=location.verified if location.enforced else None,
        distance_from_home_meters=location.distance_meters,
        is_within_dosing_window=within_window,
        minutes_outside_window=minutes_outside,
        verification_passed=verified,
        verification_failures=failures,
        **base_values,
    )

    if "location_violation" in failures:
        expected = location.address.street_address if location.address else "Registered home address"
        distance = f"{location.distance_meters:.0f} meters" if location.distance_meters is not None else "an unknown distance"
        alert_service.raise_alert(
            db,
            patient_id=bottle.patient_id,
            bottle_id=bottle.id,
            scan_log_id=scan_log.id,
            alert_type="location_violation",
            severity="high",
            title="Location Violation - Dose Scanned Outside Home",
            description=f"Dose scanned {distance} from {expected}",
            callback_required=True,
            callback_hours=settings.callback_hours,
            clinical_review_required=True,
            now=scanned_at,
        )

    if window_failure is not None:
        needs_callback = minutes_outside > settings.window_callback_minutes
        alert_service.raise_alert(
            db,
            patient_id=bottle.patient_id,
            bottle_id=bottle.id,
            scan_log_id=scan_log.id,
            alert_type=window_failure,
            severity="medium",
            title="Dosing Time Violation" if window_failure == "time_violation" else "Dosing Date Violation",
            description=(
                f"Patient scanned dose {minutes_outside} minutes outside the dosing window "
                f"{bottle.dosing_window_start} - {bottle.dosing_window_end} on {bottle.scheduled_date.isoformat()}"
            ),
            callback_required=needs_callback,
            callback_hours=settings.callback_hours if needs_callback else None,
            clinical_review_required=True,
            now=scanned_at,
        )

    SCAN_VERIFICATIONS.labels("verified" if verified else "failed").inc()
    details = {
        "location": {
            "enforced": location.enforced,
            "verified": location.verified,
            "distance_from_home_meters": round(location.distance_meters) if location.distance_meters is not None else None,
            "travel_exception": location.travel_exception is not None,
        },
        "time": {
            "verified": within_window,
            "minutes_outside_window": minutes_outside,
            "dosing_window": f"{bottle.dosing_window_start} - {bottle.dosing_window_end}",
        },
    }
    return ScanOutcome(verified=verified, bottle=bottle, scan_log=scan_log, failures=failures, details=details)
