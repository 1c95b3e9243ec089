"""Missed-dose sweep over today's dispensed-but-unconsumed bottles."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

import sqlalchemy as sa
from prometheus_client import Counter
from sqlalchemy.orm import Session

from .. import models, schemas
from ..config import TakeHomeSettings, as_utc, get_settings, local_now
from ..notify import DatabaseNotificationSink, NotificationSink
from . import alerts as alert_service
from . import holds as hold_service
from .verification import dosing_window_bounds, window_has_closed

# purpose: flag unscanned doses once the dosing window closes and open follow-up work
# inputs: sweep time, notification sink, workflow settings
# outputs: missed bottles, missed_dose alerts, queued notifications, automatic holds
# status: active

logger = logging.getLogger(__name__)

MISSED_DOSES = Counter("takehome_missed_doses_total", "Bottles transitioned to missed by the sweep")

AUTO_HOLD_TYPE = "missed_doses"
HOLD_LOOKBACK_DAYS = 30


@dataclass
class SweepResult:
    swept_date: date
    missed_doses_found: int = 0
    alerts_created: int = 0
    notifications_queued: int = 0
    holds_opened: int = 0
    still_open: int = 0
    skipped: bool = False
    message: str | None = None


def _mark_missed(db: Session, bottle: models.TakeHomeBottle, reason: str) -> bool:
    result = db.execute(
        sa.update(models.TakeHomeBottle)
        .where(
            models.TakeHomeBottle.id == bottle.id,
            models.TakeHomeBottle.status == "dispensed",
        )
        .values(status="missed", compliance_status="non_compliant", non_compliance_reason=reason)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    db.refresh(bottle)
    return True


def _open_auto_hold(
    db: Session,
    patient_id,
    today: date,
    timestamp: datetime,
    settings: TakeHomeSettings,
) -> bool:
    missed_count = (
        db.query(sa.func.count(models.TakeHomeBottle.id))
        .filter(models.TakeHomeBottle.patient_id == patient_id)
        .filter(models.TakeHomeBottle.status == "missed")
        .filter(models.TakeHomeBottle.scheduled_date > today - timedelta(days=HOLD_LOOKBACK_DAYS))
        .scalar()
    )
    if missed_count < settings.missed_dose_hold_threshold:
        return False
    if hold_service.has_active_hold(db, patient_id, AUTO_HOLD_TYPE):
        return False
    hold_service.open_hold(
        db,
        schemas.HoldCreate(
            patient_id=patient_id,
            hold_type=AUTO_HOLD_TYPE,
            reason=f"{missed_count} missed take-home doses in the last {HOLD_LOOKBACK_DAYS} days",
            severity="high",
            requires_clearance_from=list(settings.hold_clearance_roles),
            created_by="system",
            created_by_role="system",
        ),
        now=timestamp,
    )
    return True


def run_missed_dose_sweep(
    db: Session,
    *,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
    settings: TakeHomeSettings | None = None,
) -> SweepResult:
    """Transition today's unscanned bottles to missed once the cutoff has passed.

    Safe to re-run: only bottles still ``dispensed`` are touched, and alerts
    are unique per (bottle, alert type).
    """

    settings = settings or get_settings()
    sink = sink or DatabaseNotificationSink(db)
    current = local_now(settings, now)
    timestamp = as_utc(current)
    today = current.date()
    result = SweepResult(swept_date=today)

    if current.time() < settings.missed_dose_cutoff:
        result.skipped = True
        result.message = (
            f"Dosing window still open; sweep runs after {settings.missed_dose_cutoff.strftime('%H:%M')}"
        )
        return result

    candidates = (
        db.query(models.TakeHomeBottle)
        .filter(models.TakeHomeBottle.scheduled_date == today)
        .filter(models.TakeHomeBottle.status == "dispensed")
        .filter(models.TakeHomeBottle.compliance_status != "compliant")
        .order_by(models.TakeHomeBottle.patient_id, models.TakeHomeBottle.bottle_number)
        .all()
    )
    affected_patients = []
    for bottle in candidates:
        # custom windows may close after the global cutoff
        if not window_has_closed(bottle, current, settings):
            result.still_open += 1
            continue
        _, closes = dosing_window_bounds(bottle, settings)
        reason = f"Dose not scanned before {closes.strftime('%H:%M')} window close"
        if not _mark_missed(db, bottle, reason):
            continue
        result.missed_doses_found += 1
        if bottle.patient_id not in affected_patients:
            affected_patients.append(bottle.patient_id)

        alert = alert_service.raise_alert(
            db,
            patient_id=bottle.patient_id,
            bottle_id=bottle.id,
            alert_type="missed_dose",
            severity="high",
            title="Missed Take-Home Dose",
            description=(
                f"Bottle #{bottle.bottle_number} ({bottle.medication_name} {bottle.dose_amount:g}) "
                f"scheduled for {bottle.scheduled_date.isoformat()} was not scanned"
            ),
            callback_required=True,
            callback_hours=settings.callback_hours,
            clinical_review_required=True,
            now=timestamp,
        )
        if alert is None:
            continue
        result.alerts_created += 1
        sink.enqueue(
            bottle.patient_id,
            (
                f"You missed your scheduled take-home dose of {bottle.medication_name} "
                f"for {bottle.scheduled_date.isoformat()}. Please contact the clinic today."
            ),
            alert=alert,
        )
        alert.notified = True
        result.notifications_queued += 1

    for patient_id in affected_patients:
        if _open_auto_hold(db, patient_id, today, timestamp, settings):
            result.holds_opened += 1
    db.flush()

    MISSED_DOSES.inc(result.missed_doses_found)
    logger.info(
        "Missed-dose sweep for %s: %s missed, %s alerts, %s holds",
        today,
        result.missed_doses_found,
        result.alerts_created,
        result.holds_opened,
    )
    return result
