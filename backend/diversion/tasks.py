import os
from datetime import datetime
from celery import Celery
from celery.schedules import crontab
from celery.utils.log import get_task_logger

from .database import SessionLocal, commit_or_raise
from . import notify
from .services import missed_doses

# purpose: run the missed-dose sweep and notification delivery outside the request lifecycle
# inputs: CELERY_BROKER_URL, TESTING
# outputs: sweep summaries, delivery counts
# status: active

_logger = get_task_logger(__name__)

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
celery_app = Celery("tasks", broker=CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or os.getenv("TESTING") == "1"
)

celery_app.conf.beat_schedule = {
    "missed-dose-sweep": {
        "task": "diversion.tasks.sweep_missed_doses",
        "schedule": crontab(minute=0),
    },
    "patient-notification-dispatch": {
        "task": "diversion.tasks.dispatch_patient_notifications",
        "schedule": crontab(minute="*/15"),
    },
}


@celery_app.task(name="diversion.tasks.sweep_missed_doses")
def sweep_missed_doses(as_of: str | None = None):
    db = SessionLocal()
    try:
        result = missed_doses.run_missed_dose_sweep(
            db,
            now=datetime.fromisoformat(as_of) if as_of else None,
        )
        commit_or_raise(db)
    finally:
        db.close()
    if result.skipped:
        _logger.info("Missed-dose sweep skipped: %s", result.message)
    return {
        "swept_date": result.swept_date.isoformat(),
        "missed_doses_found": result.missed_doses_found,
        "alerts_created": result.alerts_created,
        "notifications_queued": result.notifications_queued,
        "holds_opened": result.holds_opened,
        "still_open": result.still_open,
        "skipped": result.skipped,
    }


@celery_app.task(name="diversion.tasks.dispatch_patient_notifications")
def dispatch_patient_notifications():
    db = SessionLocal()
    try:
        counts = notify.dispatch_queued_notifications(db)
    finally:
        db.close()
    _logger.info(
        "Dispatched %s patient notifications (%s skipped, %s failed, %s pending)",
        counts["sent"],
        counts["skipped"],
        counts["failed"],
        counts["pending"],
    )
    return counts


def enqueue_missed_dose_sweep(as_of: str | None = None):
    if celery_app.conf.task_always_eager:
        return sweep_missed_doses(as_of)
    return sweep_missed_doses.delay(as_of)
