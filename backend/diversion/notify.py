import logging
import os
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Protocol

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

EMAIL_OUTBOX: list[tuple[str, str, str]] = []
SMS_OUTBOX: list[tuple[str, str]] = []


def send_email(to_email: str, subject: str, message: str) -> bool:
    """Send one email; returns False when no SMTP server is configured."""

    if os.getenv("TESTING") == "1":
        EMAIL_OUTBOX.append((to_email, subject, message))
        return True
    server = os.getenv("SMTP_SERVER")
    if not server:
        return False
    from_addr = os.getenv("EMAIL_FROM", "noreply@example.com")
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_email
    msg.set_content(message)
    with smtplib.SMTP(server) as s:
        s.send_message(msg)
    return True


def send_sms(to_number: str, message: str) -> bool:
    """Send one text message; returns False when it was not handed to a provider."""

    if os.getenv("TESTING") == "1":
        SMS_OUTBOX.append((to_number, message))
        return True
    provider = os.getenv("SMS_PROVIDER")
    # no gateway adapter is wired yet; email remains the fallback channel
    logger.warning("SMS provider %s cannot deliver; message to %s not sent", provider or "(unset)", to_number)
    return False


class NotificationSink(Protocol):
    """Outbound channel for patient-facing compliance messages."""

    def enqueue(
        self,
        patient_id,
        message: str,
        *,
        alert: models.ComplianceAlert | None = None,
    ) -> None: ...


class DatabaseNotificationSink:
    """Queue notifications as rows for the dispatch task to deliver."""

    def __init__(self, db: Session):
        self.db = db

    def enqueue(self, patient_id, message, *, alert=None):
        notification = models.PatientNotification(
            patient_id=patient_id,
            alert_id=getattr(alert, "id", None),
            message=message,
            status="queued",
        )
        self.db.add(notification)
        self.db.flush()
        return notification


def _deliver(notification: models.PatientNotification) -> str | None:
    """Try each contact channel in order; returns the channel that accepted the message."""

    patient = notification.patient
    if patient.phone and send_sms(patient.phone, notification.message):
        return "sms"
    if patient.email and send_email(patient.email, "Take-home dose reminder", notification.message):
        return "email"
    return None


def dispatch_queued_notifications(db: Session) -> dict[str, int]:
    """Deliver queued patient notifications over the first available channel.

    Each notification is committed on its own so a transport failure never
    re-sends messages that already went out. Rows with a contact but no
    working channel stay queued for the next run.
    """

    queued = (
        db.query(models.PatientNotification)
        .filter(models.PatientNotification.status == "queued")
        .order_by(models.PatientNotification.created_at.asc())
        .all()
    )
    counts = {"sent": 0, "skipped": 0, "failed": 0, "pending": 0}
    for notification in queued:
        patient = notification.patient
        if patient is None or not (patient.phone or patient.email):
            notification.status = "skipped"
            counts["skipped"] += 1
            db.commit()
            continue
        try:
            channel = _deliver(notification)
        except (smtplib.SMTPException, OSError):
            logger.exception("Delivery of notification %s failed", notification.id)
            notification.status = "failed"
            counts["failed"] += 1
            db.commit()
            continue
        if channel is None:
            counts["pending"] += 1
            continue
        notification.channel = channel
        notification.status = "sent"
        notification.sent_at = datetime.now(timezone.utc)
        counts["sent"] += 1
        db.commit()
    return counts
