import uuid
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Time,
    Text,
    Float,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime, time, timezone

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Patient(Base):
    __tablename__ = "patients"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    mrn = Column(String, unique=True)
    phone = Column(String)
    email = Column(String)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    home_addresses = relationship("PatientHomeAddress", back_populates="patient")

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class PatientHomeAddress(Base):
    __tablename__ = "patient_home_addresses"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False)
    address_type = Column(String, default="primary")
    street_address = Column(String)
    latitude = Column(Float)
    longitude = Column(Float)
    geofence_radius_meters = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True)

    patient = relationship("Patient", back_populates="home_addresses")


class TravelException(Base):
    __tablename__ = "takehome_travel_exceptions"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    temporary_address = Column(String, nullable=True)
    temporary_latitude = Column(Float, nullable=True)
    temporary_longitude = Column(Float, nullable=True)
    temporary_geofence_radius_meters = Column(Float, nullable=True)
    reason = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending, approved, denied
    requested_by = Column(String, nullable=True)
    decided_by = Column(String, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        sa.Index("ix_travel_exceptions_patient_dates", "patient_id", "start_date", "end_date"),
    )

    patient = relationship("Patient")


class TakeHomeOrder(Base):
    __tablename__ = "takehome_orders"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False)
    days = Column(Integer, nullable=False)
    risk_level = Column(String, nullable=False)  # low, standard, high
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    prescriber_id = Column(String, default="unknown")
    status = Column(String, default="pending")
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    patient = relationship("Patient")


class TakeHomeBottle(Base):
    __tablename__ = "takehome_bottles"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False)
    organization_id = Column(UUID(as_uuid=True), nullable=True)
    authorization_id = Column(UUID(as_uuid=True), nullable=True)
    bottle_number = Column(Integer, nullable=False)
    medication_name = Column(String, nullable=False)
    dose_amount = Column(Float, nullable=False)
    scheduled_date = Column(Date, nullable=False, index=True)
    dosing_window_start = Column(Time, default=time(6, 0))
    dosing_window_end = Column(Time, default=time(11, 0))
    dispensed_at = Column(DateTime(timezone=True), default=_utcnow)
    dispensed_by = Column(String)
    dispensing_latitude = Column(Float)
    dispensing_longitude = Column(Float)
    qr_code_data = Column(Text, nullable=False)
    qr_code_hash = Column(String(64), unique=True, nullable=False)
    label_code = Column(String(12), unique=True)
    status = Column(String, default="dispensed", nullable=False)  # dispensed, consumed, missed
    compliance_status = Column(String, default="pending", nullable=False)  # pending, compliant, non_compliant
    non_compliance_reason = Column(String)
    consumed_at = Column(DateTime(timezone=True))
    consumption_latitude = Column(Float)
    consumption_longitude = Column(Float)

    patient = relationship("Patient")
    scan_logs = relationship("ScanLogEntry", back_populates="bottle")


class ScanLogEntry(Base):
    __tablename__ = "takehome_scan_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bottle_id = Column(UUID(as_uuid=True), ForeignKey("takehome_bottles.id"), nullable=True)
    qr_code_hash = Column(String(64))
    patient_id = Column(UUID(as_uuid=True), nullable=True)
    scan_type = Column(String, nullable=False)  # dispensing, consumption
    latitude = Column(Float)
    longitude = Column(Float)
    accuracy_meters = Column(Float)
    address_resolved = Column(String)
    is_within_home_geofence = Column(Boolean)
    distance_from_home_meters = Column(Float)
    is_within_dosing_window = Column(Boolean)
    minutes_outside_window = Column(Integer, default=0)
    verification_passed = Column(Boolean, nullable=False)
    verification_failures = Column(JSON, default=list)
    ip_address = Column(String)
    scanned_by = Column(String)
    scanned_at = Column(DateTime(timezone=True), default=_utcnow)

    bottle = relationship("TakeHomeBottle", back_populates="scan_logs")


class ComplianceAlert(Base):
    __tablename__ = "takehome_compliance_alerts"
    __table_args__ = (
        sa.UniqueConstraint("bottle_id", "alert_type", name="uq_alert_bottle_type"),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False)
    bottle_id = Column(UUID(as_uuid=True), ForeignKey("takehome_bottles.id"), nullable=True)
    scan_log_id = Column(UUID(as_uuid=True), ForeignKey("takehome_scan_logs.id"), nullable=True)
    alert_type = Column(String, nullable=False)  # missed_dose, wrong_patient_scan, location_violation
    severity = Column(String, default="medium")
    alert_title = Column(String, nullable=False)
    alert_description = Column(Text)
    callback_required = Column(Boolean, default=False)
    callback_due_at = Column(DateTime(timezone=True))
    clinical_review_required = Column(Boolean, default=False)
    dea_reportable = Column(Boolean, default=False)
    notified = Column(Boolean, default=False)
    status = Column(String, default="open")  # open, confirmed, reported_to_dea, resolved
    resolution_notes = Column(Text)
    resolved_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    patient = relationship("Patient")
    bottle = relationship("TakeHomeBottle")


class ComplianceHold(Base):
    __tablename__ = "compliance_holds"
    __table_args__ = (
        sa.Index("ix_compliance_holds_patient_status", "patient_id", "status"),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False)
    hold_type = Column(String, nullable=False)
    reason = Column(Text, nullable=False)
    severity = Column(String, default="medium")
    status = Column(String, default="active", nullable=False)  # active, cleared
    requires_clearance_from = Column(JSON, default=list)
    clearance_signatures = Column(JSON, default=list)
    created_by = Column(String, default="System")
    created_by_role = Column(String, default="Provider")
    notes = Column(Text)
    cleared_by = Column(String)
    cleared_at = Column(DateTime(timezone=True))
    override_reason = Column(Text)
    override_type = Column(String)
    overridden_by = Column(String)
    review_due_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    patient = relationship("Patient")
    review_tasks = relationship("ComplianceReviewTask", back_populates="hold")


class ComplianceReviewTask(Base):
    __tablename__ = "compliance_review_tasks"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    hold_id = Column(UUID(as_uuid=True), ForeignKey("compliance_holds.id"), nullable=False)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False)
    task_type = Column(String, default="override_review")
    due_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, default="pending")  # pending, completed
    completed_by = Column(String)
    completed_at = Column(DateTime(timezone=True))
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    hold = relationship("ComplianceHold", back_populates="review_tasks")


class DEAReport(Base):
    __tablename__ = "dea_diversion_reports"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_type = Column(String, nullable=False)
    event_data = Column(JSON, default=dict)
    dea_reference_number = Column(String, unique=True, nullable=False)
    sync_status = Column(String, default="pending")  # pending, synced
    reported_at = Column(DateTime(timezone=True), default=_utcnow)
    synced_at = Column(DateTime(timezone=True))


class PatientNotification(Base):
    __tablename__ = "patient_notifications"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False)
    alert_id = Column(UUID(as_uuid=True), ForeignKey("takehome_compliance_alerts.id"), nullable=True)
    message = Column(Text, nullable=False)
    channel = Column(String)  # sms, email; chosen at dispatch
    status = Column(String, default="queued")  # queued, sent, skipped, failed
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    sent_at = Column(DateTime(timezone=True))

    patient = relationship("Patient")


class AuditLog(Base):
    __tablename__ = "audit_trail"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor = Column(String)
    action = Column(String, nullable=False)
    target_type = Column(String)
    target_id = Column(UUID(as_uuid=True))
    patient_id = Column(UUID(as_uuid=True), nullable=True)
    details = Column(JSON, default=dict)
    ip_address = Column(String)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
