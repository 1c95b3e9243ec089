"""Pydantic schemas for take-home issuance, scanning, and missed-dose APIs."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class GeoLocation(BaseModel):
    latitude: float
    longitude: float
    accuracy: float | None = None
    address: str | None = None


class DosingWindow(BaseModel):
    start: time
    end: time


class KitIssueRequest(BaseModel):
    """Payload for issuing a take-home kit of scheduled bottles."""

    patient_id: UUID
    organization_id: UUID | None = None
    authorization_id: UUID | None = None
    medication_name: str | None = None
    dose_amount: float | None = None
    bottle_count: int
    start_date: date | None = None
    dispensed_by: str | None = None
    dispensing_location: GeoLocation | None = None
    dosing_window: DosingWindow | None = None


class IssuedBottle(BaseModel):
    id: UUID
    bottle_number: int
    scheduled_date: date
    qr_code_data: str
    qr_code_hash: str
    label_code: str | None = None


class KitIssueResponse(BaseModel):
    patient_id: UUID
    authorization_id: UUID | None = None
    medication_name: str
    dose_amount: float
    bottles: list[IssuedBottle]


class BottleOut(BaseModel):
    id: UUID
    patient_id: UUID
    organization_id: UUID | None = None
    authorization_id: UUID | None = None
    bottle_number: int
    medication_name: str
    dose_amount: float
    scheduled_date: date
    dosing_window_start: time | None = None
    dosing_window_end: time | None = None
    dispensed_at: datetime | None = None
    dispensed_by: str | None = None
    label_code: str | None = None
    status: str
    compliance_status: str
    non_compliance_reason: str | None = None
    consumed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ScanRequest(BaseModel):
    qr_code_data: str
    patient_id: UUID | None = None
    gps_location: GeoLocation | None = None
    scanned_by: str | None = None


class ScanResult(BaseModel):
    verified: bool
    bottle_id: UUID | None = None
    bottle_number: int | None = None
    medication: str | None = None
    dose: float | None = None
    failures: list[str] = Field(default_factory=list)
    message: str
    scan_log_id: UUID | None = None
    verification_details: dict[str, Any] = Field(default_factory=dict)


class MissedDoseSweepResult(BaseModel):
    missed_doses_found: int = 0
    alerts_created: int = 0
    notifications_queued: int = 0
    holds_opened: int = 0
    still_open: int = 0
    skipped: bool = False
    swept_date: date
    message: str | None = None


class AlertOut(BaseModel):
    id: UUID
    patient_id: UUID
    bottle_id: UUID | None = None
    scan_log_id: UUID | None = None
    alert_type: str
    severity: str
    alert_title: str
    alert_description: str | None = None
    callback_required: bool = False
    callback_due_at: datetime | None = None
    clinical_review_required: bool = False
    dea_reportable: bool = False
    notified: bool = False
    status: str
    resolution_notes: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class AlertResolveRequest(BaseModel):
    resolution_notes: str
    resolved_by: str | None = None


class AlertConfirmRequest(BaseModel):
    confirmed_by: str | None = None
    notes: str | None = None


class ScanLogOut(BaseModel):
    id: UUID
    bottle_id: UUID | None = None
    patient_id: UUID | None = None
    scan_type: str
    latitude: float | None = None
    longitude: float | None = None
    is_within_home_geofence: bool | None = None
    distance_from_home_meters: float | None = None
    is_within_dosing_window: bool | None = None
    minutes_outside_window: int | None = None
    verification_passed: bool
    verification_failures: list[str] | None = None
    scanned_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class TakeHomeOrderCreate(BaseModel):
    patient_id: UUID
    days: int
    risk_level: Literal["low", "standard", "high"]
    start_date: date
    prescriber_id: str | None = None


class TakeHomeOrderOut(BaseModel):
    id: UUID
    patient_id: UUID
    patient_name: str
    days: int
    risk_level: str
    start_date: date
    end_date: date
    prescriber_id: str | None = None
    status: str
    created_at: datetime | None = None


class AuditReportRow(BaseModel):
    action: str
    count: int


class AlertConfirmResponse(BaseModel):
    alert: AlertOut
    dea_reference: str


class AuditLogOut(BaseModel):
    id: UUID
    actor: str | None = None
    action: str
    target_type: str | None = None
    target_id: UUID | None = None
    patient_id: UUID | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
