"""Pydantic schemas for the DEA reporting bridge."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .takehome import AlertOut, ScanLogOut


class DEASyncRequest(BaseModel):
    event_type: str
    event_data: dict[str, Any] = Field(default_factory=dict)
    patient_id: UUID | None = None
    bottle_id: UUID | None = None
    scan_log_id: UUID | None = None
    alert_id: UUID | None = None


class DEAReportOut(BaseModel):
    id: UUID
    event_type: str
    event_data: dict[str, Any] = Field(default_factory=dict)
    dea_reference_number: str
    sync_status: str
    reported_at: datetime | None = None
    synced_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class DEASyncResponse(BaseModel):
    success: bool = True
    report: DEAReportOut
    dea_reference: str


class RiskScoreOut(BaseModel):
    patient_id: UUID
    patient_name: str
    risk_score: int
    risk_level: str
    compliance_score: int
    location_compliance_rate: float
    missed_doses_30_days: int
    failed_scans_30_days: int
    open_critical_alerts: int
    active_holds: int
    assessment_date: datetime


class DEAStatistics(BaseModel):
    total_reports: int
    synced_reports: int
    pending_reports: int
    total_alerts: int
    open_alerts: int
    resolved_alerts: int
    total_scans: int
    successful_scans: int
    failed_scans: int
    compliance_rate: int
    high_risk_patients: int


class DEADashboard(BaseModel):
    reports: list[DEAReportOut]
    alerts: list[AlertOut]
    scan_logs: list[ScanLogOut]
    risk_scores: list[RiskScoreOut]
    statistics: DEAStatistics
