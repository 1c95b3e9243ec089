"""Pydantic schemas for compliance holds and follow-up reviews."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field


class HoldCreate(BaseModel):
    patient_id: UUID
    hold_type: str
    reason: str
    severity: str = "medium"
    requires_clearance_from: list[str] = Field(default_factory=list)
    created_by: str | None = None
    created_by_role: str | None = None
    notes: str | None = None


class HoldUpdate(BaseModel):
    """Direct clearance or signature against an active hold."""

    id: UUID
    action: Literal["clear", "sign"] = "clear"
    cleared_by: str
    role: str | None = None
    notes: str | None = None


class HoldOverrideRequest(BaseModel):
    override_reason: str
    override_type: str = "clinical_judgment"
    overridden_by: str


class HoldOut(BaseModel):
    id: UUID
    patient_id: UUID
    patient_name: str
    mrn: str | None = None
    hold_type: str
    reason: str
    severity: str
    status: str
    requires_clearance_from: list[str] = Field(default_factory=list)
    clearance_signatures: list[dict[str, Any]] = Field(default_factory=list)
    created_by: str | None = None
    created_by_role: str | None = None
    notes: str | None = None
    cleared_by: str | None = None
    cleared_at: datetime | None = None
    override_type: str | None = None
    overridden_by: str | None = None
    review_due_at: datetime | None = None
    created_at: datetime | None = None


class HoldOverrideResponse(BaseModel):
    hold: HoldOut
    audit_id: UUID
    review_task_id: UUID
    review_due_at: datetime
    dea_reference: str | None = None


class ReviewTaskOut(BaseModel):
    id: UUID
    hold_id: UUID
    patient_id: UUID
    task_type: str
    due_at: datetime
    status: str
    overdue: bool = False
    completed_by: str | None = None
    completed_at: datetime | None = None
    notes: str | None = None


class ReviewTaskComplete(BaseModel):
    completed_by: str
    notes: str | None = None
