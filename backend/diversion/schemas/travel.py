"""Pydantic schemas for temporary travel exceptions to the home geofence."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class TravelExceptionCreate(BaseModel):
    patient_id: UUID
    start_date: date
    end_date: date
    temporary_address: str | None = None
    temporary_latitude: float
    temporary_longitude: float
    temporary_geofence_radius_meters: float | None = None
    reason: str | None = None
    requested_by: str | None = None


class TravelExceptionDecision(BaseModel):
    action: Literal["approve", "deny"]
    decided_by: str


class TravelExceptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    patient_id: UUID
    start_date: date
    end_date: date
    temporary_address: str | None = None
    temporary_latitude: float | None = None
    temporary_longitude: float | None = None
    temporary_geofence_radius_meters: float | None = None
    reason: str | None = None
    status: str
    requested_by: str | None = None
    decided_by: str | None = None
    decided_at: datetime | None = None
    created_at: datetime | None = None
