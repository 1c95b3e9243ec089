"""Environment-driven settings for the take-home workflow."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

# purpose: resolve workflow tunables from the environment at call time
# inputs: TAKEHOME_* environment variables
# outputs: frozen TakeHomeSettings snapshot
# status: active


def _parse_time(value: str) -> time:
    hour, _, minute = value.partition(":")
    return time(int(hour), int(minute or 0))


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_roles(value: str) -> tuple[str, ...]:
    return tuple(role.strip() for role in value.split(",") if role.strip())


@dataclass(frozen=True)
class TakeHomeSettings:
    timezone: ZoneInfo
    missed_dose_cutoff: time
    window_start: time
    window_end: time
    callback_hours: int
    window_callback_minutes: int
    override_review_hours: int
    override_min_reason: int
    missed_dose_hold_threshold: int
    hold_clearance_roles: tuple[str, ...]
    dea_report_on_override: bool
    default_geofence_meters: float
    travel_geofence_meters: float
    max_days_by_risk: dict[str, int]


def get_settings() -> TakeHomeSettings:
    return TakeHomeSettings(
        timezone=ZoneInfo(os.getenv("TAKEHOME_TIMEZONE", "America/New_York")),
        missed_dose_cutoff=_parse_time(os.getenv("TAKEHOME_MISSED_DOSE_CUTOFF", "11:00")),
        window_start=_parse_time(os.getenv("TAKEHOME_WINDOW_START", "06:00")),
        window_end=_parse_time(os.getenv("TAKEHOME_WINDOW_END", "11:00")),
        callback_hours=int(os.getenv("TAKEHOME_CALLBACK_HOURS", "24")),
        window_callback_minutes=int(os.getenv("TAKEHOME_WINDOW_CALLBACK_MINUTES", "120")),
        override_review_hours=int(os.getenv("TAKEHOME_OVERRIDE_REVIEW_HOURS", "24")),
        override_min_reason=int(os.getenv("TAKEHOME_OVERRIDE_MIN_REASON", "20")),
        missed_dose_hold_threshold=int(os.getenv("TAKEHOME_MISSED_DOSE_HOLD_THRESHOLD", "2")),
        hold_clearance_roles=_parse_roles(os.getenv("TAKEHOME_HOLD_CLEARANCE_ROLES", "medical_director")),
        dea_report_on_override=_parse_bool(os.getenv("TAKEHOME_DEA_REPORT_ON_OVERRIDE", "true")),
        default_geofence_meters=float(os.getenv("TAKEHOME_DEFAULT_GEOFENCE_METERS", "150")),
        travel_geofence_meters=float(os.getenv("TAKEHOME_TRAVEL_GEOFENCE_METERS", "500")),
        max_days_by_risk={
            "high": int(os.getenv("TAKEHOME_MAX_DAYS_HIGH", "3")),
            "standard": int(os.getenv("TAKEHOME_MAX_DAYS_STANDARD", "7")),
            "low": int(os.getenv("TAKEHOME_MAX_DAYS_LOW", "14")),
        },
    )


def local_now(settings: TakeHomeSettings, now: datetime | None = None) -> datetime:
    """Return ``now`` in facility-local time; naive values are taken as local."""

    if now is None:
        return datetime.now(settings.timezone)
    if now.tzinfo is None:
        return now.replace(tzinfo=settings.timezone)
    return now.astimezone(settings.timezone)


def as_utc(value: datetime | None = None) -> datetime:
    """Normalise a timestamp to aware UTC; naive values are taken as UTC."""

    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
