"""Pydantic schemas consolidating the diversion-control API contracts."""

# purpose: aggregate request and response schemas for FastAPI surfaces and services
# status: active

from .dea import (
    DEADashboard,
    DEAReportOut,
    DEAStatistics,
    DEASyncRequest,
    DEASyncResponse,
    RiskScoreOut,
)
from .holds import (
    HoldCreate,
    HoldOut,
    HoldOverrideRequest,
    HoldOverrideResponse,
    HoldUpdate,
    ReviewTaskComplete,
    ReviewTaskOut,
)
from .takehome import (
    AlertConfirmRequest,
    AlertConfirmResponse,
    AlertOut,
    AlertResolveRequest,
    AuditLogOut,
    AuditReportRow,
    BottleOut,
    DosingWindow,
    GeoLocation,
    IssuedBottle,
    KitIssueRequest,
    KitIssueResponse,
    MissedDoseSweepResult,
    ScanLogOut,
    ScanRequest,
    ScanResult,
    TakeHomeOrderCreate,
    TakeHomeOrderOut,
)
from .travel import (
    TravelExceptionCreate,
    TravelExceptionDecision,
    TravelExceptionOut,
)

__all__ = [
    "AlertConfirmRequest",
    "AlertConfirmResponse",
    "AlertOut",
    "AlertResolveRequest",
    "AuditLogOut",
    "AuditReportRow",
    "BottleOut",
    "DEADashboard",
    "DEAReportOut",
    "DEAStatistics",
    "DEASyncRequest",
    "DEASyncResponse",
    "DosingWindow",
    "GeoLocation",
    "HoldCreate",
    "HoldOut",
    "HoldOverrideRequest",
    "HoldOverrideResponse",
    "HoldUpdate",
    "IssuedBottle",
    "KitIssueRequest",
    "KitIssueResponse",
    "MissedDoseSweepResult",
    "ReviewTaskComplete",
    "ReviewTaskOut",
    "RiskScoreOut",
    "ScanLogOut",
    "ScanRequest",
    "ScanResult",
    "TakeHomeOrderCreate",
    "TakeHomeOrderOut",
    "TravelExceptionCreate",
    "TravelExceptionDecision",
    "TravelExceptionOut",
]
