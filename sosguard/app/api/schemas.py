"""
Pydantic schemas for the SOS API.

Separated from the route handlers so they are reusable across the
codebase (background workers, tests).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from sosguard.app.sos.models import Alert, AlertStatus, VerifyOutcome


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class TriggerAlertRequest(BaseModel):
    """Raise an SOS. Location comes from browser geolocation."""
    subject_id: str = Field(..., min_length=1, examples=["U-1001"])
    latitude: float = Field(
        ..., ge=-90.0, le=90.0,
        description="Latitude in decimal degrees",
        examples=[12.97],
    )
    longitude: float = Field(
        ..., ge=-180.0, le=180.0,
        description="Longitude in decimal degrees",
        examples=[77.59],
    )


class VerifyCodeRequest(BaseModel):
    """Cancel a pending alert with the subject's SOS PIN."""
    code: str = Field(..., min_length=1, max_length=64, examples=["4321"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class LocationOut(BaseModel):
    lat: float
    lng: float


class AlertOut(BaseModel):
    """An alert as shown to callers. Never carries the verification code."""
    alert_id: str
    subject_id: str
    subject_name: str
    subject_contact: str
    location: LocationOut
    status: AlertStatus
    created_at: datetime
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertOut":
        return cls(
            alert_id=alert.alert_id,
            subject_id=alert.subject_id,
            subject_name=alert.subject_name,
            subject_contact=alert.subject_contact,
            location=LocationOut(lat=alert.location.latitude, lng=alert.location.longitude),
            status=alert.status,
            created_at=alert.created_at,
            resolved_at=alert.resolved_at,
        )


class TriggerAlertResponse(AlertOut):
    grace_period_seconds: float


class VerifyCodeResponse(BaseModel):
    alert_id: str
    outcome: VerifyOutcome
    message: str
