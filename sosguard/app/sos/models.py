"""
models.py — Shared data structures for the SOS alert lifecycle.

Defines:
    • AlertStatus    — pending / sent / cancelled
    • VerifyOutcome  — result of a cancellation attempt
    • Location       — validated coordinate pair
    • Subject        — the person who can raise an alert
    • Alert          — a single SOS event

═══════════════════════════════════════════════════════════════════════════
ALERT STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

                    countdown fires, not disarmed
        ┌─────────┐ ─────────────────────────────▶ ┌──────┐
        │ pending │                                │ sent │
        └─────────┘ ─────────────────────────────▶ └──────┘
                    correct code within window     ┌───────────┐
                    ─────────────────────────────▶ │ cancelled │
                                                   └───────────┘

`sent` and `cancelled` are terminal and mutually exclusive. Only the
lifecycle manager writes `status`, always through a conditional
"set X where status = pending" store update.

Subject identity and the verification code are SNAPSHOTTED into the
alert at trigger time: later profile or PIN changes never affect an
alert that is already in flight, nor how it is displayed afterwards.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sosguard.app.core.errors import InvalidLocationError


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertStatus(str, Enum):
    """Alert lifecycle states."""
    PENDING   = "pending"     # countdown running, cancellable
    SENT      = "sent"        # escalated to the monitoring party
    CANCELLED = "cancelled"   # stopped with the correct code

    @property
    def is_terminal(self) -> bool:
        return self is not AlertStatus.PENDING


class VerifyOutcome(str, Enum):
    """Non-error results of a cancellation attempt."""
    CANCELLED      = "cancelled"
    INCORRECT_CODE = "incorrect_code"


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def generate_alert_id() -> str:
    return f"SOS-{uuid.uuid4().hex[:12].upper()}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Location:
    """
    A validated WGS-84 coordinate pair.

    Use `Location.of()` for untrusted input: it rejects non-numeric,
    non-finite and out-of-range values with InvalidLocationError.
    """
    latitude: float
    longitude: float

    @classmethod
    def of(cls, latitude: Any, longitude: Any) -> "Location":
        try:
            lat = float(latitude)
            lng = float(longitude)
        except (TypeError, ValueError):
            raise InvalidLocationError(latitude, longitude, "coordinates must be numbers")

        if not (math.isfinite(lat) and math.isfinite(lng)):
            raise InvalidLocationError(latitude, longitude, "coordinates must be finite")
        if not -90.0 <= lat <= 90.0:
            raise InvalidLocationError(latitude, longitude, "latitude must be within [-90, 90]")
        if not -180.0 <= lng <= 180.0:
            raise InvalidLocationError(latitude, longitude, "longitude must be within [-180, 180]")
        return cls(lat, lng)

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.latitude, "lng": self.longitude}


@dataclass(frozen=True)
class Subject:
    """
    A person who can raise an alert.

    Attributes
    ----------
    subject_id : str
        Unique identifier.
    name : str
        Display name shown to the monitoring party.
    contact : str
        Phone number.
    verification_code : str
        Dedicated SOS PIN used to cancel an alert. Not a login password.
    address : str | None
        Home address, informational only.
    """
    subject_id: str
    name: str
    contact: str
    verification_code: str
    address: Optional[str] = None


@dataclass
class Alert:
    """A single SOS event tracked through pending → sent | cancelled."""
    subject_id: str
    subject_name: str
    subject_contact: str
    location: Location
    verification_code: str = field(repr=False)
    alert_id: str = field(default_factory=generate_alert_id)
    status: AlertStatus = AlertStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None

    @classmethod
    def for_subject(cls, subject: Subject, location: Location) -> "Alert":
        """Build a pending alert from a snapshot of the subject."""
        return cls(
            subject_id=subject.subject_id,
            subject_name=subject.name,
            subject_contact=subject.contact,
            location=location,
            verification_code=subject.verification_code,
        )

    def to_dict(self) -> Dict[str, Any]:
        # verification_code is never serialized
        return {
            "alert_id": self.alert_id,
            "subject_id": self.subject_id,
            "subject_name": self.subject_name,
            "subject_contact": self.subject_contact,
            "location": self.location.to_dict(),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "resolved_at": (
                self.resolved_at.isoformat() if self.resolved_at else None
            ),
        }
