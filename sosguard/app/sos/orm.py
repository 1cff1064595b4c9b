"""
ORM tables for the SOS service.

═══════════════════════════════════════════════════════════════════════════
DATABASE SCHEMA
═══════════════════════════════════════════════════════════════════════════

Table: sos_subjects
─────────────────────────────────────────────────────────────────────────────
| Column            | Type          | Description                          |
|-------------------|---------------|--------------------------------------|
| id                | VARCHAR(64)   | Subject identifier (PK)              |
| name              | VARCHAR(200)  | Display name                         |
| phone             | VARCHAR(32)   | Contact number (unique)              |
| address           | TEXT          | Home address (nullable)              |
| sos_pin           | VARCHAR(64)   | Cancellation code                    |
| created_at        | TIMESTAMP     | Registration time                    |
─────────────────────────────────────────────────────────────────────────────

Table: sos_alerts
─────────────────────────────────────────────────────────────────────────────
| Column            | Type          | Description                          |
|-------------------|---------------|--------------------------------------|
| id                | VARCHAR(32)   | Alert identifier (PK)                |
| subject_id        | VARCHAR(64)   | Who raised it (no FK: snapshot)      |
| subject_name      | VARCHAR(200)  | Name at trigger time                 |
| subject_contact   | VARCHAR(32)   | Phone at trigger time                |
| latitude          | FLOAT         | -90 to 90                            |
| longitude         | FLOAT         | -180 to 180                          |
| verification_code | VARCHAR(64)   | PIN at trigger time                  |
| status            | VARCHAR(16)   | pending / sent / cancelled           |
| created_at        | TIMESTAMP     | Trigger time                         |
| resolved_at       | TIMESTAMP     | Terminal transition time (nullable)  |
─────────────────────────────────────────────────────────────────────────────

Constraints:
- INDEX (status, created_at) — the monitoring listing filters on
  status = 'sent' and sorts newest first
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sosguard.app.core.database import Base
from sosguard.app.sos.models import AlertStatus, utcnow


class SubjectRecord(Base):
    __tablename__ = "sos_subjects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    phone: Mapped[str] = mapped_column(String(32), unique=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sos_pin: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AlertRecord(Base):
    __tablename__ = "sos_alerts"
    __table_args__ = (
        Index("ix_sos_alerts_status_created_at", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(64), index=True)
    subject_name: Mapped[str] = mapped_column(String(200))
    subject_contact: Mapped[str] = mapped_column(String(32))
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    verification_code: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), default=AlertStatus.PENDING.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
