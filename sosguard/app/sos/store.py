"""
store.py — Alert record store.

The lifecycle manager talks to storage only through `AlertStore`:

    create(alert)                                  → raises DuplicateAlertError
    get(alert_id)                                  → raises AlertNotFoundError
    conditional_update_status(id, expected, new)   → bool (compare-and-set)
    list_by_status(status, newest_first=True)      → List[Alert]

`conditional_update_status` is the final arbiter of every status
transition. It must be atomic at the store level: a False return means
the record was not in `expected` and nothing was written.

Implementations:
    • InMemoryAlertStore   — lock-guarded dict (tests, single-process dev)
    • SqlAlchemyAlertStore — one UPDATE ... WHERE status = :expected per
                             transition; rowcount decides the winner
"""

from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sosguard.app.core.errors import AlertNotFoundError, DuplicateAlertError
from sosguard.app.sos.models import Alert, AlertStatus, Location, utcnow
from sosguard.app.sos.orm import AlertRecord

logger = logging.getLogger(__name__)


class AlertStore(ABC):
    """Durable keyed storage for alerts."""

    @abstractmethod
    async def create(self, alert: Alert) -> str:
        ...

    @abstractmethod
    async def get(self, alert_id: str) -> Alert:
        ...

    @abstractmethod
    async def conditional_update_status(
        self,
        alert_id: str,
        expected: AlertStatus,
        new: AlertStatus,
    ) -> bool:
        ...

    @abstractmethod
    async def list_by_status(
        self,
        status: AlertStatus,
        *,
        newest_first: bool = True,
    ) -> List[Alert]:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# In-Memory Store
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryAlertStore(AlertStore):
    """
    Process-local store. Returned alerts are copies, so callers can never
    mutate stored state behind the store's back.
    """

    def __init__(self) -> None:
        self._alerts: Dict[str, Alert] = {}
        self._order: Dict[str, int] = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()

    async def create(self, alert: Alert) -> str:
        with self._lock:
            if alert.alert_id in self._alerts:
                raise DuplicateAlertError(alert.alert_id)
            self._alerts[alert.alert_id] = replace(alert)
            self._order[alert.alert_id] = next(self._seq)
        return alert.alert_id

    async def get(self, alert_id: str) -> Alert:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            return replace(alert)

    async def conditional_update_status(
        self,
        alert_id: str,
        expected: AlertStatus,
        new: AlertStatus,
    ) -> bool:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status is not expected:
                return False
            alert.status = new
            alert.resolved_at = utcnow() if new.is_terminal else None
            return True

    async def list_by_status(
        self,
        status: AlertStatus,
        *,
        newest_first: bool = True,
    ) -> List[Alert]:
        with self._lock:
            matches = [
                (a.created_at, self._order[a.alert_id], replace(a))
                for a in self._alerts.values()
                if a.status is status
            ]
        matches.sort(key=lambda m: (m[0], m[1]), reverse=newest_first)
        return [alert for _, _, alert in matches]


# ═══════════════════════════════════════════════════════════════════════════
# SQLAlchemy Store
# ═══════════════════════════════════════════════════════════════════════════

def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(alert: Alert) -> AlertRecord:
    return AlertRecord(
        id=alert.alert_id,
        subject_id=alert.subject_id,
        subject_name=alert.subject_name,
        subject_contact=alert.subject_contact,
        latitude=alert.location.latitude,
        longitude=alert.location.longitude,
        verification_code=alert.verification_code,
        status=alert.status.value,
        created_at=alert.created_at,
        resolved_at=alert.resolved_at,
    )


def _from_record(record: AlertRecord) -> Alert:
    return Alert(
        alert_id=record.id,
        subject_id=record.subject_id,
        subject_name=record.subject_name,
        subject_contact=record.subject_contact,
        location=Location(record.latitude, record.longitude),
        verification_code=record.verification_code,
        status=AlertStatus(record.status),
        created_at=_as_utc(record.created_at),
        resolved_at=_as_utc(record.resolved_at),
    )


class SqlAlchemyAlertStore(AlertStore):
    """Alert store backed by the `sos_alerts` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, alert: Alert) -> str:
        async with self._session_factory() as session:
            session.add(_to_record(alert))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise DuplicateAlertError(alert.alert_id)
        return alert.alert_id

    async def get(self, alert_id: str) -> Alert:
        async with self._session_factory() as session:
            record = await session.get(AlertRecord, alert_id)
            if record is None:
                raise AlertNotFoundError(alert_id)
            return _from_record(record)

    async def conditional_update_status(
        self,
        alert_id: str,
        expected: AlertStatus,
        new: AlertStatus,
    ) -> bool:
        stmt = (
            update(AlertRecord)
            .where(AlertRecord.id == alert_id, AlertRecord.status == expected.value)
            .values(status=new.value, resolved_at=utcnow() if new.is_terminal else None)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        swapped = result.rowcount == 1
        if not swapped:
            logger.debug(
                "Conditional update %s→%s lost for %s",
                expected.value, new.value, alert_id,
                extra={"alert_id": alert_id},
            )
        return swapped

    async def list_by_status(
        self,
        status: AlertStatus,
        *,
        newest_first: bool = True,
    ) -> List[Alert]:
        order: Tuple = (
            (AlertRecord.created_at.desc(), AlertRecord.id.desc())
            if newest_first
            else (AlertRecord.created_at.asc(), AlertRecord.id.asc())
        )
        stmt = select(AlertRecord).where(AlertRecord.status == status.value).order_by(*order)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_from_record(r) for r in result.scalars().all()]
