"""
subjects.py — Subject directory (who may raise an alert).

Registration and authentication live outside this service; the core only
needs one read: `get_subject(subject_id)`, consumed once at trigger time.
`add_subject` exists for seeding directories in development and tests.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sosguard.app.core.errors import SubjectNotFoundError
from sosguard.app.sos.models import Subject
from sosguard.app.sos.orm import SubjectRecord

logger = logging.getLogger(__name__)


class SubjectDirectory(ABC):

    @abstractmethod
    async def get_subject(self, subject_id: str) -> Subject:
        """Return the subject or raise SubjectNotFoundError."""

    @abstractmethod
    async def add_subject(self, subject: Subject) -> Subject:
        ...


class InMemorySubjectDirectory(SubjectDirectory):

    def __init__(self) -> None:
        self._subjects: Dict[str, Subject] = {}
        self._lock = threading.Lock()

    async def get_subject(self, subject_id: str) -> Subject:
        with self._lock:
            subject = self._subjects.get(subject_id)
        if subject is None:
            raise SubjectNotFoundError(subject_id)
        return subject

    async def add_subject(self, subject: Subject) -> Subject:
        with self._lock:
            self._subjects[subject.subject_id] = subject
        return subject


class SqlAlchemySubjectDirectory(SubjectDirectory):
    """Directory backed by the `sos_subjects` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_subject(self, subject_id: str) -> Subject:
        async with self._session_factory() as session:
            record: Optional[SubjectRecord] = await session.get(SubjectRecord, subject_id)
            if record is None:
                raise SubjectNotFoundError(subject_id)
            return Subject(
                subject_id=record.id,
                name=record.name,
                contact=record.phone,
                verification_code=record.sos_pin,
                address=record.address,
            )

    async def add_subject(self, subject: Subject) -> Subject:
        async with self._session_factory() as session:
            await session.merge(
                SubjectRecord(
                    id=subject.subject_id,
                    name=subject.name,
                    phone=subject.contact,
                    address=subject.address,
                    sos_pin=subject.verification_code,
                )
            )
            await session.commit()
        logger.info("Subject %s saved", subject.subject_id, extra={"subject_id": subject.subject_id})
        return subject
