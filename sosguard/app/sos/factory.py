"""
Wire a lifecycle manager from settings.

    manager = build_lifecycle_manager()            # SQL stores, settings grace
    manager = build_lifecycle_manager(in_memory=True)
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sosguard.app.core.config import Settings, settings as default_settings
from sosguard.app.sos.lifecycle import AlertLifecycleManager, EscalationRetry
from sosguard.app.sos.notifier import (
    CompositeNotifier,
    EscalationNotifier,
    LoggingNotifier,
    WebhookNotifier,
)
from sosguard.app.sos.store import InMemoryAlertStore, SqlAlchemyAlertStore
from sosguard.app.sos.subjects import InMemorySubjectDirectory, SqlAlchemySubjectDirectory


def build_notifier(cfg: Settings) -> EscalationNotifier:
    notifiers: List[EscalationNotifier] = [LoggingNotifier()]
    if cfg.ESCALATION_WEBHOOK_URL:
        notifiers.append(
            WebhookNotifier(
                cfg.ESCALATION_WEBHOOK_URL,
                timeout_seconds=cfg.ESCALATION_WEBHOOK_TIMEOUT,
            )
        )
    return notifiers[0] if len(notifiers) == 1 else CompositeNotifier(notifiers)


def build_lifecycle_manager(
    cfg: Optional[Settings] = None,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    in_memory: bool = False,
) -> AlertLifecycleManager:
    cfg = cfg or default_settings

    if in_memory:
        store = InMemoryAlertStore()
        subjects = InMemorySubjectDirectory()
    else:
        if session_factory is None:
            from sosguard.app.core.database import async_session_factory
            session_factory = async_session_factory
        store = SqlAlchemyAlertStore(session_factory)
        subjects = SqlAlchemySubjectDirectory(session_factory)

    return AlertLifecycleManager(
        store,
        subjects,
        build_notifier(cfg),
        grace_period_seconds=cfg.GRACE_PERIOD_SECONDS,
        retry=EscalationRetry(
            backoff_base_seconds=cfg.ESCALATION_RETRY_BASE_SECONDS,
            max_delay_seconds=cfg.ESCALATION_RETRY_MAX_SECONDS,
        ),
    )
