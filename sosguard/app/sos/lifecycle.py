"""
lifecycle.py — Alert lifecycle manager.

Orchestrates one SOS alert from trigger to exactly one terminal state:

    ┌────────────────────┐
    │  trigger_alert     │  validate location → load subject → snapshot
    │                    │  → persist pending → arm countdown
    └─────────┬──────────┘
              │
      ┌───────┴─────────────────────────────┐
      ▼                                     ▼
    ┌────────────────────┐        ┌────────────────────┐
    │  verify_and_cancel │        │  escalate          │
    │  code ok → disarm  │        │  (countdown fired) │
    │  won → CAS         │        │  CAS               │
    │  pending→cancelled │        │  pending→sent      │
    └────────────────────┘        │  → notifier        │
                                  └────────────────────┘

Two guards decide the race between a correct PIN and the countdown:

    1. TimerRegistry.disarm() vs. the countdown callback — per-alert
       state flag, exactly one side wins.
    2. store.conditional_update_status(..., PENDING, X) — the store-level
       compare-and-set is the final arbiter, covering the window between
       "disarm lost" and "record updated".

A wrong code is checked BEFORE disarm, so it never touches the countdown.
A store error while escalating re-arms the same alert id with capped
exponential backoff (EscalationRetry) until `sent` is written.
"""

from __future__ import annotations

import functools
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sosguard.app.core.errors import (
    AlertAlreadyResolvedError,
    AlertNotFoundError,
    AlreadyArmedError,
)
from sosguard.app.sos.models import (
    Alert,
    AlertStatus,
    Location,
    VerifyOutcome,
    utcnow,
)
from sosguard.app.sos.notifier import EscalationNotifier, LoggingNotifier
from sosguard.app.sos.store import AlertStore
from sosguard.app.sos.subjects import SubjectDirectory
from sosguard.app.sos.timer_registry import TimerRegistry

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD_SECONDS = 30.0


@dataclass(frozen=True)
class EscalationRetry:
    """
    Backoff for a countdown whose escalation hit a store error.

    There is no attempt limit: an alert that reached its deadline keeps
    retrying until `sent` is written or the manager shuts down.
    """
    backoff_base_seconds: float = 0.5
    max_delay_seconds: float = 30.0


def _compute_backoff(config: EscalationRetry, attempt: int) -> float:
    """Exponential delay for a 1-based attempt, capped at max_delay_seconds."""
    delay = config.backoff_base_seconds * (2 ** min(attempt - 1, 16))
    return min(delay, config.max_delay_seconds)


def _codes_match(supplied: str, expected: str) -> bool:
    return hmac.compare_digest(str(supplied).encode("utf-8"), expected.encode("utf-8"))


class AlertLifecycleManager:
    """
    Sole writer of alert status.

    Parameters
    ----------
    store : AlertStore
        Durable alert records with conditional status update.
    subjects : SubjectDirectory
        Source of subject identity and verification code.
    notifier : EscalationNotifier | None
        Called after a successful escalation. Defaults to LoggingNotifier.
    grace_period_seconds : float
        Countdown length before a pending alert escalates.
    registry : TimerRegistry | None
        Countdown table; a private one is created when omitted.
    retry : EscalationRetry | None
        Backoff used when the store fails during escalation.
    """

    def __init__(
        self,
        store: AlertStore,
        subjects: SubjectDirectory,
        notifier: Optional[EscalationNotifier] = None,
        *,
        grace_period_seconds: float = DEFAULT_GRACE_PERIOD_SECONDS,
        registry: Optional[TimerRegistry] = None,
        retry: Optional[EscalationRetry] = None,
    ):
        if grace_period_seconds < 0:
            raise ValueError(
                f"grace_period_seconds must be >= 0, got {grace_period_seconds}"
            )
        self.store = store
        self.subjects = subjects
        self.notifier = notifier or LoggingNotifier()
        self.grace_period_seconds = grace_period_seconds
        self.registry = registry or TimerRegistry()
        self.retry = retry or EscalationRetry()
        self._closed = False

    # ── Trigger ──

    async def trigger_alert(self, subject_id: str, latitude: float, longitude: float) -> Alert:
        """
        Raise a new alert and start its countdown.

        Raises
        ------
        InvalidLocationError
            Coordinates not finite or out of range.
        SubjectNotFoundError
            Unknown subject.
        """
        location = Location.of(latitude, longitude)
        subject = await self.subjects.get_subject(subject_id)

        alert = Alert.for_subject(subject, location)
        # Persist before arming: a countdown must never exist for an unsaved alert
        await self.store.create(alert)
        self.registry.arm(alert.alert_id, self.grace_period_seconds, self.escalate)

        logger.info(
            "Alert %s triggered by %s, escalates in %.1fs",
            alert.alert_id, subject.subject_id, self.grace_period_seconds,
            extra={
                "alert_id": alert.alert_id,
                "subject_id": subject.subject_id,
                "grace_seconds": self.grace_period_seconds,
            },
        )
        return alert

    # ── Escalation (countdown callback) ──

    async def escalate(self, alert_id: str, attempt: int = 0) -> bool:
        """
        Move a pending alert to `sent` and notify.

        Returns True if this call performed the transition. Losing to a
        concurrent cancellation is a silent no-op. A store error re-arms
        the alert with backoff instead of leaving it pending.
        """
        try:
            alert = await self.store.get(alert_id)
        except AlertNotFoundError:
            logger.error("Countdown fired for unknown alert %s", alert_id, extra={"alert_id": alert_id})
            return False
        except Exception:
            self._schedule_retry(alert_id, attempt + 1)
            return False

        if alert.status is not AlertStatus.PENDING:
            logger.debug(
                "Alert %s already %s, escalation skipped", alert_id, alert.status.value,
                extra={"alert_id": alert_id, "status": alert.status.value},
            )
            return False

        try:
            swapped = await self.store.conditional_update_status(
                alert_id, AlertStatus.PENDING, AlertStatus.SENT,
            )
        except Exception:
            self._schedule_retry(alert_id, attempt + 1)
            return False

        if not swapped:
            logger.info(
                "Alert %s resolved concurrently, escalation skipped", alert_id,
                extra={"alert_id": alert_id},
            )
            return False

        alert.status = AlertStatus.SENT
        alert.resolved_at = utcnow()
        waited = (alert.resolved_at - alert.created_at).total_seconds()
        logger.warning(
            "Alert %s escalated: no cancellation within %.1fs",
            alert_id, waited,
            extra={
                "alert_id": alert_id,
                "status": AlertStatus.SENT.value,
                "grace_seconds": waited,
            },
        )

        try:
            await self.notifier.on_escalated(alert)
        except Exception:
            logger.exception(
                "Escalation notification failed for %s (status stays sent)", alert_id,
                extra={"alert_id": alert_id, "notifier": self.notifier.name},
            )
        return True

    def _schedule_retry(self, alert_id: str, attempt: int) -> None:
        """Re-arm a short countdown for an escalation that hit a store error."""
        if self._closed:
            logger.exception(
                "Escalation of alert %s failed during shutdown; it stays pending",
                alert_id, extra={"alert_id": alert_id},
            )
            return

        delay = _compute_backoff(self.retry, attempt)
        logger.exception(
            "Escalation of alert %s failed (attempt %d), retrying in %.2fs",
            alert_id, attempt, delay,
            extra={"alert_id": alert_id, "grace_seconds": delay},
        )
        try:
            self.registry.arm(
                alert_id, delay, functools.partial(self.escalate, attempt=attempt),
            )
        except AlreadyArmedError:
            # Another countdown (reconciliation) already owns this alert
            logger.warning(
                "Alert %s already re-armed, retry not scheduled", alert_id,
                extra={"alert_id": alert_id},
            )

    # ── Cancel ──

    async def verify_and_cancel(self, alert_id: str, code: str) -> VerifyOutcome:
        """
        Cancel a pending alert with its verification code.

        Returns
        -------
        VerifyOutcome
            CANCELLED on success; INCORRECT_CODE when the code is wrong
            (no state change, caller may retry).

        Raises
        ------
        AlertNotFoundError
            No such alert.
        AlertAlreadyResolvedError
            Code was right but the alert can no longer be cancelled.
        """
        alert = await self.store.get(alert_id)

        if not _codes_match(code, alert.verification_code):
            logger.warning(
                "Incorrect code for alert %s", alert_id,
                extra={"alert_id": alert_id, "outcome": VerifyOutcome.INCORRECT_CODE.value},
            )
            return VerifyOutcome.INCORRECT_CODE

        if not self.registry.disarm(alert_id):
            current = await self._current_status(alert_id)
            logger.info(
                "Cancellation for alert %s arrived too late (%s)", alert_id,
                current.value if current else "unknown",
                extra={"alert_id": alert_id, "status": current.value if current else None},
            )
            raise AlertAlreadyResolvedError(alert_id, current.value if current else None)

        if not await self.store.conditional_update_status(
            alert_id, AlertStatus.PENDING, AlertStatus.CANCELLED,
        ):
            current = await self._current_status(alert_id)
            logger.error(
                "Alert %s disarmed but store write lost (%s)", alert_id,
                current.value if current else "unknown",
                extra={"alert_id": alert_id},
            )
            raise AlertAlreadyResolvedError(alert_id, current.value if current else None)

        logger.info(
            "Alert %s cancelled by subject", alert_id,
            extra={"alert_id": alert_id, "outcome": VerifyOutcome.CANCELLED.value},
        )
        return VerifyOutcome.CANCELLED

    # ── Queries ──

    async def get_alert(self, alert_id: str) -> Alert:
        return await self.store.get(alert_id)

    async def list_active_alerts(self) -> List[Alert]:
        """Escalated alerts for the monitoring party, newest first."""
        return await self.store.list_by_status(AlertStatus.SENT, newest_first=True)

    async def _current_status(self, alert_id: str) -> Optional[AlertStatus]:
        try:
            return (await self.store.get(alert_id)).status
        except AlertNotFoundError:
            return None

    # ── Recovery / shutdown ──

    async def reconcile_pending(self, now: Optional[datetime] = None) -> int:
        """
        Re-arm pending alerts that have no live countdown.

        Used after a restart: each orphan gets whatever is left of its
        grace period (zero if already overdue, so it escalates at once).

        Returns
        -------
        int
            Number of countdowns re-armed.
        """
        now = now or utcnow()
        rearmed = 0
        for alert in await self.store.list_by_status(AlertStatus.PENDING, newest_first=False):
            if self.registry.is_armed(alert.alert_id):
                continue
            elapsed = (now - alert.created_at).total_seconds()
            remaining = max(0.0, self.grace_period_seconds - elapsed)
            self.registry.arm(alert.alert_id, remaining, self.escalate)
            rearmed += 1
            logger.info(
                "Re-armed orphaned alert %s (%.1fs left)", alert.alert_id, remaining,
                extra={"alert_id": alert.alert_id, "grace_seconds": remaining},
            )
        if rearmed:
            logger.warning("Reconciliation re-armed %d pending alert(s)", rearmed)
        return rearmed

    async def shutdown(self) -> None:
        """Stop all countdowns and wait for escalations already in flight."""
        self._closed = True
        stopped = self.registry.cancel_all()
        await self.registry.drain()
        if stopped:
            logger.warning(
                "Shutdown left %d alert(s) pending; enable reconciliation to resume them",
                stopped,
            )
