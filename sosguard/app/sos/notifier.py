"""
notifier.py — Escalation notifiers ("alert became sent" hooks).

The authoritative escalation is the `pending → sent` store write, which
alone makes the alert visible to the monitoring-party listing. Notifiers
are fire-and-forget extras on top of that:

    • LoggingNotifier   — console / log-aggregator line for the operator
    • WebhookNotifier   — POST the alert JSON to a monitoring endpoint
    • CompositeNotifier — fan out; one notifier failing never blocks others

A notifier may raise. The lifecycle manager logs and swallows the error;
it never retries synchronously and never rolls back `sent`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import httpx

from sosguard.app.core.errors import NotificationDeliveryError
from sosguard.app.sos.models import Alert

logger = logging.getLogger(__name__)


class EscalationNotifier(ABC):

    name: str = "notifier"

    @abstractmethod
    async def on_escalated(self, alert: Alert) -> None:
        ...


class LoggingNotifier(EscalationNotifier):
    """Announce the escalation in the service log."""

    name = "log"

    async def on_escalated(self, alert: Alert) -> None:
        logger.warning(
            "[ESCALATION] Alert %s SENT: monitoring party notified for %s (%s) at (%.5f, %.5f)",
            alert.alert_id,
            alert.subject_name,
            alert.subject_contact,
            alert.location.latitude,
            alert.location.longitude,
            extra={"alert_id": alert.alert_id, "subject_id": alert.subject_id},
        )


class WebhookNotifier(EscalationNotifier):
    """
    POST `{"event": "alert.sent", "alert": {...}}` to a monitoring endpoint.

    Parameters
    ----------
    url : str
        Endpoint receiving the escalation.
    timeout_seconds : float
        Total HTTP timeout per delivery.
    client : httpx.AsyncClient | None
        Injected client (tests); otherwise one is created lazily.
    """

    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
            self._owns_client = True
        return self._client

    async def on_escalated(self, alert: Alert) -> None:
        client = await self._get_client()
        body = {"event": "alert.sent", "alert": alert.to_dict()}
        try:
            response = await client.post(self.url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationDeliveryError(
                alert.alert_id, self.name, f"HTTP {e.response.status_code}",
            ) from e
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(alert.alert_id, self.name, str(e)) from e

        logger.info(
            "[WEBHOOK] Alert %s → %s (%d)",
            alert.alert_id, self.url, response.status_code,
            extra={"alert_id": alert.alert_id, "notifier": self.name},
        )

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


class CompositeNotifier(EscalationNotifier):
    """Run several notifiers; each failure is logged and isolated."""

    name = "composite"

    def __init__(self, notifiers: Sequence[EscalationNotifier]):
        self.notifiers: List[EscalationNotifier] = list(notifiers)

    async def on_escalated(self, alert: Alert) -> None:
        for notifier in self.notifiers:
            try:
                await notifier.on_escalated(alert)
            except Exception:
                logger.exception(
                    "Notifier %s failed for alert %s", notifier.name, alert.alert_id,
                    extra={"alert_id": alert.alert_id, "notifier": notifier.name},
                )

    async def close(self) -> None:
        for notifier in self.notifiers:
            close = getattr(notifier, "close", None)
            if close is not None:
                await close()
