"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Database connectivity (SELECT 1 round-trip)
    • Timer registry (live countdowns)
    • Escalation webhook configuration

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sosguard.app.core.config import settings
from sosguard.app.core.database import ping_db

if TYPE_CHECKING:
    from sosguard.app.sos.lifecycle import AlertLifecycleManager

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_database(in_memory: bool = False) -> ComponentHealth:
    """Check database connectivity."""
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    if in_memory:
        comp.message = "In-memory store"
    else:
        try:
            await ping_db()
            comp.message = "Connection pool available"
            comp.details = {"url": settings.DATABASE_URL.split("@")[-1]}
        except Exception as e:
            logger.warning("Database health check failed: %s", e)
            comp.status = HealthStatus.UNHEALTHY
            comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_timer_registry(
    lifecycle: Optional["AlertLifecycleManager"],
) -> ComponentHealth:
    """Report live countdowns; a missing manager means alerts cannot be raised."""
    comp = ComponentHealth(name="timer_registry")
    start = time.monotonic()
    if lifecycle is None:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Lifecycle manager not initialised"
    else:
        comp.message = f"{lifecycle.registry.armed_count} countdown(s) armed"
        comp.details = {
            "armed": lifecycle.registry.armed_count,
            "grace_period_seconds": lifecycle.grace_period_seconds,
        }
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_escalation_channel() -> ComponentHealth:
    """Report which escalation channels are configured."""
    comp = ComponentHealth(name="escalation")
    channels = ["log"]
    if settings.ESCALATION_WEBHOOK_URL:
        channels.append("webhook")
    else:
        comp.status = HealthStatus.DEGRADED if settings.is_production else HealthStatus.HEALTHY
        comp.message = "No webhook configured; escalations are visible via listing only"
    comp.details = {"channels": channels}
    return comp


async def run_health_check(
    lifecycle: Optional["AlertLifecycleManager"] = None,
    *,
    in_memory: bool = False,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_database(in_memory),
        check_timer_registry(lifecycle),
        check_escalation_channel(),
    ]

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
