"""
FastAPI route: SOS alert lifecycle.

Provides endpoints to:
    POST /api/v1/sos/trigger          — raise an alert, start the countdown
    POST /api/v1/sos/{id}/verify      — cancel with the SOS PIN
    GET  /api/v1/sos/active           — escalated alerts (police-station view)
    GET  /api/v1/sos/{id}             — current status of one alert

Outcome mapping for /verify:
    200 {"outcome": "cancelled"}        — alert stopped
    200 {"outcome": "incorrect_code"}   — wrong PIN, try again
    404 ALERT_NOT_FOUND                 — unknown id
    409 ALERT_ALREADY_RESOLVED          — too late, already sent/cancelled
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Request

from sosguard.app.api.schemas import (
    AlertOut,
    TriggerAlertRequest,
    TriggerAlertResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from sosguard.app.sos.lifecycle import AlertLifecycleManager
from sosguard.app.sos.models import VerifyOutcome

router = APIRouter(prefix="/api/v1/sos", tags=["sos"])

_OUTCOME_MESSAGES = {
    VerifyOutcome.CANCELLED: "Alert cancelled successfully. You are safe.",
    VerifyOutcome.INCORRECT_CODE: "Incorrect PIN! Try again.",
}


def get_lifecycle_manager(request: Request) -> AlertLifecycleManager:
    """Dependency: the manager created in the app lifespan."""
    return request.app.state.lifecycle


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/trigger",
    response_model=TriggerAlertResponse,
    status_code=201,
    summary="Raise an SOS alert",
    description=(
        "Creates a pending alert and starts the grace-period countdown. "
        "Unless cancelled with the correct PIN in time, the alert is "
        "escalated to the monitoring party."
    ),
)
async def trigger_alert(
    body: TriggerAlertRequest,
    manager: AlertLifecycleManager = Depends(get_lifecycle_manager),
):
    alert = await manager.trigger_alert(body.subject_id, body.latitude, body.longitude)
    return TriggerAlertResponse(
        **AlertOut.from_alert(alert).model_dump(),
        grace_period_seconds=manager.grace_period_seconds,
    )


@router.post(
    "/{alert_id}/verify",
    response_model=VerifyCodeResponse,
    summary="Cancel a pending alert with the SOS PIN",
)
async def verify_and_cancel(
    alert_id: str,
    body: VerifyCodeRequest,
    manager: AlertLifecycleManager = Depends(get_lifecycle_manager),
):
    outcome = await manager.verify_and_cancel(alert_id, body.code)
    return VerifyCodeResponse(
        alert_id=alert_id,
        outcome=outcome,
        message=_OUTCOME_MESSAGES[outcome],
    )


@router.get(
    "/active",
    response_model=List[AlertOut],
    summary="Escalated alerts, newest first",
)
async def list_active_alerts(
    manager: AlertLifecycleManager = Depends(get_lifecycle_manager),
):
    return [AlertOut.from_alert(a) for a in await manager.list_active_alerts()]


@router.get(
    "/{alert_id}",
    response_model=AlertOut,
    summary="Current state of one alert",
)
async def get_alert(
    alert_id: str,
    manager: AlertLifecycleManager = Depends(get_lifecycle_manager),
):
    return AlertOut.from_alert(await manager.get_alert(alert_id))
