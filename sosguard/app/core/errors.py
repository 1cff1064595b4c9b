"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes for the alert lifecycle
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Usage:
    from sosguard.app.core.errors import (
        AlertNotFoundError,
        AlertAlreadyResolvedError,
        register_error_handlers,
    )

    raise AlertNotFoundError("SOS-0A1B2C3D4E5F")

A wrong verification code is NOT an error: the lifecycle manager returns
it as a normal outcome so the caller can simply resubmit.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sosguard.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class SosAPIError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(SosAPIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, *, error_code: str = "NOT_FOUND", **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code=error_code,
            details=details,
        )


class ValidationError(SosAPIError):
    """Input validation failed (422)."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        error_code: str = "VALIDATION_ERROR",
        **details: Any,
    ):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code=error_code,
            details=d,
        )


class ExternalServiceError(SosAPIError):
    """External call failed (502)."""

    def __init__(
        self,
        service: str,
        message: str = "",
        *,
        error_code: str = "EXTERNAL_SERVICE_ERROR",
        **details: Any,
    ):
        super().__init__(
            message=f"External service '{service}' failed: {message}",
            status_code=502,
            error_code=error_code,
            details={"service": service, **details},
        )


# ── Alert lifecycle ──

class InvalidLocationError(ValidationError):
    """Coordinates are not finite or out of range."""

    def __init__(self, latitude: Any, longitude: Any, reason: str):
        super().__init__(
            f"Invalid location: {reason}",
            field="location",
            error_code="INVALID_LOCATION",
            latitude=latitude,
            longitude=longitude,
        )


class SubjectNotFoundError(NotFoundError):
    """The person raising the alert is unknown."""

    def __init__(self, subject_id: str):
        super().__init__("Subject", error_code="SUBJECT_NOT_FOUND", subject_id=subject_id)


class AlertNotFoundError(NotFoundError):
    """No alert with this id exists."""

    def __init__(self, alert_id: str):
        super().__init__("Alert", error_code="ALERT_NOT_FOUND", alert_id=alert_id)


class AlertAlreadyResolvedError(SosAPIError):
    """Cancellation arrived after the alert reached a terminal state (409)."""

    def __init__(self, alert_id: str, status: Optional[str] = None):
        details: Dict[str, Any] = {"alert_id": alert_id}
        if status:
            details["status"] = status
        super().__init__(
            message=f"Alert {alert_id} is already resolved and can no longer be cancelled",
            status_code=409,
            error_code="ALERT_ALREADY_RESOLVED",
            details=details,
        )


class DuplicateAlertError(SosAPIError):
    """Store already holds an alert with this id (409)."""

    def __init__(self, alert_id: str):
        super().__init__(
            message=f"Alert {alert_id} already exists",
            status_code=409,
            error_code="DUPLICATE_ALERT",
            details={"alert_id": alert_id},
        )


class AlreadyArmedError(SosAPIError):
    """A countdown is already live for this alert (500, caller bug)."""

    def __init__(self, alert_id: str):
        super().__init__(
            message=f"Countdown already armed for alert {alert_id}",
            status_code=500,
            error_code="TIMER_ALREADY_ARMED",
            details={"alert_id": alert_id},
        )


class NotificationDeliveryError(ExternalServiceError):
    """Escalation notification could not be delivered (502)."""

    def __init__(self, alert_id: str, channel: str, message: str = ""):
        super().__init__(
            channel,
            f"alert {alert_id}: {message}",
            error_code="NOTIFICATION_FAILED",
            alert_id=alert_id,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(SosAPIError)
    async def handle_sos_error(request: Request, exc: SosAPIError):
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            level,
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
