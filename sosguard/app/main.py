"""
FastAPI application entry point.

Run with:
    uvicorn sosguard.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn sosguard.app.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from sosguard.app.core.config import settings
from sosguard.app.core.database import close_db, init_db
from sosguard.app.core.errors import register_error_handlers
from sosguard.app.core.health import HealthStatus, run_health_check
from sosguard.app.core.logging_config import get_logger, setup_logging
from sosguard.app.core.middleware import RequestLoggingMiddleware

# ── SOS core ──
from sosguard.app.sos.factory import build_lifecycle_manager
from sosguard.app.sos.lifecycle import AlertLifecycleManager
from sosguard.app.sos.store import SqlAlchemyAlertStore

# ── API routers ──
from sosguard.app.api.v1.sos import router as sos_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def create_app(lifecycle: Optional[AlertLifecycleManager] = None) -> FastAPI:
    """
    Build the application.

    Passing `lifecycle` skips database setup and serves the given manager
    (tests, embedded use). Otherwise the manager is built from settings
    at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s], grace period %.1fs",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
            settings.GRACE_PERIOD_SECONDS,
        )
        owns_db = lifecycle is None
        manager = lifecycle
        if owns_db:
            if settings.DATABASE_AUTO_CREATE:
                await init_db()
            manager = build_lifecycle_manager()
        app.state.lifecycle = manager

        if settings.RECONCILE_PENDING_ON_STARTUP:
            await manager.reconcile_pending()

        yield

        logger.info("Shutting down %s", settings.APP_NAME)
        await manager.shutdown()
        close_notifier = getattr(manager.notifier, "close", None)
        if close_notifier is not None:
            await close_notifier()
        if owns_db:
            await close_db()

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Auto-escalating SOS alerts. A raised alert is escalated to the "
            "monitoring party after a grace period unless cancelled with "
            "the subject's SOS PIN."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (order matters — outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)

    app.include_router(sos_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "grace_period_seconds": settings.GRACE_PERIOD_SECONDS,
            "docs": "/docs",
        }

    async def _report(request: Request):
        manager = getattr(request.app.state, "lifecycle", None)
        in_memory = manager is not None and not isinstance(manager.store, SqlAlchemyAlertStore)
        return await run_health_check(manager, in_memory=in_memory)

    @app.get("/health", tags=["health"])
    async def health_check(request: Request):
        """Deep health probe — checks all subsystems."""
        report = await _report(request)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness(request: Request):
        """Kubernetes readiness probe — can we accept alerts?"""
        report = await _report(request)
        if report.status is HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
