"""
Background-Check Compliance Tracker - Main Application
======================================================

Tracks background-check status changes against SLA targets and escalation
rules.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Ledger, SLA clock, escalation services, sweep, query, DTOs
- Domain: Entities, value objects, SLA calculation
- Infrastructure: Stores, config watcher, notification webhook, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from bgcheck_compliance.config import Settings, settings as default_settings
from bgcheck_compliance.core import ApplicationException

# Infrastructure
from bgcheck_compliance.infrastructure.database import (
    close_database,
    create_tables,
    get_session_maker,
    init_database,
)

# Compliance module
from bgcheck_compliance.compliance.application import ComplianceEngine
from bgcheck_compliance.compliance.infrastructure import (
    ComplianceScheduler,
    InMemoryEscalationEventStore,
    InMemorySLAAlertStore,
    InMemoryStatusLedgerStore,
    NotificationQueue,
    SQLAlchemyEscalationEventStore,
    SQLAlchemySLAAlertStore,
    SQLAlchemyStatusLedgerStore,
    WebhookNotificationSender,
    YAMLConfigStore,
)
from bgcheck_compliance.compliance.interfaces import compliance_router

# Shared
from bgcheck_compliance.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
    request_validation_exception_handler,
)
from bgcheck_compliance.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


def _build_stores(app_settings: Settings):
    if app_settings.storage_backend == "database":
        session_maker = get_session_maker()
        return (
            SQLAlchemyStatusLedgerStore(session_maker),
            SQLAlchemyEscalationEventStore(session_maker),
            SQLAlchemySLAAlertStore(session_maker),
        )
    return InMemoryStatusLedgerStore(), InMemoryEscalationEventStore(), InMemorySLAAlertStore()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database (database backend only)
    3. Load compliance configuration and watch the file
    4. Start notification worker
    5. Build the compliance engine
    6. Start the sweep scheduler

    SHUTDOWN:
    1. Stop the sweep scheduler
    2. Drain the notification queue
    3. Stop config watcher
    4. Close database connections
    """
    app_settings: Settings = app.state.settings

    # === STARTUP ===
    setup_logging(app_settings.log_level, app_settings.environment)
    logger.info("Starting Compliance Service", extra={
        "version": app_settings.app_version,
        "environment": app_settings.environment,
        "storage_backend": app_settings.storage_backend
    })

    if app_settings.storage_backend == "database":
        logger.info("Initializing database")
        init_database(app_settings.database_url)
        # For development - use migrations in production
        await create_tables()

    logger.info("Loading compliance configuration")
    config_store = YAMLConfigStore(app_settings.compliance_config_path)
    config_store.load()
    config_store.start_watching()

    sender = WebhookNotificationSender(
        app_settings.notification_webhook_url,
        timeout_seconds=app_settings.notification_timeout_seconds
    )
    notifications = NotificationQueue(
        sender,
        maxsize=app_settings.notification_queue_size,
        send_timeout_seconds=app_settings.notification_timeout_seconds
    )
    notifications.start()

    ledger_store, event_store, alert_store = _build_stores(app_settings)
    engine = ComplianceEngine(ledger_store, event_store, alert_store, config_store, notifications)

    scheduler: Optional[ComplianceScheduler] = None
    if app_settings.sweep_interval_seconds > 0:
        scheduler = ComplianceScheduler(engine.sweep, app_settings.sweep_interval_seconds)
        await scheduler.start()
    else:
        logger.info("Compliance scheduler disabled")

    # Store services in app state for dependency injection
    app.state.engine = engine
    app.state.config_store = config_store
    app.state.notifications = notifications
    app.state.scheduler = scheduler

    logger.info("Compliance Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Compliance Service")

    if scheduler:
        await scheduler.stop()

    await notifications.stop()
    await sender.close()
    config_store.stop_watching()

    if app_settings.storage_backend == "database":
        await close_database()

    logger.info("Compliance Service shutdown complete")


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application (tests pass their own Settings)."""
    app_settings = app_settings or default_settings

    app = FastAPI(
        title="Background-Check Compliance API",
        description="""
    ## Background-Check Compliance Tracker

    Tracks how long each background check sits in a status, classifies it
    against SLA targets and escalates checks that stall.

    **Endpoints:**
    - `POST /compliance/entities/{id}/transitions` - Record a status change
    - `GET /compliance/dashboard` - Live SLA overview
    - `GET /compliance/escalations` - Escalation events by lifecycle state
    - `GET /compliance/entities/{id}/sla` - SLA reading and history for one check
    - `GET /compliance/status-history` - Status change ledger (CSV export available)
    - `GET /compliance/stats` - SLA, escalation and ledger statistics
    - `/compliance/config/...` - SLA configurations and escalation rules
    """,
        version=app_settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.settings = app_settings

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(compliance_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Returns service health status including configuration, scheduler,
        notification queue and last sweep.
        """
        state = request.app.state
        scheduler = getattr(state, "scheduler", None)
        notifications = getattr(state, "notifications", None)
        engine = getattr(state, "engine", None)
        last_report = engine.state.last_report if engine else None

        config = state.config_store.get_config() if hasattr(state, "config_store") else None
        checks = {
            "storage": app_settings.storage_backend,
            "compliance_config": (
                f"loaded ({len(config.sla_configurations)} SLAs, {len(config.escalation_rules)} rules)"
                if config else "not_loaded"
            ),
            "scheduler": "running" if scheduler and scheduler.is_running else "stopped",
            "notification_queue": f"{notifications.pending} pending" if notifications else "not_started",
            "last_sweep": "never" if last_report is None else ("ok" if last_report.succeeded else "degraded"),
        }

        return {
            "success": True,
            "status": "healthy",
            "version": app_settings.app_version,
            "environment": app_settings.environment,
            "checks": checks
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "success": True,
            "service": "Compliance Service",
            "version": app_settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "compliance": {
                    "prefix": "/compliance",
                    "endpoints": [
                        "POST /compliance/entities/{id}/transitions - Record status change",
                        "GET /compliance/dashboard - Get dashboard",
                        "GET /compliance/escalations - List escalations",
                        "GET /compliance/stats - Get statistics"
                    ]
                }
            }
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "bgcheck_compliance.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.environment == "development",
        log_level="info"
    )
