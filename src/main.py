"""
Helpdesk Core - Main Application
================================

Security core of an internal support and incident desk.

Modules:
- Access: Role permission matrix and ticket ownership policies
- Accounts: Login, account lockout and TOTP MFA
- Tickets: Lifecycle, numbering and append-only history
- Audit: Append-only audit ledger and its query surface
- SLA Monitoring: Deadline escalation and warnings

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, scheduler, notification webhook
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

# Configuration and Core
from src.config import settings
from src.core import ApplicationException

# Infrastructure
from src.infrastructure.database import (
    init_database, close_database, create_tables, get_engine, get_session_maker,
)

# Audit
from src.audit.application import AuditService

# SLA Module - External services
from src.sla.application import SLAMonitor
from src.sla.infrastructure import SLAConfigManager, SLAScheduler, WebhookNotifier

# Tickets
from src.tickets.infrastructure import TicketNumberAllocator

# Module Routers
from src.accounts.interfaces import auth_router
from src.audit.interfaces import audit_router
from src.sla.interfaces import sla_router
from src.tickets.interfaces import tickets_router

# Middleware
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)

# Logging
from src.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA configuration and watch it for changes
    4. Build the notifier, ticket number allocator and SLA monitor
    5. Start the SLA scheduler

    SHUTDOWN:
    1. Stop SLA scheduler (cancels a running cycle between tickets)
    2. Stop config watcher
    3. Close notifier client
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk Core", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use Alembic in production)
    logger.info("Creating database tables")
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    logger.info("Loading SLA configuration")
    sla_config_manager = SLAConfigManager(settings.sla_warning_lookahead_minutes)
    sla_config_manager.load(settings.sla_config_path)
    sla_config_manager.start_watching()

    notifier = WebhookNotifier()
    sla_monitor = SLAMonitor(
        session_factory=get_session_maker(),
        audit_service=AuditService(get_session_maker()),
        notifier=notifier,
        config_provider=sla_config_manager,
    )

    sla_scheduler = None
    if settings.sla_monitor_interval_seconds > 0:
        sla_scheduler = SLAScheduler(interval_seconds=settings.sla_monitor_interval_seconds)

        async def sla_monitor_job(cancel_event):
            """Background SLA monitor cycle."""
            await sla_monitor.run_cycle(cancel_event=cancel_event)

        await sla_scheduler.start(sla_monitor_job)
    else:
        logger.info("SLA scheduler disabled")

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.sla_config_manager = sla_config_manager
    app.state.notifier = notifier
    app.state.sla_monitor = sla_monitor
    app.state.sla_scheduler = sla_scheduler
    app.state.ticket_allocator = TicketNumberAllocator()

    logger.info("Helpdesk Core started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Helpdesk Core")

    if sla_scheduler:
        await sla_scheduler.stop()

    sla_config_manager.stop_watching()
    await notifier.close()
    await close_database()

    logger.info("Helpdesk Core shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk Core API",
    description="""
    ## Helpdesk Security Core

    Authorization, integrity history and SLA escalation for an internal
    support and incident desk.

    The upstream gateway authenticates callers and forwards the principal
    in the `X-User-Id` and `X-User-Role` headers.

    ---

    ### Modules

    - `/auth` - password login, account lockout, TOTP MFA enrollment
    - `/tickets` - lifecycle, comments, attachment metadata, history
    - `/audit-logs` - read-only audit ledger (supervisors: all, agents: own)
    - `/sla` - per-ticket SLA status, manual monitor run (administrators)

    ### SLA targets (hours, default)

    | Priority | Deadline |
    |----------|----------|
    | Critical | 2        |
    | High     | 8        |
    | Medium   | 24       |
    | Low      | 72       |

    A breached ticket is raised one priority step, once. Assignees are
    warned ahead of the deadline.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(auth_router)
app.include_router(tickets_router)
app.include_router(audit_router)
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "sla_config": "loaded",
                        "sla_scheduler": "running"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Database connectivity
    - SLA configuration status
    - Scheduler state
    """
    checks = {}

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "connected"
    except Exception as e:
        checks["database"] = f"error: {type(e).__name__}"

    config_manager = getattr(request.app.state, "sla_config_manager", None)
    checks["sla_config"] = "loaded" if config_manager is not None else "not_loaded"

    scheduler = getattr(request.app.state, "sla_scheduler", None)
    checks["sla_scheduler"] = "running" if scheduler and scheduler.is_running else "stopped"

    healthy = checks["database"] == "connected"
    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "auth": {
                "prefix": "/auth",
                "endpoints": [
                    "POST /auth/register - Register a customer account",
                    "POST /auth/login - Password login",
                    "POST /auth/login/mfa - Redeem MFA challenge",
                    "POST /auth/mfa/setup - Start MFA enrollment",
                    "POST /auth/mfa/verify - Confirm MFA enrollment",
                    "POST /auth/mfa/disable - Disable MFA"
                ]
            },
            "tickets": {
                "prefix": "/tickets",
                "endpoints": [
                    "POST /tickets - Create ticket",
                    "GET /tickets - List visible tickets",
                    "GET /tickets/{id} - Get ticket",
                    "PATCH /tickets/{id} - Update fields",
                    "POST /tickets/{id}/escalate - Escalate",
                    "POST /tickets/{id}/reassign - Reassign",
                    "POST /tickets/{id}/comments - Add comment",
                    "POST /tickets/{id}/attachments - Register attachment",
                    "GET /tickets/{id}/history - Change history"
                ]
            },
            "audit": {
                "prefix": "/audit-logs",
                "endpoints": [
                    "GET /audit-logs - List entries",
                    "GET /audit-logs/stats - Statistics",
                    "GET /audit-logs/{id} - Get entry"
                ],
                "retention_days": settings.audit_retention_days
            },
            "sla": {
                "prefix": "/sla",
                "endpoints": [
                    "GET /sla/tickets/{id} - Ticket SLA status",
                    "POST /sla/run - Run monitor cycle"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
