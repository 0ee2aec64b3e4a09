"""
Grievance Portal - Main Application
====================================

Employee grievance portal: issue lifecycle and SLA engine.

Modules:
- Issues: status state machine, reopen window, escalation, timeline
- SLA: working-time clock, SLA evaluation, escalation sweep

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, state machine, evaluators
- Infrastructure: Database, policy YAML, Slack, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from grievance.config import settings
from grievance.core import ApplicationException

from grievance.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    init_database,
)
from grievance.issues.application import EscalationSweepService
from grievance.issues.infrastructure import SQLAlchemyIssueRepository
from grievance.issues.interfaces import issues_router
from grievance.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from grievance.shared.clock import SystemClock
from grievance.shared.infrastructure.logging import get_logger, log_latency, setup_logging
from grievance.sla.application import SLAService
from grievance.sla.infrastructure import PolicyConfigManager, SlackEscalationNotifier, SLAScheduler

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load the portal policy and watch it for changes
    4. Start the escalation sweep scheduler

    SHUTDOWN:
    1. Stop the scheduler
    2. Stop the policy watcher
    3. Close the Slack client and database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Grievance Portal", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()
    try:
        await create_tables()
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    logger.info("Loading portal policy", extra={"path": str(settings.policy_config_path)})
    policy_manager = PolicyConfigManager()
    policy_manager.load(settings.policy_config_path)
    policy_manager.start_watching()

    clock = SystemClock()
    notifier = SlackEscalationNotifier(channels=policy_manager.escalation_channels())

    app.state.settings = settings
    app.state.clock = clock
    app.state.policy_manager = policy_manager
    app.state.notifier = notifier

    scheduler = None
    if settings.sla_evaluation_interval > 0:
        async def escalation_sweep_job():
            """Background escalation sweep."""
            with log_latency(logger, "escalation_sweep"):
                async with get_session_context() as session:
                    sweeper = EscalationSweepService(
                        SQLAlchemyIssueRepository(session),
                        SLAService(policy_manager, clock),
                        clock,
                        notifier=notifier,
                    )
                    await sweeper.sweep()

        scheduler = SLAScheduler(interval_seconds=settings.sla_evaluation_interval)
        await scheduler.start(escalation_sweep_job)
    else:
        logger.info("Escalation sweep disabled")
    app.state.scheduler = scheduler

    logger.info("Grievance Portal started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Grievance Portal")

    if scheduler:
        await scheduler.stop()
    policy_manager.stop_watching()
    await notifier.close()
    await close_database()

    logger.info("Grievance Portal shutdown complete")


app = FastAPI(
    title="Grievance Portal API",
    description="""
    ## Employee Grievance Portal

    Issue lifecycle and SLA engine.

    **Issue lifecycle:**
    - `open -> in_progress -> resolved -> closed`, with staff overrides
    - Reopen within 30 days of resolution/closure (reason required)
    - Manual and automatic (SLA breach) escalation

    **SLA tiers (working hours, 09:00-18:00 Mon-Fri by default):**

    | Priority | Hours |
    |----------|-------|
    | Critical | 4     |
    | High     | 24    |
    | Medium   | 72    |
    | Low      | 168   |

    **Timeline:** creation, assignment, status changes and comments merged
    into one history; the assignee/assigner private thread is shown only to
    its participants and privileged roles.
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

app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(issues_router)


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
                        "policy": "loaded",
                        "escalation_sweep": "running"
                    }
                }
            }
        }
    }
})
async def health_check():
    """Health check endpoint for load balancers and orchestrators."""
    scheduler = getattr(app.state, "scheduler", None)
    checks = {
        "policy": "loaded" if getattr(app.state, "policy_manager", None) else "defaults",
        "escalation_sweep": "running" if scheduler and scheduler.is_running else "stopped",
    }
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Grievance Portal",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "grievance.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
