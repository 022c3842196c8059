"""
StoreFix Dispatch - Main Application
====================================

Maintenance ticket dispatch with SLA enforcement for retail stores.

Modules:
- Triage: Classify issue reports (LLM with keyword fallback)
- Dispatch: Route tickets to service providers and drive their lifecycle
- SLA Enforcement: Detect breaches and escalate to store moderators

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, LLM, webhook, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from src.config import settings
from src.core import ApplicationException, ConfigurationException

# Infrastructure
from src.infrastructure.database import init_database, close_database, create_tables
from src.infrastructure.llm import create_llm_client

# Application services
from src.dispatch.application import DispatchOrchestrator, ProviderLoadAuditService
from src.dispatch.infrastructure import SQLAlchemyDispatchUnitOfWork
from src.sla.application import EscalationMonitorService
from src.sla.infrastructure import (
    EscalationScheduler,
    SLAConfigManager,
    WebhookEscalationNotifier,
)
from src.triage.application import ClassificationService

# Module Routers
from src.dispatch.interfaces import dispatch_router
from src.sla.interfaces import sla_router
from src.triage.interfaces import triage_router

# Logging and HTTP plumbing
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from src.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA policy and watch it for changes
    4. Build classifier, orchestrator and escalation monitor
    5. Start the escalation / load audit scheduler

    SHUTDOWN:
    1. Stop scheduler and policy watcher
    2. Close webhook client
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting dispatch service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()

    # Note: if the database is not reachable the server still starts,
    # but every dispatch endpoint will fail
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    sla_config_manager = SLAConfigManager()
    try:
        sla_config_manager.load(settings.sla_config_path)
    except ConfigurationException as e:
        logger.error("Invalid SLA policy file, using defaults", extra={"error": e.message})
    sla_config_manager.start_watching()

    notifier = WebhookEscalationNotifier(
        channels=lambda: sla_config_manager.get_policy().notify_channels
    )

    classification_service = ClassificationService(create_llm_client())

    orchestrator = DispatchOrchestrator(
        classification_service=classification_service,
        uow_factory=SQLAlchemyDispatchUnitOfWork,
        policy_provider=sla_config_manager.get_policy,
        notifier=notifier,
    )
    escalation_monitor = EscalationMonitorService(
        uow_factory=SQLAlchemyDispatchUnitOfWork,
        policy_provider=sla_config_manager.get_policy,
        notifier=notifier,
    )
    load_audit = ProviderLoadAuditService(uow_factory=SQLAlchemyDispatchUnitOfWork)

    scheduler = EscalationScheduler()
    try:
        await scheduler.start(escalation_monitor.run_once, load_audit.run_once)
    except Exception as e:
        logger.warning("Escalation scheduler not started", extra={"error": str(e)})

    # Store services in app state for dependency injection
    app.state.sla_config_manager = sla_config_manager
    app.state.classification_service = classification_service
    app.state.orchestrator = orchestrator
    app.state.escalation_monitor = escalation_monitor
    app.state.scheduler = scheduler

    logger.info("Dispatch service started", extra={"llm_enabled": classification_service.has_llm})

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down dispatch service")

    await scheduler.stop()
    sla_config_manager.stop_watching()
    await notifier.close()
    await close_database()

    logger.info("Dispatch service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="StoreFix Dispatch API",
    description="""
    ## Store Maintenance Dispatch

    Issue reports from stores are classified, given an SLA deadline and
    routed to the best available service provider. A background monitor
    escalates tickets that breach their SLA.

    ---

    ### Tickets

    - `POST /tickets` - Report an issue (classify + route)
    - `GET /tickets/{id}` - Ticket with assignments, remarks and escalations
    - `POST /tickets/{id}/accept` - Provider accepts, names the technician
    - `POST /tickets/{id}/reject` - Provider declines; re-route or escalate
    - `POST /tickets/{id}/complete` - Provider reports work done
    - `POST /tickets/{id}/approve-completion` - Store closes the ticket

    ### SLA

    - `POST /escalations/run` - Run one monitor pass now
    - `GET /sla/policy` - SLA table in force

    | Priority | Assignment | Acceptance | Resolution |
    |----------|-----------|------------|------------|
    | HIGH     | 15 min    | 30 min     | 4 h        |
    | MEDIUM   | 30 min    | 60 min     | 12 h       |
    | LOW      | 120 min   | 240 min    | 48 h       |
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
app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(dispatch_router)
app.include_router(sla_router)
app.include_router(triage_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports scheduler state, LLM availability and the SLA policy source.
    """
    scheduler = getattr(request.app.state, "scheduler", None)
    classification_service = getattr(request.app.state, "classification_service", None)

    checks = {
        "sla_policy": str(settings.sla_config_path),
        "escalation_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "llm_client": (
            "available" if classification_service and classification_service.has_llm
            else "keyword_fallback"
        ),
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
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health"
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
