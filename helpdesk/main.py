"""
Campus Helpdesk - Main Application
==================================

University helpdesk core: ticket lifecycle, SLA-driven escalation up the
department → college → campus → system chain, scope-aware permissions and
duplicate detection at intake.

Modules:
- Access: org tree, roles, PermissionModel
- SLA: policy, escalation scheduler
- Tickets: state machine, transitions, messages
- Intake: duplicate detection, ticket creation

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects, state machine
- Infrastructure: Database, embeddings, event delivery
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from helpdesk.access.domain import RoleCatalog
from helpdesk.config import settings
from helpdesk.core import ApplicationException
from helpdesk.infrastructure.database import close_database, create_tables, init_database
from helpdesk.infrastructure.embeddings import IEmbeddingClient, get_embedding_client
from helpdesk.intake.application import TicketIntakeService
from helpdesk.intake.domain import DuplicateDetector
from helpdesk.intake.infrastructure import EmbeddingProviderAdapter
from helpdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from helpdesk.shared.infrastructure.logging import get_logger, setup_logging
from helpdesk.sla.application import EscalationScheduler
from helpdesk.sla.domain import ISLAPolicyProvider
from helpdesk.sla.infrastructure import EscalationJobRunner, SLAConfigManager
from helpdesk.sla.interfaces import router as sla_router
from helpdesk.tickets.application import Clock, IEventSink, ITicketRepository, TicketService
from helpdesk.tickets.domain import TicketStateMachine
from helpdesk.tickets.infrastructure import (
    InMemoryTicketRepository,
    LoggingEventSink,
    SQLAlchemyTicketRepository,
    WebhookEventSink,
)
from helpdesk.tickets.interfaces import router as tickets_router

logger = get_logger(__name__)


def wire_services(
    app: FastAPI,
    repository: ITicketRepository,
    event_sink: IEventSink,
    policy_provider: ISLAPolicyProvider,
    embedding_client: IEmbeddingClient,
    role_catalog: Optional[RoleCatalog] = None,
    clock: Optional[Clock] = None,
) -> None:
    """Build the service graph and store it in app state for dependency injection."""
    state_machine = TicketStateMachine(policy_provider)
    ticket_service = TicketService(repository, state_machine, event_sink, clock)

    app.state.role_catalog = role_catalog or RoleCatalog()
    app.state.policy_provider = policy_provider
    app.state.ticket_service = ticket_service
    app.state.intake_service = TicketIntakeService(
        repository,
        ticket_service,
        DuplicateDetector(settings.duplicate_similarity_threshold),
        EmbeddingProviderAdapter(embedding_client),
    )
    app.state.escalation_scheduler = EscalationScheduler(repository, ticket_service)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA policy and watch the file
    4. Wire services
    5. Start the escalation scheduler

    SHUTDOWN:
    1. Stop the scheduler and the policy watcher
    2. Close HTTP clients and database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk Service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    if settings.storage_backend == "sql":
        logger.info("Initializing database")
        init_database()
        # Use Alembic in production
        await create_tables()
        repository: ITicketRepository = SQLAlchemyTicketRepository()
    else:
        logger.warning("Using in-memory ticket storage; data is lost on restart")
        repository = InMemoryTicketRepository()

    logger.info("Loading SLA policy", extra={"path": str(settings.sla_config_path)})
    config_manager = SLAConfigManager()
    config_manager.load(settings.sla_config_path)
    config_manager.start_watching()

    if settings.event_webhook_url:
        event_sink: IEventSink = WebhookEventSink()
    else:
        logger.info("Event webhook not configured, events go to the log")
        event_sink = LoggingEventSink()

    embedding_client = get_embedding_client()
    logger.info("Embedding client ready", extra={"model": embedding_client.model})

    wire_services(app, repository, event_sink, config_manager, embedding_client)
    app.state.settings = settings

    job_runner: Optional[EscalationJobRunner] = None
    if settings.escalation_scan_interval > 0:
        job_runner = EscalationJobRunner(interval_seconds=settings.escalation_scan_interval)
        await job_runner.start(app.state.escalation_scheduler.run_once)
    else:
        logger.warning("Escalation scan interval is 0, automatic escalation disabled")
    app.state.job_runner = job_runner

    logger.info("Helpdesk Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Helpdesk Service")

    if job_runner:
        await job_runner.stop()
    config_manager.stop_watching()

    if isinstance(event_sink, WebhookEventSink):
        await event_sink.close()
    close_client = getattr(embedding_client, "close", None)
    if close_client is not None:
        await close_client()

    if settings.storage_backend == "sql":
        await close_database()

    logger.info("Helpdesk Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Campus Helpdesk API",
    description="""
    ## University Helpdesk Core

    Tickets escalate automatically up the authority chain
    (DEPARTMENT → COLLEGE → CAMPUS → SYSTEM) when their SLA deadline
    elapses without resolution.

    ### SLA deadlines (hours, by escalation urgency)

    | Urgency | Hours |
    |---------|-------|
    | URGENT  | 2     |
    | HIGH    | 12    |
    | MEDIUM  | 24    |
    | LOW     | 48    |

    ### Authentication

    Requests carry an already-authenticated principal in gateway headers:
    `X-User-Id`, `X-User-Roles` (comma separated), `X-Campus-Id`,
    `X-College-Id`, `X-Department-Id`.
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
app.include_router(tickets_router)
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports SLA policy status, scheduler state and storage backend.
    """
    job_runner = getattr(request.app.state, "job_runner", None)
    checks = {
        "storage": settings.storage_backend,
        "sla_policy": "loaded" if getattr(request.app.state, "policy_provider", None) else "not_loaded",
        "escalation_scheduler": "running" if job_runner and job_runner.is_running else "stopped",
        "event_sink": "webhook" if settings.event_webhook_url else "log",
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
        "service": "Campus Helpdesk",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "tickets": {
                "prefix": "/tickets",
                "endpoints": [
                    "POST /tickets - File a ticket (duplicate-checked)",
                    "GET /tickets/{id} - Get ticket",
                    "POST /tickets/{id}/transitions - Apply a transition",
                    "POST /tickets/{id}/escalate - Escalate manually",
                    "POST /tickets/{id}/reassign - Reassign",
                    "POST /tickets/{id}/messages - Post a message",
                    "GET /tickets/{id}/messages - List messages",
                    "GET /tickets/{id}/duplicates - List linked duplicates",
                    "POST /tickets/{id}/rating - Rate a resolved ticket",
                    "GET /tickets/{id}/timeline - Ticket timeline",
                ]
            },
            "sla": {
                "endpoints": [
                    "POST /escalations/scan - Run an escalation scan",
                    "GET /sla/policy - SLA policy in force",
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
