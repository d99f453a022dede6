"""
FastAPI Main Application Entry Point.

This module initializes the FastAPI application with:
- Lifespan-owned scheduler service and notification queue
- CORS middleware
- Error envelope exception handlers
- Health check endpoint
- API versioning (v2)
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .schemas import HealthResponse, ErrorResponse
from ..scheduler.errors import InvalidOperationError, NotFoundError, SchedulerError, SchedulerNotLeaderError

logger = logging.getLogger(__name__)


# OpenAPI Tags for documentation organization
OPENAPI_TAGS = [
    {
        "name": "Health",
        "description": "Health check and status endpoints",
    },
    {
        "name": "Scheduler",
        "description": "Scheduled jobs: status, manual runs, enable/disable, execution history, dead letter.",
    },
    {
        "name": "Notifications",
        "description": "Notification delivery queue: enqueue, worker control, statistics, dead letter.",
    },
]


def build_services(app: FastAPI, settings, *, erp_client=None) -> None:
    """Create the queue and scheduler and attach them to `app.state`."""
    from ..notifications.dead_letter import NotificationDeadLetterStore
    from ..notifications.queue import NotificationQueue
    from ..scheduler.service import SchedulerService

    queue = NotificationQueue.from_settings(settings)
    app.state.notification_queue = queue
    app.state.notification_dead_letters = NotificationDeadLetterStore()
    app.state.scheduler_service = SchedulerService.from_settings(
        settings,
        enqueue_notification=queue.enqueue,
        cleanup_queue=queue.cleanup,
        erp_client=erp_client,
    )


# Lifespan context manager for startup/shutdown events
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Startup:
        - Create missing tables
        - Seed job definitions, recover interrupted queue items
        - Start the tick loop (leader only) and the drain worker

    Shutdown:
        - Stop the drain worker and the tick loop; running jobs are not interrupted
    """
    settings = get_settings()
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)

    from ..database.bootstrap import init_db

    init_db()

    if not hasattr(app.state, "scheduler_service"):
        build_services(app, settings)

    scheduler_service = app.state.scheduler_service
    queue = app.state.notification_queue

    scheduler_service.init()
    queue.recover()

    if not settings.testing:
        if settings.notification_queue_enabled:
            queue.start()
        if settings.scheduler_enabled:
            try:
                scheduler_service.start()
            except SchedulerNotLeaderError as exc:
                # Another worker process runs the tick loop; this one only serves the API.
                logger.info("%s", exc)

    yield  # Application runs here

    queue.stop()
    scheduler_service.shutdown()
    logger.info("Shut down %s", settings.app_name)


def create_app() -> FastAPI:
    """
    FastAPI application factory.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        description="""
## ERP Scheduler API v2

Backend for the ERP system dashboard:
- **Scheduled jobs**: cron-driven ERP jobs with execution history, manual runs and a dead letter
- **Notification queue**: email and Slack delivery with priorities, exponential backoff and a dead letter

All system endpoints live under `/api/v2/system/*`.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/api/v2/openapi.json",
        openapi_tags=OPENAPI_TAGS,
        lifespan=lifespan,
    )

    # Configure CORS
    allow_origins = settings.cors_origins_list
    # If allow_origins is wildcard, credentials must be disabled to avoid invalid CORS responses.
    allow_credentials = False if allow_origins == ["*"] else True
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register exception handlers
    register_exception_handlers(app)

    # Register routers
    register_routers(app)

    return app


def _error_response(status_code: int, error_type: str, message: str, details: str = None) -> JSONResponse:
    error = {"type": error_type, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error_response(404, exc.error_type, str(exc))

    @app.exception_handler(InvalidOperationError)
    async def invalid_operation_handler(request: Request, exc: InvalidOperationError):
        return _error_response(400, exc.error_type, str(exc))

    @app.exception_handler(SchedulerNotLeaderError)
    async def not_leader_handler(request: Request, exc: SchedulerNotLeaderError):
        return _error_response(409, exc.error_type, str(exc))

    @app.exception_handler(SchedulerError)
    async def scheduler_error_handler(request: Request, exc: SchedulerError):
        return _error_response(400, exc.error_type, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        if location:
            message = f"{location}: {message}"
        return _error_response(422, "validation_error", message)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        settings = get_settings()
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        details = str(exc) if settings.expose_error_details else None
        return _error_response(500, "internal_error", "An unexpected error occurred", details)


def register_routers(app: FastAPI) -> None:
    """
    Register all API routers.

    Routers are organized by domain:
    - /api/v2/health - Health check
    - /api/v2/system/scheduler - Scheduled jobs
    - /api/v2/system/notifications - Notification queue
    """
    # Health endpoint using Pydantic response model
    @app.get(
        "/api/v2/health",
        tags=["Health"],
        summary="Health Check",
        description="Check if the API is running and responsive. Returns service info and timestamp.",
        response_model=HealthResponse,
        responses={
            200: {
                "description": "API is healthy",
                "model": HealthResponse,
            },
            500: {
                "description": "Internal server error",
                "model": ErrorResponse,
            }
        }
    )
    async def health_check(request: Request) -> HealthResponse:
        """
        Health check endpoint.

        Returns service status, version, and timestamp.
        Use this endpoint for monitoring and load balancer health checks.
        """
        settings = get_settings()
        scheduler_service = getattr(request.app.state, "scheduler_service", None)
        queue = getattr(request.app.state, "notification_queue", None)
        return HealthResponse(
            status="healthy",
            service="erp-scheduler",
            version=settings.app_version,
            timestamp=datetime.now(timezone.utc),
            api="v2",
            scheduler_running=bool(scheduler_service and scheduler_service.running),
            notification_queue_running=bool(queue and queue.is_running),
        )

    # Root redirect to docs
    @app.get(
        "/",
        include_in_schema=False
    )
    async def root():
        return JSONResponse(
            content={
                "message": "Welcome to ERP Scheduler API v2",
                "docs": "/docs",
                "health": "/api/v2/health"
            }
        )

    from .routers import notifications_router, scheduler_router

    app.include_router(scheduler_router, prefix="/api/v2")
    app.include_router(notifications_router, prefix="/api/v2")


# Create the application instance
app = create_app()
