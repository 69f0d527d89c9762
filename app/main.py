"""Main FastAPI application."""

from contextlib import asynccontextmanager

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from app.api.v1 import api_router
from app.config import settings
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    MarketplaceError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from app.core.logging import setup_logging
from app.db.session import AsyncSessionLocal, engine, init_db
from app.services.application_intake import ApplicationIntake
from app.services.delivery_queue import DeliveryQueue
from app.services.mail_transport import build_mail_transport
from app.services.notification_dispatcher import NotificationDispatcher

# Setup logging
setup_logging()

logger = structlog.get_logger(__name__)

# Initialize Sentry for error tracking (only if DSN is properly configured)
if settings.SENTRY_DSN and settings.SENTRY_DSN.startswith("https://"):
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(),
            LoggingIntegration(
                level=None,  # Capture all logs as breadcrumbs
                event_level="ERROR",  # Permanent delivery failures become events
            ),
        ],
        release=settings.APP_VERSION,
        attach_stacktrace=True,
        send_default_pii=False,
    )
else:
    logger.warning("sentry_dsn_not_configured")


ERROR_STATUS_CODES = {
    NotFoundError: 404,
    ValidationError: 400,
    ConflictError: 409,
    ForbiddenError: 403,
    TransientError: 503,
}


def build_services(session_factory=AsyncSessionLocal) -> dict:
    """Compose queue -> dispatcher -> intake. One queue per process."""
    queue = DeliveryQueue(
        build_mail_transport(settings),
        tick_seconds=settings.DELIVERY_TICK_SECONDS,
        shutdown_grace_seconds=settings.DELIVERY_SHUTDOWN_GRACE_SECONDS,
    )
    dispatcher = NotificationDispatcher(queue, settings)
    intake = ApplicationIntake(session_factory, dispatcher)
    return {"delivery_queue": queue, "dispatcher": dispatcher, "intake": intake}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    if settings.DEBUG:
        await init_db()
    services = build_services()
    for name, service in services.items():
        setattr(app.state, name, service)
    await services["delivery_queue"].start()
    yield
    # Shutdown
    await services["delivery_queue"].stop()
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Marketplace matching students to mentor and employer projects",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    swagger_ui_parameters={
        "persistAuthorization": True,
    },
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router, prefix="/api/v1")


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint."""
    return {
        "message": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "operational",
    }


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint with delivery queue status."""
    queue = getattr(request.app.state, "delivery_queue", None)
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "delivery_queue": queue.stats() if queue is not None else {"running": False},
    }


@app.exception_handler(MarketplaceError)
async def marketplace_exception_handler(request: Request, exc: MarketplaceError):
    """Map the domain error taxonomy to HTTP status codes."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(exc, error_type)),
        500,
    )
    headers = {"Retry-After": "1"} if isinstance(exc, TransientError) else None
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.exception("unhandled_exception", path=str(request.url.path))
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred",
        },
    )
