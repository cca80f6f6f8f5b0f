"""Fix It by Threalty - FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from fixit.core.config import Environment
from fixit.core.database import engine
from fixit.core.env_validation import validate_environment
from fixit.core.errors import register_exception_handlers
from fixit.core.logging_config import configure_logging
from fixit.core.rate_limit import limiter, rate_limit_exceeded_handler
from fixit.middleware.request_id import RequestIDMiddleware
from fixit.routers import (
    audit_logs_router,
    auth_router,
    comments_router,
    documents_router,
    invites_router,
    notifications_router,
    properties_router,
    public_router,
    reports_router,
    requests_router,
    scheduled_maintenance_router,
    users_router,
    vendors_router,
)
from fixit.services.scheduler import get_scheduler

# Hard-fails (exit 1) in staging/production if required configuration is missing
settings = validate_environment()

if settings.environment != Environment.TEST:
    configure_logging()

logger = logging.getLogger(__name__)


def scheduler_wanted() -> bool:
    return settings.scheduler_enabled and settings.environment != Environment.TEST


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    scheduler = get_scheduler() if scheduler_wanted() else None
    if scheduler:
        scheduler.start()
        logger.info("[STARTUP] Maintenance scheduler started")
    yield
    # Shutdown
    if scheduler:
        await scheduler.stop()
    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="Multi-tenant property maintenance: requests, scheduled maintenance, vendors and public links.",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # In production, wildcard (*) is blocked by env_validation.py
    allowed_origins = [origin.strip() for origin in settings.allowed_origins.split(",") if origin.strip()]
    logger.info(f"[STARTUP] CORS configured with origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    app.include_router(auth_router, prefix=settings.api_prefix)
    app.include_router(users_router, prefix=settings.api_prefix)
    app.include_router(properties_router, prefix=settings.api_prefix)
    app.include_router(invites_router, prefix=settings.api_prefix)
    app.include_router(vendors_router, prefix=settings.api_prefix)
    app.include_router(requests_router, prefix=settings.api_prefix)
    app.include_router(scheduled_maintenance_router, prefix=settings.api_prefix)
    app.include_router(comments_router, prefix=settings.api_prefix)
    app.include_router(notifications_router, prefix=settings.api_prefix)
    app.include_router(documents_router, prefix=settings.api_prefix)
    app.include_router(reports_router, prefix=settings.api_prefix)
    app.include_router(audit_logs_router, prefix=settings.api_prefix)
    app.include_router(public_router, prefix=settings.api_prefix)  # anonymous, token-gated

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": settings.app_name}

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": settings.app_name,
            "version": "1.0.0",
            "docs": "/docs" if settings.debug else "Disabled in production",
        }

    return app


app = create_app()
