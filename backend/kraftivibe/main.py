"""
Kraftivibe Subscriptions - FastAPI Application

Main entry point for the subscription and billing API.
Provides tenant subscription endpoints and admin analytics.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kraftivibe.config.settings import settings
from kraftivibe.infrastructure.exceptions import (
    ConflictError,
    KraftivibeError,
    NotFoundError,
    ValidationError,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "kraftivibe-subscriptions"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(f"Kraftivibe Subscriptions starting in {settings.environment} mode...")

    # Initialize SQLModel database if URL is configured
    if settings.database_url:
        try:
            from kraftivibe.infrastructure.db.database import init_db
            await init_db()
            logger.info("SQLModel database connection pool initialized")
        except Exception as e:
            logger.warning(f"SQLModel database initialization skipped: {e}")

    yield

    # Shutdown
    if settings.database_url:
        try:
            from kraftivibe.infrastructure.db.database import close_db
            await close_db()
            logger.info("SQLModel database connection pool closed")
        except Exception as e:
            logger.warning(f"SQLModel database shutdown error: {e}")

    logger.info("Kraftivibe Subscriptions shutting down...")


app = FastAPI(
    title="Kraftivibe Subscriptions",
    description="Subscription, billing and usage service for the Kraftivibe platform",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=400,
        content=exc.to_dict(),
    )


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle not found errors."""
    return JSONResponse(
        status_code=404,
        content=exc.to_dict(),
    )


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError):
    """Handle state conflicts, including exceeded usage limits."""
    return JSONResponse(
        status_code=409,
        content=exc.to_dict(),
    )


@app.exception_handler(KraftivibeError)
async def general_error_handler(request: Request, exc: KraftivibeError):
    """Handle all other application errors."""
    logger.error(f"Unhandled application error on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    With a database configured the subscription store is pinged; a failed
    ping reports 503.
    """
    if not settings.database_url:
        return {"status": "healthy", "service": SERVICE_NAME, "database": "not configured"}

    from kraftivibe.infrastructure.db.database import get_session_context
    from kraftivibe.infrastructure.db.repositories import SubscriptionRepository
    from kraftivibe.infrastructure.services.subscription_service import SubscriptionService

    try:
        async with get_session_context() as session:
            result = await SubscriptionService(SubscriptionRepository(session)).health_check()
        return {
            "status": result.status,
            "service": SERVICE_NAME,
            "database": "connected",
            "checked_at": result.checked_at.isoformat(),
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "service": SERVICE_NAME,
                "checked_at": datetime.now(timezone.utc).isoformat(),
            },
        )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Kraftivibe Subscriptions API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from kraftivibe.api.routes import admin, subscriptions

app.include_router(subscriptions.router)
app.include_router(admin.router)
