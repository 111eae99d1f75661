"""
FastAPI Application Entry Point.

This is the main application file for the Trip Tracking Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException
from fastapi.exceptions import RequestValidationError
from triptrack.app.core.config import settings
from triptrack.app.api.v1.router import router as api_v1_router
from triptrack.app.api.v1.endpoints.share import public_router as share_router
from triptrack.app.core.dependencies import get_current_user
from triptrack.app.core.observability import ObservabilityMiddleware, configure_logging
from triptrack.app.core.redis_client import close_redis, get_redis, ping_redis
from triptrack.app.db.session import engine, Base
from triptrack.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from triptrack.app.models.audit_log import AuditLog
from triptrack.app.models.route import Route
from triptrack.app.models.trip import Trip
from triptrack.app.models.stop import Stop
from triptrack.app.models.driver import Driver, DriverAssignment
from triptrack.app.models.booking import Booking
from triptrack.app.models.driver_location import DriverLiveStatus, RequestLocationPing
from triptrack.app.models.share_token import ShareToken


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging.
    2. Creates database tables on startup.
    3. Releases Redis and database connections on shutdown.
    """
    configure_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    if settings.change_feed_backend == "redis":
        await close_redis()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Trip scheduling, bookings and live tracking for passenger transport",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check(redis_conn=Depends(get_redis)):
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    health = {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "change_feed": settings.change_feed_backend,
    }
    if settings.change_feed_backend == "redis":
        redis_ok = await ping_redis(redis_conn)
        health["redis"] = "ok" if redis_ok else "unreachable"
        if not redis_ok:
            health["status"] = "degraded"
    return health


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")

# Share links live at the root: /share/{token}
app.include_router(share_router)


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Trip Tracking Backend API",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/auth/me", tags=["Authentication"])
async def who_am_i(current_user: dict = Depends(get_current_user)):
    """
    Echo the verified token claims.

    Returns 401 if token is missing or invalid.
    """
    return {
        "authenticated_user": current_user,
    }
