"""
FastAPI Application Entry Point.

OTP-gated trip progression service for the freight marketplace.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from freight_gate.app.core.config import settings
from freight_gate.app.core.observability import ObservabilityMiddleware, configure_logging
from freight_gate.app.core.redis_client import broker_reachable
from freight_gate.app.api.v1.router import router as api_v1_router
from freight_gate.app.db.session import engine, Base
from freight_gate.app.services.event_fanout import event_fanout
from freight_gate.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
import freight_gate.app.models.registry  # noqa: F401

logger = logging.getLogger("freight_gate")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Closes the event broker on shutdown.
    """
    configure_logging(settings.debug)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s started (event broker: %s)", settings.app_name, settings.event_broker)
    yield
    await event_fanout.close()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Checkpoint approval and one-time code verification for freight trips",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "event_broker": settings.event_broker,
        "event_broker_reachable": await broker_reachable(),
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the Freight Trip Gate API",
        "docs": "/docs",
        "health": "/health",
    }
