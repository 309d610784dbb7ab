"""
Main FastAPI application for Plenaria Legal.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
import time

from plenaria_legal.core.config import get_config
from plenaria_legal.core.database import check_database_connection, initialize_database
from plenaria_legal.core.exceptions import ConsultationError
from plenaria_legal.core.response_utils import (
    create_success_response, domain_error_response, error_json_response, ResponseTimer,
)
from plenaria_legal.schemas import HealthCheckResponse, StandardResponse
from plenaria_legal.services.live_coordinator import ChannelHub, LiveSessionCoordinator
from plenaria_legal.services.live_sessions import LiveSessionRegistry
from plenaria_legal.api.v1 import admin, auth, consultations, live

config = get_config()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=getattr(logging, config.application.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


def build_live_coordinator() -> LiveSessionCoordinator:
    settings = config.consultation
    registry = LiveSessionRegistry(
        max_session_minutes=settings.max_session_minutes,
        idle_timeout_minutes=settings.idle_timeout_minutes,
        auto_expiry_enabled=settings.session_auto_expiry_enabled,
    )
    return LiveSessionCoordinator(hub=ChannelHub(), registry=registry, settings=settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Plenaria Legal application...")
    try:
        initialize_database()
        logger.info("Database initialization completed")
    except Exception as e:
        logger.warning(f"Database initialization failed during startup: {e}")
        logger.info("Application will continue - requests needing storage will fail until it recovers")

    app.state.live_coordinator = build_live_coordinator()
    logger.info("Application startup completed successfully")

    yield

    # Shutdown
    logger.info("Shutting down Plenaria Legal application...")
    app.state.live_coordinator.shutdown()


# Create FastAPI application
app = FastAPI(
    title=config.application.app_name,
    description=config.application.app_description,
    version=config.application.app_version,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.application.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests."""
    start_time = time.time()

    logger.info(f"Request: {request.method} {request.url}")

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(f"Response: {response.status_code} - {process_time:.3f}s")

    return response


@app.exception_handler(ConsultationError)
async def consultation_error_handler(request: Request, exc: ConsultationError):
    """Domain errors keep their own status and code."""
    logger.info(f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}")
    return domain_error_response(exc)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTP exception handler."""
    logger.warning(f"HTTP exception: {exc.status_code} - {exc.detail}")
    return error_json_response(
        message=str(exc.detail),
        status_code=exc.status_code,
        errors=[str(exc.detail)],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed input is reported field by field."""
    errors = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
        for error in exc.errors()
    ]
    return error_json_response(
        message="Validation failed",
        status_code=400,
        errors=errors,
        code="validation_error",
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return error_json_response(
        message="Internal server error",
        status_code=500,
    )


# Health check endpoint
@app.get("/health", response_model=StandardResponse)
async def health_check(request: Request):
    """Application health check."""
    with ResponseTimer() as timer:
        database_ok = check_database_connection()
        coordinator = getattr(request.app.state, "live_coordinator", None)
        health_data = HealthCheckResponse(
            status="healthy" if database_ok else "degraded",
            version=config.application.app_version,
            environment=config.application.environment,
            database=database_ok,
            live_sessions=len(coordinator.registry) if coordinator else 0,
        )

        return create_success_response(
            data=health_data,
            status_code=200,
            execution_time=timer.get_execution_time()
        )

API_VERSION_PREFIX = "/api/v1"

# Include API routers
app.include_router(auth.router, prefix=f"{API_VERSION_PREFIX}/auth", tags=["Authentication"])
app.include_router(consultations.router, prefix=f"{API_VERSION_PREFIX}/consultations", tags=["Consultations"])
app.include_router(admin.router, prefix=f"{API_VERSION_PREFIX}/admin", tags=["Admin"])
app.include_router(live.router, prefix="/ws", tags=["Live"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "plenaria_legal.main:app",
        host=config.application.api_host,
        port=config.application.api_port,
        reload=config.application.debug,
        log_level=config.application.log_level.lower()
    )
