"""
Outbound Caller Core - Main Application
FastAPI Entry Point with APScheduler for Idempotency Cleanup
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

from app.config import settings
from app.database import init_db
from app.middleware import CorrelationIdMiddleware
from app.routers import (
    prompts_router,
    agents_router,
    calls_router,
    contact_variables_router,
    prompt_versions_router,
    admin_router,
)
from app.scheduler import start_scheduler, stop_scheduler
from app.services.errors import CallerCoreError
from app.services.retell_client import RetellAPIError, parse_retell_error
from app.services.monitoring import init_sentry, setup_logging

# Structured Logging Setup
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ]
)
logger = structlog.get_logger()

# FastAPI App
app = FastAPI(
    title="Outbound Caller Core",
    description="Idempotent voice-agent operations and dynamic prompt caching for outbound calling",
    version="0.1.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(CorrelationIdMiddleware)

# Register routers
app.include_router(prompts_router)
app.include_router(agents_router)
app.include_router(calls_router)
app.include_router(contact_variables_router)
app.include_router(prompt_versions_router)
app.include_router(admin_router)

# Set on startup
scheduler = None


@app.exception_handler(CallerCoreError)
async def caller_core_error_handler(request: Request, exc: CallerCoreError):
    """Map tagged service errors to HTTP responses."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_failed",
        path=request.url.path,
        reason=exc.reason,
        error=exc.message
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RetellAPIError)
async def retell_api_error_handler(request: Request, exc: RetellAPIError):
    """Platform rejections surface as 502 with a user-facing message."""
    logger.warning(
        "platform_request_rejected",
        path=request.url.path,
        operation=exc.operation,
        status_code=exc.status_code
    )
    return JSONResponse(
        status_code=502,
        content={
            "error": "platform_error",
            "message": parse_retell_error(exc.body, exc.operation),
            "details": {"status_code": exc.status_code},
        }
    )


@app.on_event("startup")
async def startup_event():
    """Application Startup"""
    global scheduler

    setup_logging()
    init_sentry()
    logger.info("startup", environment=settings.environment)

    # Initialize database connection
    init_db()
    logger.info("database_initialized")

    scheduler = start_scheduler(settings.environment)


@app.on_event("shutdown")
async def shutdown_event():
    """Application Shutdown"""
    logger.info("shutdown")
    stop_scheduler(scheduler)


@app.get("/")
async def root():
    """Root Endpoint"""
    return {
        "message": "Outbound Caller Core API",
        "version": "0.1.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """
    Health Check Endpoint
    """
    health_status = {
        "status": "healthy",
        "environment": settings.environment,
        "services": {
            "api": "running",
            "scheduler": "running" if scheduler is not None and scheduler.running else "stopped"
        }
    }

    if settings.database_url:
        health_status["services"]["database"] = "configured"

    if settings.retell_api_key:
        health_status["services"]["voice_platform"] = "configured"

    return JSONResponse(
        content=health_status,
        status_code=200
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development"
    )
