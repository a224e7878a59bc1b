"""
FastAPI Main Application Entry Point for the SLA Escalation Engine.

Backend service that:
- Evaluates tracked records against their step SLA
- Computes business-hours due dates
- Fires notify / auto-approve escalations on new violations
- Runs the periodic sweep in the background
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import SlaEngineException
from app.api.routes import sla_router


# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup: start the sweep scheduler on the designated worker.
    Shutdown: stop it gracefully.
    """
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Scheduler enabled: {settings.enable_scheduler}")
    logger.info(f"Run scheduler (this instance): {settings.run_scheduler}")
    logger.info(f"Violation clock: {settings.violation_clock.value}")

    app.state.scheduler = None

    # Only start the scheduler if BOTH enabled AND run_scheduler is true.
    # Multiple workers (gunicorn -w 4) would otherwise sweep concurrently.
    should_run_scheduler = settings.enable_scheduler and settings.run_scheduler

    if should_run_scheduler:
        try:
            from app.services.scheduler import get_scheduler
            app.state.scheduler = get_scheduler()
            app.state.scheduler.start()
            logger.info("Background scheduler started")
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")

    yield

    if app.state.scheduler and app.state.scheduler.is_running:
        app.state.scheduler.stop()
        logger.info("Scheduler stopped")

    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    # SLA Escalation Engine

    Watches records moving through workflow steps and escalates SLA breaches.

    ## Business Calendar
    - Monday to Friday 08:00-17:00, Saturday 08:00-12:00 (UTC+7)
    - SLA time only elapses during business hours when computing due dates

    ## Escalation
    - **notify**: call the step's notification API on each new violation
    - **auto_approve**: call the approval API once the violation cap is reached

    ## Manual Trigger
    `POST /api/sla/admin/run-sweep` returns
    ```json
    {"success": true, "waiting_count": 12, "violated_count": 3, "message": "..."}
    ```
    """,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# Configure CORS for frontend communication
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler for SlaEngineExceptions
@app.exception_handler(SlaEngineException)
async def sla_engine_exception_handler(request, exc: SlaEngineException):
    """Handle all SlaEngineException subclasses."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


# Include API routers
app.include_router(sla_router)


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns service status and scheduler health.
    """
    scheduler = getattr(app.state, 'scheduler', None)

    if scheduler is not None:
        scheduler_status = scheduler.get_health_status()
    else:
        scheduler_status = {"status": "disabled", "is_running": False}

    overall_status = "degraded" if scheduler_status["status"] == "degraded" else "healthy"

    return {
        "status": overall_status,
        "service": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "scheduler": scheduler_status,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Root endpoint
@app.get("/", tags=["System"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else "Docs disabled in production",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
