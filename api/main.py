"""
FastAPI application initialization
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from api.routes import health, connectors, jobs, loaders
from api.middleware import RequestContextMiddleware
from api.dependencies import job_scheduler
from connectors.scheduler import CleanupScheduler
from core.config import settings
from core.exceptions import SyncError
from core.logging import setup_logging
from schemas.api import ErrorResponse
import logging

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Data Connector Engine API",
    description="Connects external data sources and syncs them into PostgreSQL",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Periodic stale job cleanup
scheduler = CleanupScheduler(job_scheduler)


# Include routers
app.include_router(health.router)
app.include_router(connectors.router)
app.include_router(jobs.router)
app.include_router(loaders.router)


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    """Every engine error becomes a JSON body with the error's HTTP status"""
    request_id = getattr(request.state, "request_id", None)
    if exc.status_code >= 500:
        logger.error(f"[{request_id}] {exc.describe()}")
    else:
        logger.info(f"[{request_id}] {exc.describe()}")

    body = ErrorResponse(error=exc.__class__.__name__, detail=exc.message, context=exc.context)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Data Connector Engine API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Data Connector Engine API")
    scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Data Connector Engine API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "connectors": "/connectors",
            "jobs": "/jobs",
            "loaders": "/loaders"
        }
    }
