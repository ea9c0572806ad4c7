"""
Lost & Found Matcher - Main Application
FastAPI Entry Point with APScheduler for periodic batch matching
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
import structlog

from app.config import settings
from app import database
from app.middleware import CorrelationIdMiddleware
from app.routers.matches import router as matches_router
from app.routers.items import router as items_router
from app.scheduler import start_scheduler, stop_scheduler
from app.services.exceptions import (
    EmptyItemSetError,
    ItemNotFoundError,
    ItemNotScorableError,
    MatchingError,
    StoreUnavailableError,
)
from app.services.monitoring import CircuitBreakerError, setup_logging

setup_logging()
logger = structlog.get_logger()

# FastAPI App
app = FastAPI(
    title="Lost & Found Matcher",
    description="Matches lost item reports to found item reports with AI scoring and a deterministic fallback",
    version="1.0.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(CorrelationIdMiddleware)

# Register routers
app.include_router(matches_router)
app.include_router(items_router)

ERROR_STATUS = {
    EmptyItemSetError: 400,
    ItemNotScorableError: 400,
    ItemNotFoundError: 404,
    StoreUnavailableError: 503,
}


@app.exception_handler(MatchingError)
async def matching_error_handler(request: Request, exc: MatchingError):
    status_code = ERROR_STATUS.get(type(exc), 400)
    logger.info("request_rejected", path=request.url.path, error=str(exc), status_code=status_code)
    return JSONResponse(status_code=status_code, content={"success": False, "message": str(exc)})


@app.exception_handler(PyMongoError)
@app.exception_handler(CircuitBreakerError)
async def store_error_handler(request: Request, exc: Exception):
    logger.error("store_error", path=request.url.path, error=str(exc), exception_type=type(exc).__name__)
    return JSONResponse(status_code=503, content={"success": False, "message": "Database unavailable"})


@app.on_event("startup")
async def startup_event():
    """Application Startup"""
    logger.info("startup", environment=settings.environment)

    store, engine = database.init_services()
    app.state.store = store
    app.state.engine = engine

    app.state.scheduler = start_scheduler(settings.environment, settings.batch_interval_minutes)


@app.on_event("shutdown")
async def shutdown_event():
    """Application Shutdown"""
    logger.info("shutdown")

    stop_scheduler(getattr(app.state, "scheduler", None))
    database.close_services()


@app.get("/")
async def root():
    """Root Endpoint"""
    return {
        "message": "Lost & Found Matcher API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
def health_check(request: Request):
    """
    Health Check Endpoint
    Reports which backing services are configured and reachable
    """
    store = getattr(request.app.state, "store", None)
    scheduler = getattr(request.app.state, "scheduler", None)

    health_status = {
        "status": "healthy",
        "environment": settings.environment,
        "services": {
            "api": "running",
            "mongodb": "connected" if store is not None and store.is_available() else "unavailable",
            "ai_scoring": "enabled" if settings.anthropic_api_key else "fallback_only",
            "scheduler": "running" if scheduler is not None and scheduler.running else "stopped",
        }
    }

    if health_status["services"]["mongodb"] != "connected":
        health_status["status"] = "degraded"

    return JSONResponse(content=health_status, status_code=200)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development"
    )
