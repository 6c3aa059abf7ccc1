"""
FastAPI application with database pool and CRM client lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from crm_sync.config import settings
from crm_sync.db.pool import db_pool
from crm_sync.infrastructure.observability.logging import get_logger, setup_logging
from crm_sync.routes import crm, health
from crm_sync.services.crm.registry import close_registry

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    try:
        await db_pool.initialize()
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        raise

    logger.info("All services initialized successfully", services=["database_pool"])

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    # CRM HTTP clients first, they may hold open keep-alive connections
    try:
        await close_registry()
    except Exception as e:
        logger.error("Error closing CRM clients", error=str(e))
        shutdown_errors.append(f"CRM clients: {e}")

    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="CRM Sync",
    description="Contact reconciliation and meeting-driven CRM updates for HubSpot and Salesforce",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(crm.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
