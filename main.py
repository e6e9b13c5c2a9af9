"""
Slip Engine API - FastAPI application

Startup: structured logging, database, config status, daily scheduler.
Domain errors (SlipEngineError) are rendered with the standard error
envelope from core.error_responses.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import database
from core.error_responses import ErrorCode, SlipEngineError, make_error
from core.structured_logging import RequestCorrelationMiddleware, configure_structured_logging, get_correlation_id
from daily_scheduler import get_scheduler, init_scheduler, scheduler_router
from env_config import Config
from routers import slips_router

configure_structured_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.init_database()
    Config.log_status()
    if Config.SCHEDULER_ENABLED:
        init_scheduler().start()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")
    yield
    scheduler = get_scheduler()
    if scheduler:
        scheduler.stop()
    database.close_database()


app = FastAPI(title="Slip Engine API", version=Config.ENGINE_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestCorrelationMiddleware)

app.include_router(slips_router)
app.include_router(scheduler_router)


@app.exception_handler(SlipEngineError)
async def slip_engine_error_handler(request: Request, exc: SlipEngineError):
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content=make_error(exc.code, exc.message, field=exc.field, request_id=get_correlation_id()),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=make_error(ErrorCode.INTERNAL_ERROR, "Internal server error", request_id=get_correlation_id()),
    )


@app.get("/")
def root():
    return {
        "status": "online",
        "message": "Slip Engine API",
        "version": Config.ENGINE_VERSION,
    }


@app.get("/health")
def health():
    scheduler = get_scheduler()
    return {
        "status": "healthy",
        "version": Config.ENGINE_VERSION,
        "database": database.get_database_status(),
        "scheduler_running": bool(scheduler and scheduler.running),
        "feeds_configured": sorted(Config.SIGNAL_FEED_URLS),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
