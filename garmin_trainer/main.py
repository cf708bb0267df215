from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from loguru import logger

from garmin_trainer.api.cron.cron import router as cron_router
from garmin_trainer.api.integrations.integrations_garmin import router as garmin_integration_router
from garmin_trainer.api.trainer.jobs import router as garmin_trainer_router
from garmin_trainer.api.webhooks.garmin_push import router as garmin_webhook_router
from garmin_trainer.config.settings import settings
from garmin_trainer.core.logger import setup_logger
from garmin_trainer.db.models import Base
from garmin_trainer.db.session import check_database_connection, get_engine

setup_logger(
    level=settings.log_level,
    log_file=settings.log_file or None,
    rotation=settings.log_rotation,
    retention=settings.log_retention,
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Check the database and create tables on startup."""
    check_database_connection()
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables ensured")
    yield
    logger.info("Shutting down")


app = FastAPI(title="Garmin Trainer", lifespan=lifespan)

app.include_router(garmin_integration_router)
app.include_router(garmin_webhook_router)
app.include_router(garmin_trainer_router)
app.include_router(cron_router)

logger.info("FastAPI application initialized")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    logger.debug(f"Request: {request.method} {request.url.path}")
    response = await call_next(request)
    logger.debug(f"Response: {response.status_code} for {request.method} {request.url.path}")
    return response
