"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from staywatch.adapters.registry import build_registry
from staywatch.api.routes import preview
from staywatch.config import settings
from staywatch.db.models import Base
from staywatch.db.session import AsyncSessionLocal, engine
from staywatch.jobs.pool import build_worker_pool
from staywatch.jobs.queues import JobQueues, build_backend
from staywatch.jobs.scheduler import MonitorScheduler
from staywatch.logging_config import setup_logging
from staywatch.services.alerts import AlertService, build_sender

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting staywatch...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    registry = build_registry()
    queues = JobQueues(build_backend())
    app.state.registry = registry
    app.state.queues = queues
    logger.info(f"Registered providers: {', '.join(registry.codes())}")

    workers = None
    if settings.run_workers_in_app:
        sender = build_sender()
        workers = build_worker_pool(registry, queues, AsyncSessionLocal, AlertService(sender))
        workers.start()

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = MonitorScheduler(queues, AsyncSessionLocal)
        scheduler.start()

    yield

    logger.info("Shutting down...")
    if scheduler:
        scheduler.stop()
    if workers:
        await workers.stop()
        if hasattr(sender, "close"):
            await sender.close()
    await queues.close()
    await registry.cleanup()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="staywatch",
    description="UK holiday accommodation price monitoring",
    version="0.1.0",
    lifespan=lifespan,
)

instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/health"],
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

app.include_router(preview.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run(
        "staywatch.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
