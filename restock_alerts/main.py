"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response
from prometheus_fastapi_instrumentator import Instrumentator

from restock_alerts.alerts.errors import NotFoundError
from restock_alerts.alerts.orchestrator import AlertOrchestrator
from restock_alerts.api.deps import not_found_handler
from restock_alerts.api.routes import alerts, scheduler, watches
from restock_alerts.config import settings
from restock_alerts.db.models import Base
from restock_alerts.db.session import AsyncSessionLocal, engine
from restock_alerts.logging_config import setup_logging
from restock_alerts.notify.channels import DiscordChannel, WebhookChannel
from restock_alerts.notify.dispatcher import DeliveryDispatcher
from restock_alerts.watches.health import WatchHealthMonitor
from restock_alerts.worker.hot_window import HotWindowFlags
from restock_alerts.worker.scheduler import setup_scheduler
from restock_alerts.worker.tasks import TaskRunner

# Configure structured logging
setup_logging()
logger = logging.getLogger(__name__)


def build_dispatcher() -> DeliveryDispatcher:
    """
    Build the delivery dispatcher from settings.

    Discord posts straight to each user's webhook. Push, email and SMS are
    forwarded to the relay webhook when one is configured; otherwise those
    channels report "not configured" and the alert is left for retry.
    """
    timeout = settings.delivery_timeout_seconds
    dispatcher = DeliveryDispatcher(timeout_seconds=timeout)
    dispatcher.register("discord", DiscordChannel(timeout=timeout))

    if settings.generic_webhook_url:
        for channel in ("web_push", "email", "sms"):
            dispatcher.register(
                channel, WebhookChannel(channel, settings.generic_webhook_url, timeout=timeout)
            )
    else:
        logger.warning("No relay webhook configured; web_push, email and sms are disabled")

    return dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting restock alert service...")

    # Initialize database
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    dispatcher = build_dispatcher()
    orchestrator = AlertOrchestrator(AsyncSessionLocal, dispatcher)
    health_monitor = WatchHealthMonitor(AsyncSessionLocal)
    task_runner = TaskRunner(
        orchestrator,
        health_monitor,
        AsyncSessionLocal,
        hot_windows=HotWindowFlags(settings.redis_url),
    )
    job_scheduler = setup_scheduler(task_runner)

    app.state.orchestrator = orchestrator
    app.state.health_monitor = health_monitor
    app.state.job_scheduler = job_scheduler

    # Start scheduler
    if settings.scheduler_enabled:
        job_scheduler.start()
    else:
        logger.info("Scheduler disabled; jobs can still be run via the API")

    yield

    # Shutdown
    logger.info("Shutting down...")
    job_scheduler.shutdown()
    await task_runner.close()
    await dispatcher.close()
    await engine.dispose()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Restock Alerts",
    description="Restock and price drop alert orchestration",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health", "/favicon.ico"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

app.add_exception_handler(NotFoundError, not_found_handler)

# Include API routes
app.include_router(alerts.router)
app.include_router(scheduler.router)
app.include_router(watches.router)
app.include_router(watches.packs_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon response to avoid 404 noise."""
    return Response(status_code=204)


if __name__ == "__main__":
    # Run with uvicorn
    uvicorn.run(
        "restock_alerts.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
