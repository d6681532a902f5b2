"""FastAPI dependencies."""

import logging

from fastapi import Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from restock_alerts.alerts.errors import NotFoundError
from restock_alerts.alerts.orchestrator import AlertOrchestrator
from restock_alerts.config import settings
from restock_alerts.watches.health import WatchHealthMonitor
from restock_alerts.worker.scheduler import JobScheduler

logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> AlertOrchestrator:
    """Alert orchestrator built in the app lifespan."""
    return request.app.state.orchestrator


def get_health_monitor(request: Request) -> WatchHealthMonitor:
    return request.app.state.health_monitor


def get_job_scheduler(request: Request) -> JobScheduler:
    return request.app.state.job_scheduler


async def require_admin_api_key(
    x_admin_api_key: str = Header(..., alias="X-Admin-API-Key")
) -> None:
    """
    Dependency to require admin API key for protected endpoints.

    Args:
        x_admin_api_key: Admin API key from X-Admin-API-Key header

    Raises:
        HTTPException: 503 if no key is configured, 403 if invalid
    """
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API key not configured"
        )

    if x_admin_api_key != settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key"
        )


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    """Render NotFoundError raised by a route as a 404."""
    logger.debug(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})
