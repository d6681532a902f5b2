"""Watch and watch pack health endpoints."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from restock_alerts.alerts.errors import NotFoundError
from restock_alerts.api.deps import get_health_monitor, require_admin_api_key
from restock_alerts.watches.health import WatchHealthMonitor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/watches", tags=["watches"])
packs_router = APIRouter(prefix="/api/watch-packs", tags=["watch-packs"])


class WatchHealthResponse(BaseModel):
    watch_id: str
    product_id: str
    user_id: Optional[str]
    is_healthy: bool
    alert_count: int
    last_alerted: Optional[datetime]
    last_checked: datetime
    issues: List[str]


class WatchPackHealthResponse(BaseModel):
    pack_id: str
    name: str
    is_healthy: bool
    product_count: int
    active_product_count: int
    subscriber_count: int
    actual_subscriber_count: int
    issues: List[str]


class SystemHealthResponse(BaseModel):
    """System-wide health; healthy counts are sampled estimates."""
    total_watches: int
    active_watches: int
    healthy_watches: int
    watches_with_issues: int
    total_watch_packs: int
    active_watch_packs: int
    healthy_watch_packs: int
    sample_size: int
    is_estimate: bool
    last_health_check: datetime


class CleanupResponse(BaseModel):
    inactive_product_watches: int
    inactive_subscriptions: int
    orphaned_watches: int


@router.get("/health/system", response_model=SystemHealthResponse)
async def get_system_health(
    sample_size: Optional[int] = None,
    monitor: WatchHealthMonitor = Depends(get_health_monitor),
):
    """System-wide watch health overview."""
    if sample_size is not None and sample_size <= 0:
        raise HTTPException(status_code=400, detail="sample_size must be positive")
    health = await monitor.get_system_watch_health(sample_size=sample_size)
    return SystemHealthResponse(**health.to_dict())


@router.get("/performance")
async def get_performance_metrics(
    user_id: Optional[str] = None,
    monitor: WatchHealthMonitor = Depends(get_health_monitor),
):
    """Alert activity summary across active watches."""
    return await monitor.get_watch_performance_metrics(user_id=user_id)


@router.get("/users/{user_id}/health", response_model=List[WatchHealthResponse])
async def get_user_watches_health(
    user_id: str, monitor: WatchHealthMonitor = Depends(get_health_monitor)
):
    """Health of every watch owned by a user."""
    statuses = await monitor.check_user_watches_health(user_id)
    return [WatchHealthResponse(**s.to_dict()) for s in statuses]


@router.get("/{watch_id}/health", response_model=WatchHealthResponse)
async def get_watch_health(
    watch_id: str, monitor: WatchHealthMonitor = Depends(get_health_monitor)
):
    """Health of a single watch."""
    status = await monitor.check_watch_health(watch_id)
    if status is None:
        raise NotFoundError("Watch", watch_id)
    return WatchHealthResponse(**status.to_dict())


@router.post(
    "/cleanup",
    response_model=CleanupResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def cleanup_watches(monitor: WatchHealthMonitor = Depends(get_health_monitor)):
    """Deactivate dead watches and drop subscriptions to inactive packs."""
    counts = await monitor.cleanup_watches()
    return CleanupResponse(**counts)


@packs_router.get("/{pack_id}/health", response_model=WatchPackHealthResponse)
async def get_watch_pack_health(
    pack_id: str, monitor: WatchHealthMonitor = Depends(get_health_monitor)
):
    """Health of a watch pack."""
    status = await monitor.check_watch_pack_health(pack_id)
    if status is None:
        raise NotFoundError("Watch pack", pack_id)
    return WatchPackHealthResponse(**status.to_dict())


@packs_router.post("/reconcile", dependencies=[Depends(require_admin_api_key)])
async def reconcile_subscriber_counts(
    monitor: WatchHealthMonitor = Depends(get_health_monitor),
):
    """Correct stored subscriber counts."""
    updated = await monitor.update_watch_pack_subscriber_counts()
    return {"updated": updated}
