"""Alert signal ingestion and processing endpoints."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from restock_alerts.alerts.errors import AlertRateLimitError, AlertValidationError, NotFoundError
from restock_alerts.alerts.orchestrator import AlertOrchestrator
from restock_alerts.alerts.schemas import AlertGenerationData
from restock_alerts.api.deps import get_orchestrator, require_admin_api_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


class AlertSignalRequest(BaseModel):
    """Monitoring signal addressed to one user."""
    user_id: str
    product_id: str
    retailer_id: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    watch_id: Optional[str] = None
    priority: Optional[str] = None


class AlertGenerationResponse(BaseModel):
    alert_id: Optional[str]
    status: str
    scheduled_for: Optional[datetime] = None
    reason: Optional[str] = None
    delivery_channels: List[str] = Field(default_factory=list)


class ProcessAlertResponse(BaseModel):
    success: bool
    rescheduled: bool
    delivery_channels: List[str]
    reason: Optional[str]


@router.post("", response_model=AlertGenerationResponse)
async def create_alert(
    request: AlertSignalRequest,
    orchestrator: AlertOrchestrator = Depends(get_orchestrator),
):
    """Generate an alert from a monitoring signal."""
    try:
        result = await orchestrator.generate_alert(AlertGenerationData(**request.model_dump()))
    except AlertValidationError as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "errors": e.errors})
    except AlertRateLimitError as e:
        raise HTTPException(
            status_code=429,
            detail={"message": str(e), "count": e.count, "limit": e.limit},
        )

    return AlertGenerationResponse(
        alert_id=result.alert_id,
        status=result.status,
        scheduled_for=result.scheduled_for,
        reason=result.reason,
        delivery_channels=result.delivery_channels,
    )


@router.get("/stats")
async def get_alert_stats(orchestrator: AlertOrchestrator = Depends(get_orchestrator)):
    """Queue depth and today's delivery rate."""
    return await orchestrator.get_processing_stats()


@router.post(
    "/{alert_id}/process",
    response_model=ProcessAlertResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def process_alert(
    alert_id: str, orchestrator: AlertOrchestrator = Depends(get_orchestrator)
):
    """Attempt delivery of a stored alert now."""
    result = await orchestrator.process_alert(alert_id)
    if result.not_found:
        raise NotFoundError("Alert", alert_id)
    return ProcessAlertResponse(
        success=result.success,
        rescheduled=result.rescheduled,
        delivery_channels=result.delivery_channels,
        reason=result.reason,
    )
