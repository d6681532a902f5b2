"""Scheduler job status endpoints."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from restock_alerts.api.deps import get_job_scheduler, require_admin_api_key
from restock_alerts.worker.scheduler import JobScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])


class JobStatusResponse(BaseModel):
    """Snapshot of one scheduled job."""
    name: str
    schedule: str
    last_started_at: Optional[datetime]
    last_finished_at: Optional[datetime]
    last_duration_seconds: Optional[float]
    last_success_at: Optional[datetime]
    last_error: Optional[str]
    is_running: bool
    run_count: int
    failure_count: int
    skipped_count: int
    next_run_at: Optional[datetime]


class JobListResponse(BaseModel):
    scheduler_running: bool
    jobs: List[JobStatusResponse]


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(scheduler: JobScheduler = Depends(get_job_scheduler)):
    """List every registered job with its last run and next trigger."""
    return JobListResponse(
        scheduler_running=scheduler.running,
        jobs=[JobStatusResponse(**job) for job in scheduler.get_status()],
    )


@router.post(
    "/jobs/{name}/run",
    response_model=JobStatusResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def run_job(name: str, scheduler: JobScheduler = Depends(get_job_scheduler)):
    """Run a job immediately and return its updated record."""
    try:
        record = await scheduler.run_now(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Job not found: {name}")

    logger.info(f"Job {name} run manually via API")
    return JobStatusResponse(**record.to_dict(next_run_at=scheduler.next_run_at(name)))
