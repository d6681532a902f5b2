"""Named recurring job scheduler built on APScheduler."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from restock_alerts import metrics
from restock_alerts.alerts.errors import JobAlreadyRegisteredError, SchedulerJobError
from restock_alerts.config import settings
from restock_alerts.logging_config import get_logger

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Any]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobRecord:
    """Bookkeeping for one registered job. Process-local, never persisted."""

    name: str
    schedule: str
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_duration_seconds: Optional[float] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    is_running: bool = False
    run_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0

    def to_dict(self, next_run_at: Optional[datetime] = None) -> dict[str, Any]:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "name": self.name,
            "schedule": self.schedule,
            "last_started_at": _iso(self.last_started_at),
            "last_finished_at": _iso(self.last_finished_at),
            "last_duration_seconds": self.last_duration_seconds,
            "last_success_at": _iso(self.last_success_at),
            "last_error": self.last_error,
            "is_running": self.is_running,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "next_run_at": _iso(next_run_at),
        }


class JobScheduler:
    """
    Registers named cron jobs and tracks every run.

    Each job runs through a tracking wrapper that records timing and errors
    on its JobRecord. Job exceptions are logged and recorded, never raised
    into APScheduler. A trigger that arrives while the same job is still
    running is skipped and counted.
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._jobs: dict[str, JobFunc] = {}
        self._triggers: dict[str, CronTrigger] = {}
        self._records: dict[str, JobRecord] = {}

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def job_names(self) -> list[str]:
        return list(self._records)

    def register_job(self, name: str, schedule_expr: str, fn: JobFunc) -> JobRecord:
        """
        Register a named job on a crontab schedule (UTC).

        Args:
            name: Unique job name
            schedule_expr: Five-field crontab expression
            fn: Coroutine function taking no arguments

        Returns:
            The job's JobRecord

        Raises:
            JobAlreadyRegisteredError: A job with this name exists
            ValueError: The schedule expression is invalid
        """
        if name in self._records:
            raise JobAlreadyRegisteredError(name)

        # Raises ValueError before anything is registered
        trigger = CronTrigger.from_crontab(schedule_expr, timezone="UTC")

        record = JobRecord(name=name, schedule=schedule_expr)
        self._jobs[name] = fn
        self._triggers[name] = trigger
        self._records[name] = record

        self._scheduler.add_job(
            self._run,
            trigger,
            args=[name],
            id=name,
            name=name,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
            replace_existing=True,
        )
        logger.info(f"Registered job {name} ({schedule_expr})")
        return record

    def next_run_at(self, name: str, now: Optional[datetime] = None) -> Optional[datetime]:
        """Next trigger instant for a job, evaluated against ``now``."""
        trigger = self._triggers[name]
        return trigger.get_next_fire_time(None, now or utc_now())

    def get_status(self, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        """
        Snapshot of every registered job.

        Reads the records without locking, so a running job is never blocked.
        """
        now = now or utc_now()
        return [
            record.to_dict(next_run_at=self.next_run_at(name, now))
            for name, record in self._records.items()
        ]

    async def run_now(self, name: str) -> JobRecord:
        """
        Run a job immediately through the tracking wrapper.

        Raises:
            KeyError: No job with this name
        """
        if name not in self._records:
            raise KeyError(name)
        await self._run(name)
        return self._records[name]

    async def _run(self, name: str):
        record = self._records[name]
        job_logger = get_logger(__name__, job_name=name)

        if record.is_running:
            record.skipped_count += 1
            metrics.record_job_run(name, "skipped", 0.0, time.time())
            job_logger.warning(f"Skipping job {name}: previous run still in progress")
            return

        record.is_running = True
        record.last_started_at = utc_now()
        started = time.perf_counter()
        status = "success"
        job_logger.debug(f"Starting job {name}")

        try:
            await self._jobs[name]()
        except Exception as e:
            error = SchedulerJobError(name, e)
            status = "error"
            record.last_error = str(e) or e.__class__.__name__
            record.failure_count += 1
            job_logger.error(str(error), exc_info=True)
        finally:
            duration = time.perf_counter() - started
            record.last_finished_at = utc_now()
            record.last_duration_seconds = round(duration, 3)
            record.run_count += 1
            record.is_running = False

        if status == "success":
            record.last_success_at = record.last_finished_at
            record.last_error = None
            job_logger.info(f"Job {name} completed in {duration:.2f}s")

        metrics.record_job_run(name, status, duration, record.last_finished_at.timestamp())

    def start(self):
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info(f"Scheduler started with {len(self._records)} jobs")

    def shutdown(self):
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")


def setup_scheduler(task_runner, scheduler: Optional[JobScheduler] = None) -> JobScheduler:
    """
    Register the service's recurring jobs.

    Args:
        task_runner: TaskRunner providing the job bodies
        scheduler: Existing scheduler to register on

    Returns:
        Configured (not yet started) scheduler
    """
    scheduler = scheduler or JobScheduler()

    jobs = [
        ("availability_scan", settings.availability_scan_cron, task_runner.run_availability_scan),
        ("hot_window_check", settings.hot_window_check_cron, task_runner.check_hot_windows),
        ("hot_window_refresh", settings.hot_window_refresh_cron, task_runner.refresh_hot_windows),
        ("process_pending_alerts", settings.pending_alerts_cron, task_runner.process_pending_alerts),
        ("retry_failed_alerts", settings.retry_failed_alerts_cron, task_runner.retry_failed_alerts),
        ("watch_cleanup", settings.watch_cleanup_cron, task_runner.cleanup_watches),
        ("watch_pack_reconcile", settings.watch_pack_reconcile_cron, task_runner.reconcile_watch_packs),
        ("alert_cleanup", settings.alert_cleanup_cron, task_runner.cleanup_alerts),
        ("catalog_ingestion", settings.catalog_ingestion_cron, task_runner.ingest_catalog),
        ("model_retraining", settings.model_retraining_cron, task_runner.retrain_models),
    ]
    for name, expr, fn in jobs:
        scheduler.register_job(name, expr, fn)

    logger.info(
        "Scheduler configured: %s",
        ", ".join(f"{name} ({expr})" for name, expr, _ in jobs),
    )
    return scheduler
