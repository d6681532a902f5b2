"""Prometheus metrics for the restock alert service."""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("restock_alerts", "Restock alert service application info")
app_info.info({"version": "0.1.0", "name": "restock-alerts"})

# Alert pipeline metrics
alerts_generated_total = Counter(
    "alerts_generated_total",
    "Outcomes of alert generation requests",
    ["alert_type", "outcome"],
)

alerts_rejected_total = Counter(
    "alerts_rejected_total",
    "Alert signals rejected before an alert row was created",
    ["reason"],
)

alert_deliveries_total = Counter(
    "alert_deliveries_total",
    "Per-channel delivery attempts",
    ["channel", "status"],
)

alert_delivery_duration_seconds = Histogram(
    "alert_delivery_duration_seconds",
    "Time spent delivering an alert across all channels",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

alert_retries_total = Counter(
    "alert_retries_total",
    "Failed alert retry attempts",
    ["outcome"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler job runs",
    ["job_name", "status"],
)

scheduler_job_duration_seconds = Histogram(
    "scheduler_job_duration_seconds",
    "Duration of scheduler job runs",
    ["job_name"],
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_name"],
)

# Hot window metrics
hot_window_active = Gauge(
    "hot_window_active",
    "1 while at least one predicted hot window flag is set",
)

# Watch health metrics
watches_cleaned_total = Counter(
    "watches_cleaned_total",
    "Cleanup actions taken by the watch health monitor",
    ["action"],
)


def record_alert_outcome(alert_type: str, outcome: str):
    """Record the result of a generate_alert call."""
    alerts_generated_total.labels(alert_type=alert_type, outcome=outcome).inc()


def record_alert_rejected(reason: str):
    """Record a validation or rate limit rejection."""
    alerts_rejected_total.labels(reason=reason).inc()


def record_delivery(successful: list[str], failed: list[str], duration: float):
    """Record per-channel delivery results."""
    for channel in successful:
        alert_deliveries_total.labels(channel=channel, status="success").inc()
    for channel in failed:
        alert_deliveries_total.labels(channel=channel, status="error").inc()
    alert_delivery_duration_seconds.observe(duration)


def record_retry(outcome: str):
    """Record a retry attempt outcome (succeeded, failed, exhausted)."""
    alert_retries_total.labels(outcome=outcome).inc()


def record_job_run(job_name: str, status: str, duration: float, finished_at: float):
    """Record a scheduler job run."""
    scheduler_runs_total.labels(job_name=job_name, status=status).inc()
    if status != "skipped":
        scheduler_job_duration_seconds.labels(job_name=job_name).observe(duration)
        scheduler_last_run_timestamp.labels(job_name=job_name).set(finished_at)


def update_hot_window_active(active: bool):
    """Update the hot window gauge."""
    hot_window_active.set(1 if active else 0)


def record_cleanup(counts: dict[str, int]):
    """Record watch cleanup counts."""
    for action, count in counts.items():
        if count:
            watches_cleaned_total.labels(action=action).inc(count)
