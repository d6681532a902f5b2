"""Alert generation, delivery and retry orchestration."""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from restock_alerts import metrics
from restock_alerts.alerts.errors import AlertRateLimitError, AlertValidationError
from restock_alerts.alerts.gates import DeduplicationGate, KeyedLock, RateLimiter
from restock_alerts.alerts.quiet_hours import QuietHoursGate, UserQuietHoursGate
from restock_alerts.alerts.schemas import (
    PRIORITY_RANK,
    AlertGenerationData,
    AlertProcessingResult,
    AlertProcessResult,
    QuietHoursCheck,
)
from restock_alerts.alerts.strategies import get_strategy_for_type
from restock_alerts.alerts.validation import AlertValidator
from restock_alerts.config import settings
from restock_alerts.db.models import Alert, User, Watch
from restock_alerts.logging_config import get_logger
from restock_alerts.notify.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

MAX_RETRY_REASON = "Max retry attempts exceeded"


class AlertOrchestrator:
    """
    Turns monitoring signals into delivered alerts.

    generate_alert runs validate, deduplicate, rate-limit, create,
    quiet-hours and deliver in that order. Dedup, rate limit and create
    share a per-user lock; delivery of a single alert is serialized by a
    per-alert lock and a sent alert is never delivered twice. Both locks are
    in-process only.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: Dispatcher,
        quiet_hours_gate: Optional[QuietHoursGate] = None,
        dedup_gate: Optional[DeduplicationGate] = None,
        rate_limiter: Optional[RateLimiter] = None,
        max_retry_attempts: Optional[int] = None,
        default_schedule_delay: Optional[timedelta] = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.quiet_hours_gate = quiet_hours_gate or UserQuietHoursGate(session_factory)
        self.dedup_gate = dedup_gate or DeduplicationGate()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.validator = AlertValidator(session_factory)
        self.max_retry_attempts = max_retry_attempts or settings.max_retry_attempts
        self.default_schedule_delay = default_schedule_delay or timedelta(
            hours=settings.default_schedule_delay_hours
        )

        self._user_locks = KeyedLock()
        self._alert_locks = KeyedLock()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_alert(self, alert_data: AlertGenerationData) -> AlertProcessingResult:
        """
        Generate an alert from a monitoring signal.

        Args:
            alert_data: Signal addressed to one user

        Returns:
            AlertProcessingResult with status processed, scheduled, failed
            or deduplicated

        Raises:
            AlertValidationError: The signal broke one or more rules
            AlertRateLimitError: The user is at the hourly cap
        """
        try:
            _, product = await self.validator.validate(alert_data)
        except AlertValidationError as e:
            metrics.record_alert_rejected("validation")
            logger.warning(f"Alert validation failed for user {alert_data.user_id}: {e.errors}")
            raise

        async with self._user_locks.hold(alert_data.user_id):
            async with self.session_factory() as db:
                dedup = await self.dedup_gate.check(db, alert_data)
                if dedup.is_duplicate:
                    metrics.record_alert_outcome(alert_data.type, "deduplicated")
                    logger.info(
                        "Alert deduplicated for user %s product %s (existing %s)",
                        alert_data.user_id,
                        alert_data.product_id,
                        dedup.existing_alert_id,
                    )
                    return AlertProcessingResult(
                        alert_id=dedup.existing_alert_id,
                        status="deduplicated",
                        reason=dedup.reason,
                    )

                rate = await self.rate_limiter.check(db, alert_data.user_id)
                if not rate.allowed:
                    metrics.record_alert_rejected("rate_limit")
                    logger.warning(
                        f"Rate limit exceeded for user {alert_data.user_id}: "
                        f"{rate.count}/{rate.limit}"
                    )
                    raise AlertRateLimitError(alert_data.user_id, rate.count, rate.limit)

                priority = alert_data.priority or get_strategy_for_type(
                    alert_data.type
                ).calculate_priority(alert_data.data, product.popularity_score)

                alert = Alert(
                    user_id=alert_data.user_id,
                    product_id=alert_data.product_id,
                    retailer_id=alert_data.retailer_id,
                    watch_id=alert_data.watch_id,
                    type=alert_data.type,
                    priority=priority,
                    status="pending",
                    data=dict(alert_data.data),
                    delivery_channels=[],
                    retry_count=0,
                )
                db.add(alert)
                await db.commit()
                alert_id = alert.id

        logger.info(f"Created {alert_data.type} alert {alert_id} ({priority}) for user {alert_data.user_id}")

        quiet = await self._check_quiet_hours(alert_data.user_id)
        if quiet.is_quiet_time:
            scheduled_for = await self._schedule(alert_id, quiet)
            metrics.record_alert_outcome(alert_data.type, "scheduled")
            return AlertProcessingResult(
                alert_id=alert_id,
                status="scheduled",
                scheduled_for=scheduled_for,
                reason=quiet.reason,
            )

        result = await self.process_alert(alert_id)
        if result.rescheduled:
            # Quiet hours began between creation and delivery
            async with self.session_factory() as db:
                alert = await db.get(Alert, alert_id)
                scheduled_for = alert.scheduled_for if alert else None
            metrics.record_alert_outcome(alert_data.type, "scheduled")
            return AlertProcessingResult(
                alert_id=alert_id,
                status="scheduled",
                scheduled_for=scheduled_for,
                reason=result.reason,
            )

        status = "processed" if result.success else "failed"
        metrics.record_alert_outcome(alert_data.type, status)
        return AlertProcessingResult(
            alert_id=alert_id,
            status=status,
            reason=result.reason,
            delivery_channels=result.delivery_channels,
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def process_alert(self, alert_id: str) -> AlertProcessResult:
        """
        Deliver one stored alert.

        Never raises: any exception marks the alert failed and is returned
        as a failure result.

        Args:
            alert_id: Alert to deliver

        Returns:
            AlertProcessResult
        """
        async with self._alert_locks.hold(alert_id):
            try:
                return await self._process_alert(alert_id)
            except Exception as e:
                get_logger(__name__, alert_id=alert_id).exception(
                    f"Error processing alert {alert_id}"
                )
                await self._mark_failed(alert_id, str(e) or e.__class__.__name__)
                return AlertProcessResult(success=False, reason=str(e))

    async def _process_alert(self, alert_id: str) -> AlertProcessResult:
        async with self.session_factory() as db:
            alert = await db.get(Alert, alert_id)
            if alert is None:
                logger.warning(f"Alert not found: {alert_id}")
                return AlertProcessResult(success=False, reason="Alert not found", not_found=True)

            if alert.status == "sent":
                return AlertProcessResult(
                    success=True,
                    delivery_channels=list(alert.delivery_channels or []),
                    reason="Alert already sent",
                )

            quiet = await self._check_quiet_hours(alert.user_id)
            if quiet.is_quiet_time:
                alert.scheduled_for = quiet.next_active_time or (
                    datetime.utcnow() + self.default_schedule_delay
                )
                # A retried alert goes back to the pending queue
                alert.status = "pending"
                await db.commit()
                logger.info(f"Alert {alert_id} rescheduled for {alert.scheduled_for}")
                return AlertProcessResult(success=False, rescheduled=True, reason=quiet.reason)

            user = await db.get(User, alert.user_id)
            if user is None:
                return await self._fail(db, alert, "User not found")

            channels = get_strategy_for_type(alert.type).determine_delivery_channels(user, alert)
            if not channels:
                return await self._fail(db, alert, "No delivery channels available")

            delivery = await self.dispatcher.deliver_alert(alert, user, channels)
            if not delivery.success:
                return await self._fail(db, alert, delivery.error or "Delivery failed")

            now = datetime.utcnow()
            alert.status = "sent"
            alert.delivery_channels = list(delivery.successful_channels)
            alert.sent_at = now
            alert.failure_reason = None

            if alert.watch_id:
                await db.execute(
                    update(Watch)
                    .where(Watch.id == alert.watch_id)
                    .values(alert_count=Watch.alert_count + 1, last_alerted=now)
                )

            await db.commit()
            logger.info(f"Alert {alert_id} sent via {delivery.successful_channels}")
            return AlertProcessResult(
                success=True, delivery_channels=list(delivery.successful_channels)
            )

    async def process_pending_alerts(self, limit: Optional[int] = None) -> dict[str, int]:
        """
        Deliver due pending alerts, most urgent first.

        Args:
            limit: Maximum alerts to process in this pass

        Returns:
            Counts of processed, failed and rescheduled alerts
        """
        limit = limit or settings.pending_alert_batch_size
        now = datetime.utcnow()
        priority_rank = case(PRIORITY_RANK, value=Alert.priority, else_=0)

        async with self.session_factory() as db:
            result = await db.execute(
                select(Alert.id)
                .where(
                    Alert.status == "pending",
                    or_(Alert.scheduled_for.is_(None), Alert.scheduled_for <= now),
                )
                .order_by(priority_rank.desc(), Alert.created_at.asc())
                .limit(limit)
            )
            alert_ids = list(result.scalars().all())

        stats = {"processed": 0, "failed": 0, "rescheduled": 0}
        if not alert_ids:
            return stats

        for alert_id in alert_ids:
            outcome = await self.process_alert(alert_id)
            if outcome.success:
                stats["processed"] += 1
            elif outcome.rescheduled:
                stats["rescheduled"] += 1
            else:
                stats["failed"] += 1

        logger.info(
            "Processed pending alerts: processed=%d failed=%d rescheduled=%d",
            stats["processed"],
            stats["failed"],
            stats["rescheduled"],
        )
        return stats

    async def retry_failed_alerts(self) -> dict[str, int]:
        """
        Retry failed alerts that still have attempts left, oldest first.

        Every attempt increments ``retry_count`` before delivery. An alert
        that fails its final attempt is marked permanently failed.

        Returns:
            Counts of retried, succeeded and permanently_failed alerts
        """
        async with self.session_factory() as db:
            result = await db.execute(
                select(Alert.id)
                .where(
                    Alert.status == "failed",
                    Alert.retry_count < self.max_retry_attempts,
                )
                .order_by(Alert.created_at.asc())
                .limit(settings.failed_alert_batch_size)
            )
            alert_ids = list(result.scalars().all())

        stats = {"retried": 0, "succeeded": 0, "permanently_failed": 0}

        for alert_id in alert_ids:
            attempt = await self._increment_retry_count(alert_id)
            if attempt is None:
                continue
            stats["retried"] += 1

            outcome = await self.process_alert(alert_id)
            if outcome.success:
                stats["succeeded"] += 1
                metrics.record_retry("succeeded")
            elif outcome.rescheduled:
                metrics.record_retry("rescheduled")
            elif outcome.exhausted or attempt >= self.max_retry_attempts:
                if not outcome.exhausted:
                    await self._mark_failed(alert_id, MAX_RETRY_REASON)
                    metrics.record_retry("exhausted")
                    logger.warning(f"Alert {alert_id} failed permanently after {attempt} retries")
                stats["permanently_failed"] += 1
            else:
                metrics.record_retry("failed")

        if alert_ids:
            logger.info(
                "Retried failed alerts: retried=%d succeeded=%d permanently_failed=%d",
                stats["retried"],
                stats["succeeded"],
                stats["permanently_failed"],
            )
        return stats

    # ------------------------------------------------------------------
    # Stats / maintenance
    # ------------------------------------------------------------------

    async def get_processing_stats(self) -> dict[str, Any]:
        """
        Snapshot of queue depth and today's delivery rate.

        Returns:
            pending_count, failed_count (still retryable), processed_today
            and success_rate (percent of today's alerts already sent);
            zeros if the queries fail
        """
        today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        try:
            async with self.session_factory() as db:
                pending = await db.scalar(
                    select(func.count(Alert.id)).where(Alert.status == "pending")
                )
                failed = await db.scalar(
                    select(func.count(Alert.id)).where(
                        Alert.status == "failed",
                        Alert.retry_count < self.max_retry_attempts,
                    )
                )
                created_today = await db.scalar(
                    select(func.count(Alert.id)).where(Alert.created_at >= today)
                )
                sent_today = await db.scalar(
                    select(func.count(Alert.id)).where(
                        Alert.created_at >= today, Alert.status == "sent"
                    )
                )
        except Exception as e:
            logger.error(f"Failed to load alert processing stats: {e}")
            return {"pending_count": 0, "failed_count": 0, "processed_today": 0, "success_rate": 0.0}

        success_rate = round(sent_today / created_today * 100, 2) if created_today else 0.0
        return {
            "pending_count": pending or 0,
            "failed_count": failed or 0,
            "processed_today": created_today or 0,
            "success_rate": success_rate,
        }

    async def cleanup_old_alerts(self, days: Optional[int] = None) -> int:
        """Delete sent alerts older than ``days``; returns the number removed."""
        days = days or settings.alert_retention_days
        cutoff = datetime.utcnow() - timedelta(days=days)
        async with self.session_factory() as db:
            result = await db.execute(
                delete(Alert).where(Alert.status == "sent", Alert.created_at < cutoff)
            )
            await db.commit()
        deleted = result.rowcount or 0
        logger.info(f"Deleted {deleted} sent alerts older than {days} days")
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _check_quiet_hours(self, user_id: str) -> QuietHoursCheck:
        try:
            return await self.quiet_hours_gate.is_quiet_time(user_id)
        except Exception as e:
            logger.warning(f"Quiet hours check failed for user {user_id}, delivering now: {e}")
            return QuietHoursCheck(is_quiet_time=False, reason="Error checking quiet hours")

    async def _schedule(self, alert_id: str, quiet: QuietHoursCheck) -> datetime:
        scheduled_for = quiet.next_active_time or (datetime.utcnow() + self.default_schedule_delay)
        async with self.session_factory() as db:
            await db.execute(
                update(Alert).where(Alert.id == alert_id).values(scheduled_for=scheduled_for)
            )
            await db.commit()
        logger.info(f"Alert {alert_id} scheduled for {scheduled_for} ({quiet.reason})")
        return scheduled_for

    async def _fail(self, db: AsyncSession, alert: Alert, reason: str) -> AlertProcessResult:
        # Also reached from the pending drain when a retried alert was rescheduled
        exhausted = (alert.retry_count or 0) >= self.max_retry_attempts
        alert.status = "failed"
        alert.failure_reason = MAX_RETRY_REASON if exhausted else reason
        await db.commit()

        if exhausted:
            metrics.record_retry("exhausted")
            logger.warning(
                f"Alert {alert.id} failed permanently after {alert.retry_count} retries: {reason}"
            )
        else:
            logger.warning(f"Alert {alert.id} failed: {reason}")
        return AlertProcessResult(success=False, reason=alert.failure_reason, exhausted=exhausted)

    async def _mark_failed(self, alert_id: str, reason: str):
        try:
            async with self.session_factory() as db:
                await db.execute(
                    update(Alert)
                    .where(Alert.id == alert_id, Alert.status != "sent")
                    .values(status="failed", failure_reason=reason)
                )
                await db.commit()
        except Exception as e:
            logger.error(f"Could not mark alert {alert_id} as failed: {e}")

    async def _increment_retry_count(self, alert_id: str) -> Optional[int]:
        async with self.session_factory() as db:
            await db.execute(
                update(Alert)
                .where(Alert.id == alert_id)
                .values(retry_count=Alert.retry_count + 1)
            )
            await db.commit()
            return await db.scalar(select(Alert.retry_count).where(Alert.id == alert_id))
