"""Deduplication and rate limiting gates for alert generation."""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from restock_alerts.alerts.schemas import AlertGenerationData, AlertStatus, DedupResult, RateLimitResult
from restock_alerts.config import settings
from restock_alerts.db.models import Alert

logger = logging.getLogger(__name__)

# Statuses that count as a live alert for deduplication
LIVE_STATUSES: tuple[AlertStatus, ...] = ("pending", "sent")


class KeyedLock:
    """
    Per-key asyncio locks.

    Locks are held in a WeakValueDictionary so idle keys do not accumulate.
    Only serializes callers inside one process.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._get(key)
        async with lock:
            yield


class DeduplicationGate:
    """Detects an equivalent live alert inside the dedup window."""

    def __init__(self, window_minutes: Optional[int] = None):
        self.window_minutes = window_minutes or settings.dedup_window_minutes

    async def check(
        self,
        db: AsyncSession,
        alert_data: AlertGenerationData,
        now: Optional[datetime] = None,
    ) -> DedupResult:
        """
        Look for a pending or sent alert with the same
        (user, product, retailer, type) created inside the window.

        Args:
            db: Database session
            alert_data: Candidate signal
            now: Reference instant (naive UTC)

        Returns:
            DedupResult pointing at the most recent matching alert
        """
        cutoff = (now or datetime.utcnow()) - timedelta(minutes=self.window_minutes)

        query = (
            select(Alert.id)
            .where(
                Alert.user_id == alert_data.user_id,
                Alert.product_id == alert_data.product_id,
                Alert.retailer_id == alert_data.retailer_id,
                Alert.type == alert_data.type,
                Alert.created_at > cutoff,
                Alert.status.in_(LIVE_STATUSES),
            )
            .order_by(Alert.created_at.desc())
            .limit(1)
        )
        result = await db.execute(query)
        existing_id = result.scalar_one_or_none()

        if existing_id is None:
            return DedupResult(is_duplicate=False)

        return DedupResult(
            is_duplicate=True,
            existing_alert_id=existing_id,
            reason=f"Similar alert exists within {self.window_minutes} minutes",
        )


class RateLimiter:
    """Caps the number of alerts created per user in a trailing window."""

    def __init__(
        self,
        max_alerts: Optional[int] = None,
        window_minutes: Optional[int] = None,
    ):
        self.max_alerts = max_alerts or settings.max_alerts_per_user_per_hour
        self.window_minutes = window_minutes or settings.rate_limit_window_minutes

    async def check(
        self,
        db: AsyncSession,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> RateLimitResult:
        """
        Count alerts created for the user inside the window.

        Args:
            db: Database session
            user_id: User to check
            now: Reference instant (naive UTC)

        Returns:
            RateLimitResult; ``allowed`` is False once count reaches the cap
        """
        cutoff = (now or datetime.utcnow()) - timedelta(minutes=self.window_minutes)

        query = select(func.count(Alert.id)).where(
            Alert.user_id == user_id,
            Alert.created_at > cutoff,
        )
        count = (await db.execute(query)).scalar_one()

        return RateLimitResult(
            allowed=count < self.max_alerts,
            count=count,
            limit=self.max_alerts,
        )
