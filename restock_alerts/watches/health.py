"""Watch and watch pack health diagnostics."""

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from restock_alerts import metrics
from restock_alerts.config import settings
from restock_alerts.db.models import Product, User, UserWatchPack, Watch, WatchPack

logger = logging.getLogger(__name__)


@dataclass
class WatchHealthStatus:
    watch_id: str
    product_id: str
    user_id: Optional[str]
    is_healthy: bool
    alert_count: int
    last_alerted: Optional[datetime] = None
    last_checked: datetime = field(default_factory=datetime.utcnow)
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class WatchPackHealthStatus:
    pack_id: str
    name: str
    is_healthy: bool
    product_count: int
    active_product_count: int
    subscriber_count: int
    actual_subscriber_count: int
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SystemWatchHealth:
    """
    System-wide watch health.

    ``healthy_watches`` and ``healthy_watch_packs`` are extrapolated from a
    random sample of ``sample_size`` active records; ``is_estimate`` is False
    only when the sample covered every active record.
    """

    total_watches: int = 0
    active_watches: int = 0
    healthy_watches: int = 0
    watches_with_issues: int = 0
    total_watch_packs: int = 0
    active_watch_packs: int = 0
    healthy_watch_packs: int = 0
    sample_size: int = 0
    is_estimate: bool = False
    last_health_check: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _extrapolate(healthy_in_sample: int, sampled: int, population: int) -> int:
    if sampled == 0:
        return 0
    # Half-up rounding
    return int(math.floor(healthy_in_sample / sampled * population + 0.5))


def evaluate_watch(
    watch: Watch,
    product: Optional[Product],
    now: Optional[datetime] = None,
    inactivity_days: Optional[int] = None,
) -> WatchHealthStatus:
    """
    Evaluate one watch against its product.

    Unhealthy: product missing or inactive, no retailers, in-store watch
    without a zip code. Informational only: zip code without a radius, and
    a last alert older than the inactivity window.
    """
    now = now or datetime.utcnow()
    inactivity_days = inactivity_days or settings.watch_inactivity_days
    issues: list[str] = []
    is_healthy = True

    if product is None:
        issues.append("Associated product no longer exists")
        is_healthy = False
    elif not product.is_active:
        issues.append("Associated product is inactive")
        is_healthy = False

    if not watch.retailer_ids:
        issues.append("No retailers configured for monitoring")
        is_healthy = False

    if watch.last_alerted and watch.last_alerted < now - timedelta(days=inactivity_days):
        issues.append(f"No alerts generated in the last {inactivity_days} days")

    if watch.availability_type == "in_store" and not watch.zip_code:
        issues.append("In-store monitoring requires ZIP code")
        is_healthy = False

    if watch.zip_code and not watch.radius_miles:
        issues.append("Location-based monitoring requires radius setting")

    return WatchHealthStatus(
        watch_id=watch.id,
        product_id=watch.product_id,
        user_id=watch.user_id,
        is_healthy=is_healthy,
        alert_count=watch.alert_count,
        last_alerted=watch.last_alerted,
        last_checked=now,
        issues=issues,
    )


class WatchHealthMonitor:
    """Diagnostics and cleanup over watches and watch packs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sample_size: Optional[int] = None,
        page_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.sample_size = sample_size or settings.health_sample_size
        self.page_size = page_size or settings.user_watch_page_size

    async def _load_products(self, db: AsyncSession, product_ids) -> dict[str, Product]:
        ids = {pid for pid in product_ids if pid}
        if not ids:
            return {}
        result = await db.execute(select(Product).where(Product.id.in_(ids)))
        return {p.id: p for p in result.scalars().all()}

    async def check_watch_health(self, watch_id: str) -> Optional[WatchHealthStatus]:
        """
        Check a single watch.

        Args:
            watch_id: Watch to check

        Returns:
            WatchHealthStatus, or None if the watch does not exist
        """
        async with self.session_factory() as db:
            watch = await db.get(Watch, watch_id)
            if watch is None:
                return None
            product = await db.get(Product, watch.product_id)
            return evaluate_watch(watch, product)

    async def check_user_watches_health(self, user_id: str) -> list[WatchHealthStatus]:
        """
        Check every watch owned by a user, up to the page size.

        Watches that cannot be evaluated are logged and left out.
        """
        async with self.session_factory() as db:
            result = await db.execute(
                select(Watch)
                .where(Watch.user_id == user_id)
                .order_by(Watch.created_at.desc())
                .limit(self.page_size)
            )
            watches = list(result.scalars().all())
            products = await self._load_products(db, (w.product_id for w in watches))

        statuses = []
        now = datetime.utcnow()
        for watch in watches:
            try:
                statuses.append(evaluate_watch(watch, products.get(watch.product_id), now))
            except Exception as e:
                logger.warning(f"Health check failed for watch {watch.id}: {e}")
        return statuses

    async def check_watch_pack_health(self, pack_id: str) -> Optional[WatchPackHealthStatus]:
        """
        Check a watch pack's products and subscriber bookkeeping.

        A pack is unhealthy when it has no products, references a product
        that no longer exists, or has fewer than half of its products
        active. A stored subscriber count that disagrees with the active
        subscriptions is reported but not corrected here.

        Args:
            pack_id: Pack to check

        Returns:
            WatchPackHealthStatus, or None if the pack does not exist
        """
        async with self.session_factory() as db:
            pack = await db.get(WatchPack, pack_id)
            if pack is None:
                return None
            product_ids = list(pack.product_ids or [])
            products = await self._load_products(db, product_ids)
            actual_subscribers = await db.scalar(
                select(func.count(UserWatchPack.id)).where(
                    UserWatchPack.watch_pack_id == pack_id,
                    UserWatchPack.is_active.is_(True),
                )
            ) or 0

        issues: list[str] = []
        is_healthy = True
        active_count = 0

        for product_id in product_ids:
            product = products.get(product_id)
            if product is None:
                issues.append(f"Product {product_id} no longer exists")
                is_healthy = False
            elif not product.is_active:
                issues.append(f"Product {product_id} is inactive")
            else:
                active_count += 1

        if not product_ids:
            issues.append("Watch pack contains no products")
            is_healthy = False
        elif active_count / len(product_ids) < settings.pack_min_active_ratio:
            issues.append("More than 50% of products are inactive")
            is_healthy = False

        if actual_subscribers != pack.subscriber_count:
            issues.append("Subscriber count mismatch detected")

        return WatchPackHealthStatus(
            pack_id=pack.id,
            name=pack.name,
            is_healthy=is_healthy,
            product_count=len(product_ids),
            active_product_count=active_count,
            subscriber_count=pack.subscriber_count,
            actual_subscriber_count=actual_subscribers,
            issues=issues,
        )

    async def get_system_watch_health(self, sample_size: Optional[int] = None) -> SystemWatchHealth:
        """
        Aggregate counts plus a sampled health estimate.

        Checking every active watch is too costly, so a random sample is
        evaluated and the healthy ratio is scaled to the active population.

        Args:
            sample_size: Override for the configured sample size

        Returns:
            SystemWatchHealth; all zeros when there is no data or on error
        """
        sample_size = sample_size or self.sample_size
        try:
            async with self.session_factory() as db:
                total_watches = await db.scalar(select(func.count(Watch.id))) or 0
                active_watches = await db.scalar(
                    select(func.count(Watch.id)).where(Watch.is_active.is_(True))
                ) or 0
                total_packs = await db.scalar(select(func.count(WatchPack.id))) or 0
                active_packs = await db.scalar(
                    select(func.count(WatchPack.id)).where(WatchPack.is_active.is_(True))
                ) or 0

                result = await db.execute(
                    select(Watch)
                    .where(Watch.is_active.is_(True))
                    .order_by(func.random())
                    .limit(sample_size)
                )
                sample = list(result.scalars().all())
                products = await self._load_products(db, (w.product_id for w in sample))

                pack_result = await db.execute(
                    select(WatchPack.id)
                    .where(WatchPack.is_active.is_(True))
                    .order_by(func.random())
                    .limit(sample_size)
                )
                pack_sample = list(pack_result.scalars().all())
        except Exception as e:
            logger.error(f"Error getting system watch health: {e}")
            return SystemWatchHealth()

        now = datetime.utcnow()
        healthy_in_sample = sum(
            1 for w in sample if evaluate_watch(w, products.get(w.product_id), now).is_healthy
        )
        healthy_watches = _extrapolate(healthy_in_sample, len(sample), active_watches)

        healthy_packs_in_sample = 0
        for pack_id in pack_sample:
            status = await self.check_watch_pack_health(pack_id)
            if status is not None and status.is_healthy:
                healthy_packs_in_sample += 1
        healthy_packs = _extrapolate(healthy_packs_in_sample, len(pack_sample), active_packs)

        return SystemWatchHealth(
            total_watches=total_watches,
            active_watches=active_watches,
            healthy_watches=healthy_watches,
            watches_with_issues=active_watches - healthy_watches,
            total_watch_packs=total_packs,
            active_watch_packs=active_packs,
            healthy_watch_packs=healthy_packs,
            sample_size=len(sample),
            is_estimate=len(sample) < active_watches or len(pack_sample) < active_packs,
            last_health_check=now,
        )

    async def cleanup_watches(self) -> dict[str, int]:
        """
        Deactivate or remove records that can no longer produce alerts.

        - active watches of inactive products are deactivated
        - subscriptions to inactive packs are deleted
        - active watches whose user no longer exists are deactivated

        Running it twice in a row changes nothing the second time.

        Returns:
            Count per cleanup action
        """
        logger.info("Starting watch cleanup")
        now = datetime.utcnow()

        async with self.session_factory() as db:
            inactive_products = select(Product.id).where(Product.is_active.is_(False))
            result = await db.execute(
                update(Watch)
                .where(Watch.is_active.is_(True), Watch.product_id.in_(inactive_products))
                .values(is_active=False, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            inactive_product_watches = result.rowcount or 0

            inactive_packs = select(WatchPack.id).where(WatchPack.is_active.is_(False))
            result = await db.execute(
                delete(UserWatchPack)
                .where(UserWatchPack.watch_pack_id.in_(inactive_packs))
                .execution_options(synchronize_session=False)
            )
            inactive_subscriptions = result.rowcount or 0

            user_exists = exists(select(User.id).where(User.id == Watch.user_id))
            result = await db.execute(
                update(Watch)
                .where(Watch.is_active.is_(True), or_(Watch.user_id.is_(None), ~user_exists))
                .values(is_active=False, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            orphaned_watches = result.rowcount or 0

            await db.commit()

        counts = {
            "inactive_product_watches": inactive_product_watches,
            "inactive_subscriptions": inactive_subscriptions,
            "orphaned_watches": orphaned_watches,
        }
        metrics.record_cleanup(counts)
        logger.info(
            "Watch cleanup complete: %d inactive product watches, "
            "%d inactive subscriptions, %d orphaned watches",
            inactive_product_watches,
            inactive_subscriptions,
            orphaned_watches,
        )
        return counts

    async def update_watch_pack_subscriber_counts(self) -> int:
        """Reset each active pack's subscriber_count to its active subscriptions.

        Returns:
            Number of packs whose count changed
        """
        async with self.session_factory() as db:
            counts_query = (
                select(UserWatchPack.watch_pack_id, func.count(UserWatchPack.id))
                .where(UserWatchPack.is_active.is_(True))
                .group_by(UserWatchPack.watch_pack_id)
            )
            actual = {pack_id: count for pack_id, count in (await db.execute(counts_query)).all()}

            result = await db.execute(select(WatchPack).where(WatchPack.is_active.is_(True)))
            updated = 0
            for pack in result.scalars().all():
                count = actual.get(pack.id, 0)
                if pack.subscriber_count != count:
                    pack.subscriber_count = count
                    updated += 1

            await db.commit()

        logger.info(f"Updated subscriber counts for {updated} watch packs")
        return updated

    async def get_watches_for_monitoring(
        self, retailer_id: Optional[str] = None, limit: int = 100
    ) -> list[tuple[Watch, Product]]:
        """
        Active watches on active products, least recently alerted first.

        Args:
            retailer_id: Only watches that include this retailer
            limit: Maximum watches to return

        Returns:
            List of (watch, product) pairs
        """
        selected: list[tuple[Watch, Product]] = []
        offset = 0
        chunk = max(limit, 100)

        async with self.session_factory() as db:
            while len(selected) < limit:
                result = await db.execute(
                    select(Watch, Product)
                    .join(Product, Watch.product_id == Product.id)
                    .where(Watch.is_active.is_(True), Product.is_active.is_(True))
                    .order_by(Watch.last_alerted.asc().nulls_first(), Watch.id)
                    .offset(offset)
                    .limit(chunk)
                )
                rows = result.all()
                if not rows:
                    break
                offset += len(rows)

                for watch, product in rows:
                    # retailer_ids is a JSON list, filtered here to stay portable
                    if retailer_id and retailer_id not in (watch.retailer_ids or []):
                        continue
                    selected.append((watch, product))
                    if len(selected) >= limit:
                        break

        return selected

    async def get_watch_performance_metrics(self, user_id: Optional[str] = None) -> dict[str, Any]:
        """Alert activity summary over active watches, optionally for one user."""
        query = select(Watch).where(Watch.is_active.is_(True))
        if user_id:
            query = query.where(Watch.user_id == user_id)

        async with self.session_factory() as db:
            watches = list((await db.execute(query)).scalars().all())

        if not watches:
            return {
                "avg_alerts_per_watch": 0,
                "avg_hours_between_alerts": 0,
                "most_active_watches": [],
                "least_active_watches": [],
            }

        total_alerts = sum(w.alert_count for w in watches)
        now = datetime.utcnow()

        alerted = [w for w in watches if w.last_alerted and w.alert_count > 0]
        avg_hours = 0
        if alerted:
            total_seconds = sum(
                (now - w.created_at).total_seconds() / w.alert_count for w in alerted
            )
            avg_hours = round(total_seconds / len(alerted) / 3600)

        ranked = sorted(watches, key=lambda w: w.alert_count, reverse=True)

        def _summary(w: Watch) -> dict[str, Any]:
            return {"watch_id": w.id, "product_id": w.product_id, "alert_count": w.alert_count}

        return {
            "avg_alerts_per_watch": round(total_alerts / len(watches), 2),
            "avg_hours_between_alerts": avg_hours,
            "most_active_watches": [_summary(w) for w in ranked[:5]],
            "least_active_watches": [_summary(w) for w in reversed(ranked[-5:])],
        }
