"""Background job bodies driven by the scheduler."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from restock_alerts import metrics
from restock_alerts.alerts.errors import AlertRateLimitError, AlertValidationError
from restock_alerts.alerts.orchestrator import AlertOrchestrator
from restock_alerts.alerts.schemas import AlertGenerationData
from restock_alerts.config import settings
from restock_alerts.db.models import Product, Watch
from restock_alerts.watches.health import WatchHealthMonitor
from restock_alerts.worker.hot_window import HotWindowFlags, WindowPredictor

logger = logging.getLogger(__name__)


@dataclass
class AvailabilitySignal:
    """A state change observed for a product at a retailer."""

    product_id: str
    retailer_id: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)


class AvailabilityScanner(Protocol):
    """Checks retailers for product state changes."""

    async def scan(self, retailer_ids: Optional[list[str]]) -> list[AvailabilitySignal]:
        ...


class CatalogIngestor(Protocol):
    async def ingest(self) -> int:
        ...


class ModelTrainer(Protocol):
    async def retrain(self) -> None:
        ...


def _price_within_limit(watch: Watch, price: Any) -> bool:
    if watch.max_price is None or price is None:
        return True
    try:
        return Decimal(str(price)) <= watch.max_price
    except InvalidOperation:
        return True


class TaskRunner:
    """
    Runner for background tasks.

    Every method here is a scheduled job body and delegates to the
    orchestrator, the health monitor or an external collaborator.
    Collaborators that are not configured turn their jobs into no-ops.
    """

    def __init__(
        self,
        orchestrator: AlertOrchestrator,
        health_monitor: WatchHealthMonitor,
        session_factory: async_sessionmaker[AsyncSession],
        scanner: Optional[AvailabilityScanner] = None,
        hot_windows: Optional[HotWindowFlags] = None,
        predictor: Optional[WindowPredictor] = None,
        catalog: Optional[CatalogIngestor] = None,
        trainer: Optional[ModelTrainer] = None,
    ):
        self.orchestrator = orchestrator
        self.health_monitor = health_monitor
        self.session_factory = session_factory
        self.scanner = scanner
        self.hot_windows = hot_windows
        self.predictor = predictor
        self.catalog = catalog
        self.trainer = trainer

    async def close(self):
        """Clean up resources."""
        if self.hot_windows:
            await self.hot_windows.close()

    async def run_availability_scan(self, retailer_ids: Optional[list[str]] = None) -> dict[str, int]:
        """
        Scan retailers and fan signals out to matching watches.

        A signal matches an active watch on the same product that monitors
        the signal's retailer; price drops above the watch's max price are
        ignored. Rejected signals are logged and dropped.

        Args:
            retailer_ids: Limit the scan to these retailers

        Returns:
            Counts per generation outcome
        """
        counts: dict[str, int] = defaultdict(int)
        if self.scanner is None:
            logger.debug("Availability scan skipped (no scanner configured)")
            return dict(counts)

        watches = await self.health_monitor.get_watches_for_monitoring(
            limit=settings.monitoring_watch_limit
        )
        if not watches:
            logger.info("Availability scan skipped (no active watches)")
            return dict(counts)

        by_product: dict[str, list[Watch]] = defaultdict(list)
        monitored_retailers: set[str] = set()
        for watch, _ in watches:
            by_product[watch.product_id].append(watch)
            monitored_retailers.update(watch.retailer_ids or [])

        targets = sorted(retailer_ids) if retailer_ids else sorted(monitored_retailers)
        signals = await self.scanner.scan(targets)
        counts["signals"] = len(signals)

        for signal in signals:
            for watch in by_product.get(signal.product_id, []):
                if not watch.user_id or signal.retailer_id not in (watch.retailer_ids or []):
                    continue
                if signal.type == "price_drop" and not _price_within_limit(
                    watch, signal.data.get("price")
                ):
                    continue

                try:
                    result = await self.orchestrator.generate_alert(
                        AlertGenerationData(
                            user_id=watch.user_id,
                            product_id=signal.product_id,
                            retailer_id=signal.retailer_id,
                            type=signal.type,
                            data=signal.data,
                            watch_id=watch.id,
                        )
                    )
                    counts[result.status] += 1
                except (AlertValidationError, AlertRateLimitError) as e:
                    counts["rejected"] += 1
                    logger.info(f"Dropped signal for watch {watch.id}: {e}")

        logger.info(f"Availability scan complete: {dict(counts)}")
        return dict(counts)

    async def check_hot_windows(self) -> bool:
        """Run an extra scan of hot retailers while any hot window is active."""
        if self.hot_windows is None:
            return False

        active = await self.hot_windows.has_active_window()
        metrics.update_hot_window_active(active)
        if not active:
            return False

        retailers = await self.hot_windows.active_retailers()
        logger.info(f"Hot window active, scanning retailers: {retailers or 'all'}")
        await self.run_availability_scan(retailers or None)
        return True

    async def refresh_hot_windows(self) -> int:
        """
        Refresh hot window flags for the most popular products.

        Returns:
            Number of windows flagged
        """
        if self.predictor is None or self.hot_windows is None:
            logger.debug("Hot window refresh skipped (no predictor configured)")
            return 0

        async with self.session_factory() as db:
            result = await db.execute(
                select(Product.id)
                .where(Product.is_active.is_(True))
                .order_by(Product.popularity_score.desc())
                .limit(settings.hot_window_top_products)
            )
            product_ids = list(result.scalars().all())

            retailers_by_product: dict[str, set[str]] = defaultdict(set)
            if product_ids:
                watch_rows = await db.execute(
                    select(Watch.product_id, Watch.retailer_ids).where(
                        Watch.is_active.is_(True), Watch.product_id.in_(product_ids)
                    )
                )
                for product_id, retailer_ids in watch_rows.all():
                    retailers_by_product[product_id].update(retailer_ids or [])

        flagged = 0
        for product_id in product_ids:
            for retailer_id in sorted(retailers_by_product.get(product_id, ())):
                try:
                    windows = await self.predictor.predict_windows(
                        product_id, retailer_id, settings.hot_window_horizon_minutes
                    )
                    for window in windows:
                        if await self.hot_windows.set_window(window):
                            flagged += 1
                except Exception as e:
                    logger.warning(
                        f"Hot window prediction failed for {product_id} at {retailer_id}: {e}"
                    )

        logger.info(f"Flagged {flagged} hot windows across {len(product_ids)} products")
        return flagged

    async def process_pending_alerts(self) -> dict[str, int]:
        return await self.orchestrator.process_pending_alerts()

    async def retry_failed_alerts(self) -> dict[str, int]:
        return await self.orchestrator.retry_failed_alerts()

    async def cleanup_watches(self) -> dict[str, int]:
        return await self.health_monitor.cleanup_watches()

    async def reconcile_watch_packs(self) -> int:
        return await self.health_monitor.update_watch_pack_subscriber_counts()

    async def cleanup_alerts(self) -> int:
        return await self.orchestrator.cleanup_old_alerts()

    async def ingest_catalog(self) -> int:
        if self.catalog is None:
            logger.debug("Catalog ingestion skipped (no ingestor configured)")
            return 0
        count = await self.catalog.ingest()
        logger.info(f"Catalog ingestion processed {count} products")
        return count

    async def retrain_models(self):
        if self.trainer is None:
            logger.debug("Model retraining skipped (no trainer configured)")
            return
        await self.trainer.retrain()
        logger.info("Model retraining complete")
