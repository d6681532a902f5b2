"""Redis flags marking predicted restock hot windows."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

import redis.asyncio as redis

from restock_alerts.config import settings

logger = logging.getLogger(__name__)

MIN_FLAG_TTL_SECONDS = 30


@dataclass
class PredictedWindow:
    """A predicted time range of elevated restock likelihood."""

    product_id: str
    retailer_id: str
    start: datetime
    end: datetime
    confidence: float = 0.0


class WindowPredictor(Protocol):
    """Produces hot-window predictions for a product at a retailer."""

    async def predict_windows(
        self, product_id: str, retailer_id: str, horizon_minutes: int
    ) -> list[PredictedWindow]:
        ...


class HotWindowFlags:
    """
    Hot window flags in Redis.

    Two keys are set per predicted window, both expiring when the window
    ends: ``{prefix}:{retailer}`` and ``{prefix}:product:{product}:{retailer}``.
    """

    def __init__(self, redis_url: Optional[str] = None, key_prefix: Optional[str] = None):
        self.redis_url = redis_url or settings.redis_url
        self.key_prefix = key_prefix or settings.hot_window_key_prefix
        self._redis: redis.Redis | None = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def retailer_key(self, retailer_id: str) -> str:
        return f"{self.key_prefix}:{retailer_id}"

    def product_key(self, product_id: str, retailer_id: str) -> str:
        return f"{self.key_prefix}:product:{product_id}:{retailer_id}"

    async def set_window(self, window: PredictedWindow, now: Optional[datetime] = None) -> bool:
        """
        Flag a predicted window until it ends.

        Args:
            window: Prediction with naive UTC start/end
            now: Reference instant (naive UTC)

        Returns:
            True if flags were written, False for a window already over
        """
        now = now or datetime.utcnow()
        remaining = int((window.end - now).total_seconds())
        if remaining <= 0:
            return False
        ttl = max(MIN_FLAG_TTL_SECONDS, remaining)

        client = await self._get_redis()
        payload = json.dumps({
            "start": window.start.isoformat(),
            "end": window.end.isoformat(),
            "conf": window.confidence,
        })
        await client.set(self.retailer_key(window.retailer_id), "1", ex=ttl)
        await client.set(self.product_key(window.product_id, window.retailer_id), payload, ex=ttl)
        return True

    async def has_active_window(self) -> bool:
        """True if any hot window flag is set. Redis errors read as False."""
        try:
            client = await self._get_redis()
            async for _ in client.scan_iter(match=f"{self.key_prefix}:*", count=100):
                return True
        except redis.RedisError as e:
            logger.warning(f"Hot window lookup failed: {e}")
        return False

    async def active_retailers(self) -> list[str]:
        """Retailers with a retailer-level hot flag set."""
        client = await self._get_redis()
        product_prefix = f"{self.key_prefix}:product:"
        retailers = set()
        async for key in client.scan_iter(match=f"{self.key_prefix}:*", count=100):
            if key.startswith(product_prefix):
                continue
            retailers.add(key[len(self.key_prefix) + 1:])
        return sorted(retailers)
