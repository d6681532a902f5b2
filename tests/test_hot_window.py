"""Tests for Redis hot window flags."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
import redis.asyncio as redis

from restock_alerts.config import settings
from restock_alerts.worker.hot_window import HotWindowFlags, PredictedWindow


async def _redis_available() -> bool:
    try:
        client = await redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True
    except Exception:
        return False


def _window(product_id="p1", retailer_id="target", minutes=30):
    now = datetime.utcnow()
    return PredictedWindow(
        product_id=product_id,
        retailer_id=retailer_id,
        start=now - timedelta(minutes=5),
        end=now + timedelta(minutes=minutes),
        confidence=0.8,
    )


@pytest.mark.asyncio
async def test_expired_window_is_not_flagged():
    flags = HotWindowFlags(key_prefix="test:hot")

    assert await flags.set_window(_window(minutes=-1)) is False
    assert flags._redis is None


@pytest.mark.asyncio
async def test_unreachable_redis_reads_as_inactive():
    flags = HotWindowFlags(redis_url="redis://127.0.0.1:1/0", key_prefix="test:hot")

    assert await flags.has_active_window() is False
    await flags.close()


@pytest.mark.asyncio
async def test_flags_set_and_listed():
    if not await _redis_available():
        pytest.skip("Redis not available")

    flags = HotWindowFlags(key_prefix=f"test:hot:{uuid4().hex[:8]}")
    assert await flags.has_active_window() is False

    assert await flags.set_window(_window(retailer_id="target")) is True
    assert await flags.set_window(_window(product_id="p2", retailer_id="walmart")) is True

    assert await flags.has_active_window() is True
    assert await flags.active_retailers() == ["target", "walmart"]

    client = await flags._get_redis()
    ttl = await client.ttl(flags.retailer_key("target"))
    assert 0 < ttl <= 30 * 60

    await client.delete(
        flags.retailer_key("target"),
        flags.retailer_key("walmart"),
        flags.product_key("p1", "target"),
        flags.product_key("p2", "walmart"),
    )
    await flags.close()


@pytest.mark.asyncio
async def test_short_window_gets_minimum_ttl():
    if not await _redis_available():
        pytest.skip("Redis not available")

    flags = HotWindowFlags(key_prefix=f"test:hot:{uuid4().hex[:8]}")
    now = datetime.utcnow()
    window = PredictedWindow("p1", "target", start=now, end=now + timedelta(seconds=5))

    assert await flags.set_window(window, now=now) is True

    client = await flags._get_redis()
    assert await client.ttl(flags.retailer_key("target")) > 5

    await client.delete(flags.retailer_key("target"), flags.product_key("p1", "target"))
    await flags.close()
