"""Shared fixtures: a throwaway SQLite store and stub collaborators."""

from datetime import datetime
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from restock_alerts.alerts.orchestrator import AlertOrchestrator
from restock_alerts.alerts.schemas import AlertGenerationData, DeliveryResult, QuietHoursCheck
from restock_alerts.db.models import Base, Product, User, Watch

SIGNAL_DATA = {
    "product_name": "Scarlet & Violet Booster Box",
    "retailer_name": "Target",
    "product_url": "https://www.target.com/p/booster-box/-/A-12345",
}


class StubDispatcher:
    """Records deliveries and answers with a fixed outcome."""

    def __init__(self, success: bool = True, error: str = "web_push: gateway down; email: bounced"):
        self.success = success
        self.error = error
        self.calls: list[tuple[str, list[str]]] = []

    async def deliver_alert(self, alert, user, channels):
        self.calls.append((alert.id, list(channels)))
        if self.success:
            return DeliveryResult(success=True, successful_channels=list(channels))
        return DeliveryResult(success=False, failed_channels=list(channels), error=self.error)


class StubQuietHours:
    def __init__(self, quiet: bool = False, next_active_time: datetime | None = None):
        self.quiet = quiet
        self.next_active_time = next_active_time

    async def is_quiet_time(self, user_id):
        if not self.quiet:
            return QuietHoursCheck(is_quiet_time=False)
        return QuietHoursCheck(
            is_quiet_time=True,
            next_active_time=self.next_active_time,
            reason="Quiet hours: 22:00 - 07:00 (overnight)",
        )


@pytest.fixture
async def session_factory(tmp_path):
    # File-backed so concurrent sessions share one database
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'alerts.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def make_user(session_factory):
    async def _make(**overrides) -> User:
        values = {
            "email": f"user-{uuid4().hex[:12]}@example.com",
            "email_verified": True,
            "subscription_tier": "free",
            "notification_settings": {"web_push": True, "email": True},
            "quiet_hours": {},
            "timezone": "UTC",
        }
        values.update(overrides)
        async with session_factory() as db:
            user = User(**values)
            db.add(user)
            await db.commit()
            return user

    return _make


@pytest.fixture
def make_product(session_factory):
    async def _make(**overrides) -> Product:
        values = {"name": "Scarlet & Violet Booster Box", "sku": "SV-BB", "popularity_score": 100}
        values.update(overrides)
        async with session_factory() as db:
            product = Product(**values)
            db.add(product)
            await db.commit()
            return product

    return _make


@pytest.fixture
def make_watch(session_factory):
    async def _make(user_id, product_id, **overrides) -> Watch:
        values = {
            "user_id": user_id,
            "product_id": product_id,
            "retailer_ids": ["target", "walmart"],
            "availability_type": "online",
        }
        values.update(overrides)
        async with session_factory() as db:
            watch = Watch(**values)
            db.add(watch)
            await db.commit()
            return watch

    return _make


@pytest.fixture
async def seed(make_user, make_product, make_watch):
    user = await make_user()
    product = await make_product()
    watch = await make_watch(user.id, product.id)
    return SimpleNamespace(user=user, product=product, watch=watch)


@pytest.fixture
def dispatcher():
    return StubDispatcher()


@pytest.fixture
def quiet_gate():
    return StubQuietHours()


@pytest.fixture
def orchestrator(session_factory, dispatcher, quiet_gate):
    return AlertOrchestrator(session_factory, dispatcher, quiet_hours_gate=quiet_gate)


@pytest.fixture
def signal(seed):
    def _signal(**overrides) -> AlertGenerationData:
        values = {
            "user_id": seed.user.id,
            "product_id": seed.product.id,
            "retailer_id": "target",
            "type": "restock",
            "data": dict(SIGNAL_DATA),
            "watch_id": seed.watch.id,
        }
        values.update(overrides)
        return AlertGenerationData(**values)

    return _signal
