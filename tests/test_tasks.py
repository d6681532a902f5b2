"""Tests for scheduled job bodies."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from restock_alerts.watches.health import WatchHealthMonitor
from restock_alerts.worker.hot_window import PredictedWindow
from restock_alerts.worker.tasks import AvailabilitySignal, TaskRunner

SIGNAL_DATA = {
    "product_name": "Scarlet & Violet Booster Box",
    "retailer_name": "Target",
    "product_url": "https://www.target.com/p/booster-box/-/A-12345",
}


class FakeScanner:
    def __init__(self, signals):
        self.signals = signals
        self.calls = []

    async def scan(self, retailer_ids):
        self.calls.append(retailer_ids)
        return list(self.signals)


class FakeFlags:
    def __init__(self, active=False, retailers=None):
        self.active = active
        self.retailers = retailers or []
        self.windows = []

    async def has_active_window(self):
        return self.active

    async def active_retailers(self):
        return list(self.retailers)

    async def set_window(self, window, now=None):
        self.windows.append(window)
        return True

    async def close(self):
        pass


class FakePredictor:
    def __init__(self, failing_retailers=()):
        self.failing_retailers = set(failing_retailers)

    async def predict_windows(self, product_id, retailer_id, horizon_minutes):
        if retailer_id in self.failing_retailers:
            raise RuntimeError("model not loaded")
        now = datetime.utcnow()
        return [PredictedWindow(product_id, retailer_id, now, now + timedelta(minutes=45), 0.7)]


@pytest.fixture
def runner_factory(orchestrator, session_factory):
    def _make(**collaborators) -> TaskRunner:
        return TaskRunner(
            orchestrator,
            WatchHealthMonitor(session_factory),
            session_factory,
            **collaborators,
        )

    return _make


@pytest.mark.asyncio
async def test_scan_without_scanner_is_noop(runner_factory):
    assert await runner_factory().run_availability_scan() == {}


@pytest.mark.asyncio
async def test_scan_fans_out_to_matching_watches(runner_factory, seed, make_user, make_watch, dispatcher):
    elsewhere = await make_user()
    await make_watch(elsewhere.id, seed.product.id, retailer_ids=["bestbuy"])
    scanner = FakeScanner([
        AvailabilitySignal(seed.product.id, "target", "restock", dict(SIGNAL_DATA)),
    ])

    counts = await runner_factory(scanner=scanner).run_availability_scan()

    assert counts == {"signals": 1, "processed": 1}
    assert scanner.calls == [["bestbuy", "target", "walmart"]]
    assert len(dispatcher.calls) == 1


@pytest.mark.asyncio
async def test_scan_respects_watch_max_price(runner_factory, seed, make_user, make_watch):
    budget = await make_user()
    await make_watch(budget.id, seed.product.id, max_price=Decimal("30.00"))
    scanner = FakeScanner([
        AvailabilitySignal(
            seed.product.id,
            "target",
            "price_drop",
            {**SIGNAL_DATA, "price": 39.99, "original_price": 59.99},
        ),
    ])

    counts = await runner_factory(scanner=scanner).run_availability_scan(["target"])

    assert counts == {"signals": 1, "processed": 1}
    assert scanner.calls == [["target"]]


@pytest.mark.asyncio
async def test_scan_counts_rejected_and_deduplicated(runner_factory, seed, make_user, make_watch):
    unverified = await make_user(email_verified=False)
    await make_watch(unverified.id, seed.product.id)
    signal = AvailabilitySignal(seed.product.id, "walmart", "restock", dict(SIGNAL_DATA))
    scanner = FakeScanner([signal, signal])

    counts = await runner_factory(scanner=scanner).run_availability_scan()

    assert counts["processed"] == 1
    assert counts["deduplicated"] == 1
    assert counts["rejected"] == 2


@pytest.mark.asyncio
async def test_hot_window_check_idle(runner_factory, seed):
    scanner = FakeScanner([])
    runner = runner_factory(scanner=scanner, hot_windows=FakeFlags(active=False))

    assert await runner.check_hot_windows() is False
    assert scanner.calls == []


@pytest.mark.asyncio
async def test_hot_window_check_scans_hot_retailers(runner_factory, seed):
    scanner = FakeScanner([])
    runner = runner_factory(scanner=scanner, hot_windows=FakeFlags(active=True, retailers=["target"]))

    assert await runner.check_hot_windows() is True
    assert scanner.calls == [["target"]]


@pytest.mark.asyncio
async def test_refresh_hot_windows_skips_failing_predictions(runner_factory, seed):
    flags = FakeFlags()
    runner = runner_factory(hot_windows=flags, predictor=FakePredictor(failing_retailers=["walmart"]))

    flagged = await runner.refresh_hot_windows()

    assert flagged == 1
    assert [(w.product_id, w.retailer_id) for w in flags.windows] == [(seed.product.id, "target")]


@pytest.mark.asyncio
async def test_optional_jobs_are_noops(runner_factory):
    runner = runner_factory()

    assert await runner.refresh_hot_windows() == 0
    assert await runner.check_hot_windows() is False
    assert await runner.ingest_catalog() == 0
    assert await runner.retrain_models() is None


@pytest.mark.asyncio
async def test_delegating_jobs(runner_factory, seed):
    runner = runner_factory()

    assert await runner.process_pending_alerts() == {"processed": 0, "failed": 0, "rescheduled": 0}
    assert await runner.retry_failed_alerts() == {"retried": 0, "succeeded": 0, "permanently_failed": 0}
    assert await runner.cleanup_watches() == {
        "inactive_product_watches": 0,
        "inactive_subscriptions": 0,
        "orphaned_watches": 0,
    }
    assert await runner.reconcile_watch_packs() == 0
    assert await runner.cleanup_alerts() == 0
