"""Tests for alert generation, delivery and retry."""

import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from restock_alerts.alerts.errors import AlertRateLimitError, AlertValidationError
from restock_alerts.alerts.orchestrator import MAX_RETRY_REASON
from restock_alerts.db.models import Alert, Watch


async def _count_alerts(session_factory) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count(Alert.id)))


async def _get(session_factory, model, entity_id):
    async with session_factory() as db:
        return await db.get(model, entity_id)


async def _insert_alert(session_factory, seed, **overrides) -> Alert:
    values = {
        "user_id": seed.user.id,
        "product_id": seed.product.id,
        "retailer_id": "target",
        "watch_id": seed.watch.id,
        "type": "restock",
        "priority": "medium",
        "status": "pending",
        "data": {"product_name": "Box", "retailer_name": "Target", "product_url": "https://t.co/x"},
        "delivery_channels": [],
    }
    values.update(overrides)
    async with session_factory() as db:
        alert = Alert(**values)
        db.add(alert)
        await db.commit()
        return alert


@pytest.mark.asyncio
async def test_restock_alert_delivered_and_watch_bumped(orchestrator, signal, seed, session_factory, dispatcher):
    result = await orchestrator.generate_alert(signal())

    assert result.status == "processed"
    assert result.delivery_channels == ["web_push", "email"]
    assert len(dispatcher.calls) == 1

    alert = await _get(session_factory, Alert, result.alert_id)
    assert alert.status == "sent"
    assert alert.delivery_channels == ["web_push", "email"]
    assert alert.sent_at is not None

    watch = await _get(session_factory, Watch, seed.watch.id)
    assert watch.alert_count == 1
    assert watch.last_alerted == alert.sent_at


@pytest.mark.asyncio
async def test_quiet_hours_schedules_alert(orchestrator, signal, seed, session_factory, quiet_gate, dispatcher):
    next_active = datetime.utcnow().replace(microsecond=0) + timedelta(hours=3)
    quiet_gate.quiet = True
    quiet_gate.next_active_time = next_active

    result = await orchestrator.generate_alert(signal())

    assert result.status == "scheduled"
    assert result.scheduled_for == next_active
    assert dispatcher.calls == []

    alert = await _get(session_factory, Alert, result.alert_id)
    assert alert.status == "pending"
    assert alert.scheduled_for == next_active

    watch = await _get(session_factory, Watch, seed.watch.id)
    assert watch.alert_count == 0
    assert watch.last_alerted is None


@pytest.mark.asyncio
async def test_quiet_hours_without_next_active_defaults_to_one_hour(orchestrator, signal, quiet_gate):
    quiet_gate.quiet = True
    before = datetime.utcnow()

    result = await orchestrator.generate_alert(signal())

    assert result.status == "scheduled"
    assert before + timedelta(minutes=59) < result.scheduled_for < before + timedelta(minutes=61)


@pytest.mark.asyncio
async def test_duplicate_signal_is_folded_into_first_alert(orchestrator, signal, session_factory, dispatcher):
    first = await orchestrator.generate_alert(signal())
    second = await orchestrator.generate_alert(signal())

    assert second.status == "deduplicated"
    assert second.alert_id == first.alert_id
    assert await _count_alerts(session_factory) == 1
    assert len(dispatcher.calls) == 1


@pytest.mark.asyncio
async def test_different_retailer_is_not_a_duplicate(orchestrator, signal, session_factory):
    await orchestrator.generate_alert(signal())
    result = await orchestrator.generate_alert(
        signal(retailer_id="walmart", data={**signal().data, "retailer_name": "Walmart"})
    )

    assert result.status == "processed"
    assert await _count_alerts(session_factory) == 2


@pytest.mark.asyncio
async def test_failed_alert_does_not_block_new_signal(orchestrator, signal, seed, session_factory):
    await _insert_alert(session_factory, seed, status="failed")

    result = await orchestrator.generate_alert(signal())

    assert result.status == "processed"


@pytest.mark.asyncio
async def test_concurrent_duplicates_create_one_alert(orchestrator, signal, session_factory):
    results = await asyncio.gather(
        orchestrator.generate_alert(signal()),
        orchestrator.generate_alert(signal()),
    )

    statuses = sorted(r.status for r in results)
    assert statuses == ["deduplicated", "processed"]
    assert results[0].alert_id == results[1].alert_id
    assert await _count_alerts(session_factory) == 1


@pytest.mark.asyncio
async def test_rate_limit_rejects_51st_alert(orchestrator, signal, seed, session_factory):
    recent = datetime.utcnow() - timedelta(minutes=10)
    for _ in range(50):
        await _insert_alert(
            session_factory, seed, retailer_id="walmart", status="sent", created_at=recent
        )

    with pytest.raises(AlertRateLimitError) as exc_info:
        await orchestrator.generate_alert(signal())

    assert exc_info.value.count == 50
    assert exc_info.value.limit == 50
    assert await _count_alerts(session_factory) == 50


@pytest.mark.asyncio
async def test_alerts_outside_rate_window_do_not_count(orchestrator, signal, seed, session_factory):
    old = datetime.utcnow() - timedelta(hours=2)
    for _ in range(50):
        await _insert_alert(session_factory, seed, retailer_id="walmart", status="sent", created_at=old)

    result = await orchestrator.generate_alert(signal())

    assert result.status == "processed"


@pytest.mark.asyncio
async def test_validation_aggregates_every_rule(orchestrator, signal, make_user, make_product, session_factory):
    user = await make_user(email_verified=False)
    product = await make_product(is_active=False)

    with pytest.raises(AlertValidationError) as exc_info:
        await orchestrator.generate_alert(
            signal(
                user_id=user.id,
                product_id=product.id,
                watch_id=None,
                data={"product_name": "Box", "retailer_name": "", "product_url": "not a url"},
            )
        )

    errors = exc_info.value.errors
    assert "User email not verified" in errors
    assert "Product is inactive" in errors
    assert "Retailer name is required in alert data" in errors
    assert "Product URL must be a valid http(s) URL" in errors
    assert await _count_alerts(session_factory) == 0


@pytest.mark.asyncio
async def test_validation_rejects_foreign_watch(orchestrator, signal, seed, make_user, make_watch, session_factory):
    other = await make_user()
    foreign_watch = await make_watch(other.id, seed.product.id)

    with pytest.raises(AlertValidationError) as exc_info:
        await orchestrator.generate_alert(signal(watch_id=foreign_watch.id))

    assert exc_info.value.errors == ["Watch does not belong to user"]
    assert await _count_alerts(session_factory) == 0


@pytest.mark.asyncio
async def test_validation_rejects_unknown_records(orchestrator, signal):
    with pytest.raises(AlertValidationError) as exc_info:
        await orchestrator.generate_alert(
            signal(user_id="missing-user", product_id="missing-product", watch_id="missing-watch")
        )

    errors = exc_info.value.errors
    assert "User not found" in errors
    assert "Product not found" in errors
    assert "Watch not found" in errors


@pytest.mark.asyncio
async def test_unknown_type_rejected(orchestrator, signal):
    with pytest.raises(AlertValidationError) as exc_info:
        await orchestrator.generate_alert(signal(type="back_in_black"))

    assert "Invalid alert type: back_in_black" in exc_info.value.errors


@pytest.mark.asyncio
async def test_dispatcher_failure_then_retry_succeeds(orchestrator, signal, seed, session_factory, dispatcher):
    dispatcher.success = False

    result = await orchestrator.generate_alert(signal())

    assert result.status == "failed"
    alert = await _get(session_factory, Alert, result.alert_id)
    assert alert.status == "failed"
    assert alert.failure_reason == dispatcher.error
    watch = await _get(session_factory, Watch, seed.watch.id)
    assert watch.alert_count == 0

    dispatcher.success = True
    stats = await orchestrator.retry_failed_alerts()

    assert stats == {"retried": 1, "succeeded": 1, "permanently_failed": 0}
    alert = await _get(session_factory, Alert, result.alert_id)
    assert alert.status == "sent"
    assert alert.retry_count == 1
    watch = await _get(session_factory, Watch, seed.watch.id)
    assert watch.alert_count == 1


@pytest.mark.asyncio
async def test_retry_bound_marks_alert_permanently_failed(orchestrator, signal, session_factory, dispatcher):
    dispatcher.success = False
    result = await orchestrator.generate_alert(signal())

    first = await orchestrator.retry_failed_alerts()
    second = await orchestrator.retry_failed_alerts()
    third = await orchestrator.retry_failed_alerts()

    assert first["permanently_failed"] == 0
    assert second["permanently_failed"] == 0
    assert third == {"retried": 1, "succeeded": 0, "permanently_failed": 1}

    alert = await _get(session_factory, Alert, result.alert_id)
    assert alert.status == "failed"
    assert alert.retry_count == 3
    assert alert.failure_reason == MAX_RETRY_REASON

    fourth = await orchestrator.retry_failed_alerts()
    assert fourth == {"retried": 0, "succeeded": 0, "permanently_failed": 0}


@pytest.mark.asyncio
async def test_process_alert_does_not_redeliver_sent_alert(orchestrator, signal, session_factory, dispatcher, seed):
    result = await orchestrator.generate_alert(signal())

    again = await orchestrator.process_alert(result.alert_id)

    assert again.success is True
    assert again.delivery_channels == ["web_push", "email"]
    assert len(dispatcher.calls) == 1
    watch = await _get(session_factory, Watch, seed.watch.id)
    assert watch.alert_count == 1


@pytest.mark.asyncio
async def test_process_missing_alert(orchestrator):
    result = await orchestrator.process_alert("does-not-exist")

    assert result.success is False
    assert result.not_found is True
    assert result.reason == "Alert not found"


@pytest.mark.asyncio
async def test_no_channels_marks_alert_failed(orchestrator, make_user, seed, session_factory, dispatcher):
    user = await make_user(notification_settings={"web_push": False, "email": False})
    alert = await _insert_alert(session_factory, seed, user_id=user.id, watch_id=None)

    result = await orchestrator.process_alert(alert.id)

    assert result.success is False
    assert result.reason == "No delivery channels available"
    assert dispatcher.calls == []
    stored = await _get(session_factory, Alert, alert.id)
    assert stored.status == "failed"


@pytest.mark.asyncio
async def test_dispatcher_exception_marks_alert_failed(orchestrator, seed, session_factory, dispatcher):
    async def explode(alert, user, channels):
        raise RuntimeError("transport exploded")

    dispatcher.deliver_alert = explode
    alert = await _insert_alert(session_factory, seed)

    result = await orchestrator.process_alert(alert.id)

    assert result.success is False
    stored = await _get(session_factory, Alert, alert.id)
    assert stored.status == "failed"
    assert stored.failure_reason == "transport exploded"


@pytest.mark.asyncio
async def test_pending_alerts_processed_by_priority_then_age(orchestrator, seed, session_factory, dispatcher):
    now = datetime.utcnow()
    old_medium = await _insert_alert(session_factory, seed, priority="medium", created_at=now - timedelta(minutes=30))
    new_medium = await _insert_alert(session_factory, seed, priority="medium", created_at=now - timedelta(minutes=5))
    urgent = await _insert_alert(session_factory, seed, priority="urgent", created_at=now - timedelta(minutes=1))
    high = await _insert_alert(session_factory, seed, priority="high", created_at=now - timedelta(minutes=2))
    future = await _insert_alert(
        session_factory, seed, priority="urgent", scheduled_for=now + timedelta(hours=2)
    )

    stats = await orchestrator.process_pending_alerts()

    assert stats == {"processed": 4, "failed": 0, "rescheduled": 0}
    delivered = [alert_id for alert_id, _ in dispatcher.calls]
    assert delivered == [urgent.id, high.id, old_medium.id, new_medium.id]
    assert future.id not in delivered


@pytest.mark.asyncio
async def test_pending_batch_continues_after_failure(orchestrator, seed, make_user, session_factory):
    silent_user = await make_user(notification_settings={"web_push": False})
    await _insert_alert(session_factory, seed, user_id=silent_user.id, watch_id=None)
    await _insert_alert(session_factory, seed)

    stats = await orchestrator.process_pending_alerts()

    assert stats == {"processed": 1, "failed": 1, "rescheduled": 0}


@pytest.mark.asyncio
async def test_pending_alerts_rescheduled_during_quiet_hours(orchestrator, seed, session_factory, quiet_gate, dispatcher):
    await _insert_alert(session_factory, seed)
    quiet_gate.quiet = True
    quiet_gate.next_active_time = datetime.utcnow() + timedelta(hours=1)

    stats = await orchestrator.process_pending_alerts()

    assert stats == {"processed": 0, "failed": 0, "rescheduled": 1}
    assert dispatcher.calls == []


@pytest.mark.asyncio
async def test_explicit_priority_overrides_strategy(orchestrator, signal, session_factory):
    result = await orchestrator.generate_alert(signal(priority="urgent"))

    alert = await _get(session_factory, Alert, result.alert_id)
    assert alert.priority == "urgent"


@pytest.mark.asyncio
async def test_processing_stats(orchestrator, signal, seed, session_factory):
    await orchestrator.generate_alert(signal())
    await _insert_alert(session_factory, seed, retailer_id="walmart", status="failed")

    stats = await orchestrator.get_processing_stats()

    assert stats["pending_count"] == 0
    assert stats["failed_count"] == 1
    assert stats["processed_today"] == 2
    assert stats["success_rate"] == 50.0


@pytest.mark.asyncio
async def test_cleanup_old_alerts_only_removes_old_sent(orchestrator, seed, session_factory):
    old = datetime.utcnow() - timedelta(days=120)
    await _insert_alert(session_factory, seed, status="sent", created_at=old)
    await _insert_alert(session_factory, seed, status="failed", created_at=old)
    await _insert_alert(session_factory, seed, status="sent")

    deleted = await orchestrator.cleanup_old_alerts()

    assert deleted == 1
    assert await _count_alerts(session_factory) == 2


@pytest.mark.asyncio
async def test_watch_on_another_product_is_accepted(orchestrator, signal, seed, make_product, make_watch):
    other_product = await make_product(name="Paldean Fates ETB")
    watch = await make_watch(seed.user.id, other_product.id)

    result = await orchestrator.generate_alert(signal(watch_id=watch.id))

    assert result.status == "processed"


@pytest.mark.asyncio
async def test_relative_cart_url_does_not_reject_signal(orchestrator, signal):
    data = {
        "product_name": "Scarlet & Violet Booster Box",
        "retailer_name": "Target",
        "product_url": "https://www.target.com/p/booster-box/-/A-12345",
        "cart_url": "/cart/add?sku=1",
    }

    result = await orchestrator.generate_alert(signal(data=data))

    assert result.status == "processed"


@pytest.mark.asyncio
async def test_final_retry_rescheduled_then_failed_is_permanent(orchestrator, signal, session_factory, dispatcher, quiet_gate):
    dispatcher.success = False
    result = await orchestrator.generate_alert(signal())
    await orchestrator.retry_failed_alerts()
    await orchestrator.retry_failed_alerts()

    quiet_gate.quiet = True
    quiet_gate.next_active_time = datetime.utcnow() - timedelta(minutes=1)
    third = await orchestrator.retry_failed_alerts()

    assert third == {"retried": 1, "succeeded": 0, "permanently_failed": 0}
    alert = await _get(session_factory, Alert, result.alert_id)
    assert alert.status == "pending"
    assert alert.retry_count == 3

    quiet_gate.quiet = False
    drained = await orchestrator.process_pending_alerts()

    assert drained["failed"] == 1
    alert = await _get(session_factory, Alert, result.alert_id)
    assert alert.status == "failed"
    assert alert.failure_reason == MAX_RETRY_REASON

    assert await orchestrator.retry_failed_alerts() == {
        "retried": 0,
        "succeeded": 0,
        "permanently_failed": 0,
    }
