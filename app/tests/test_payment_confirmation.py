"""
Tests for the payment webhook flow (services/payment_confirmation.py).
"""

import pytest
from datetime import date, timedelta
from unittest.mock import AsyncMock

from sqlalchemy import func, select

from models.order import Order, OrderStatus
from models.subscription import Subscription, SubscriptionStatus
from schemas.allocation import AllocationOutcome
from services.exceptions import ConflictRetryableError, NotFoundError, OrderStateError
from services.payment_confirmation import PaymentConfirmation


@pytest.fixture
def confirmation(session_factory, engine) -> PaymentConfirmation:
    return PaymentConfirmation(session_factory, engine, max_attempts=3, base_delay=0.01)


async def count_subscriptions(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(Subscription.id)))).scalar()


@pytest.mark.asyncio
async def test_confirm_creates_subscription_and_assigns_port(confirmation, make_order, make_port, fetch):
    port = await make_port()
    order = await make_order(duration_days=90)

    result = await confirmation.confirm_payment(order.id)

    assert result.already_processed is False
    assert result.allocation.outcome == AllocationOutcome.ASSIGNED
    assert result.allocation.port.id == port.id

    assert (await fetch(Order, order.id)).status == OrderStatus.SUCCESS
    subscription = await fetch(Subscription, result.subscription_id)
    assert subscription.order_id == order.id
    assert subscription.customer_id == order.customer_id
    assert subscription.assigned_port_id == port.id
    assert subscription.end_date - subscription.start_date == timedelta(days=90)
    assert subscription.start_date == date.today()


@pytest.mark.asyncio
async def test_webhook_redelivery_is_idempotent(confirmation, make_order, make_port, session_factory, fetch_logs):
    await make_port()
    await make_port()
    order = await make_order()

    first = await confirmation.confirm_payment(order.id)
    second = await confirmation.confirm_payment(order.id)

    assert second.already_processed is True
    assert second.subscription_id == first.subscription_id
    assert second.allocation.outcome == AllocationOutcome.ALREADY_ASSIGNED
    assert second.allocation.port.id == first.allocation.port.id
    assert await count_subscriptions(session_factory) == 1
    assert len(await fetch_logs()) == 1


@pytest.mark.asyncio
async def test_payment_without_ports_leaves_subscription_pending(confirmation, make_order, fetch, mock_notifier):
    order = await make_order()

    result = await confirmation.confirm_payment(order.id)

    assert result.allocation.outcome == AllocationOutcome.NO_AVAILABLE_RESOURCES
    assert (await fetch(Order, order.id)).status == OrderStatus.SUCCESS
    subscription = await fetch(Subscription, result.subscription_id)
    assert subscription.status == SubscriptionStatus.PENDING_ALLOCATION
    mock_notifier.notify_no_available_ports.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_order_is_rejected(confirmation, make_order, session_factory):
    order = await make_order(status=OrderStatus.FAILED)

    with pytest.raises(OrderStateError):
        await confirmation.confirm_payment(order.id)

    assert await count_subscriptions(session_factory) == 0


@pytest.mark.asyncio
async def test_unknown_order(confirmation):
    with pytest.raises(NotFoundError):
        await confirmation.confirm_payment("missing")


@pytest.mark.asyncio
async def test_lost_race_is_retried(session_factory, engine, make_order, make_port):
    await make_port()
    order = await make_order()
    real_allocate = engine.allocate_for_subscription
    calls = {"n": 0}

    async def flaky_allocate(subscription_id):
        calls["n"] += 1
        if calls["n"] == 1:
            raise ConflictRetryableError("Subscription was linked to a port concurrently.")
        return await real_allocate(subscription_id)

    engine.allocate_for_subscription = AsyncMock(side_effect=flaky_allocate)
    confirmation = PaymentConfirmation(session_factory, engine, max_attempts=3, base_delay=0.01)

    result = await confirmation.confirm_payment(order.id)

    assert engine.allocate_for_subscription.await_count == 2
    assert result.already_processed is True
    assert result.allocation.outcome == AllocationOutcome.ASSIGNED

