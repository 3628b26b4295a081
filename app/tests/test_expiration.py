import pytest
from datetime import date, timedelta
from unittest.mock import AsyncMock

from models.allocation_log import AllocationAction
from models.port import Port, PortStatus
from models.subscription import Subscription, SubscriptionStatus
from services.exceptions import PersistenceError
from services.expiration_service import ExpirationService


@pytest.fixture
def expiration(session_factory, engine) -> ExpirationService:
    return ExpirationService(session_factory, engine)


@pytest.mark.asyncio
async def test_expiry_releases_ports(expiration, engine, make_port, make_subscription, fetch, fetch_logs):
    today = date.today()
    port = await make_port()
    lapsed = await make_subscription(end_date=today - timedelta(days=1))
    current = await make_subscription(end_date=today + timedelta(days=5))
    await engine.allocate_for_subscription(lapsed.id)

    report = await expiration.process_expired_subscriptions(today)

    assert report.count == 1
    assert report.subscription_ids == [lapsed.id]
    assert report.released_ports == {lapsed.id: port.id}
    assert report.failed == {}

    assert (await fetch(Subscription, lapsed.id)).status == SubscriptionStatus.EXPIRED
    assert (await fetch(Subscription, lapsed.id)).assigned_port_id is None
    assert (await fetch(Subscription, current.id)).status == SubscriptionStatus.ACTIVE
    assert (await fetch(Port, port.id)).status == PortStatus.AVAILABLE

    release = (await fetch_logs(port.id))[-1]
    assert release.action == AllocationAction.RELEASE
    assert release.performed_by is None
    assert release.subscription_id == lapsed.id


@pytest.mark.asyncio
async def test_pending_subscription_expires_without_release(expiration, make_subscription, fetch, fetch_logs):
    lapsed = await make_subscription(
        status=SubscriptionStatus.PENDING_ALLOCATION,
        end_date=date.today() - timedelta(days=2),
    )

    report = await expiration.process_expired_subscriptions()

    assert report.subscription_ids == [lapsed.id]
    assert report.released_ports == {}
    assert (await fetch(Subscription, lapsed.id)).status == SubscriptionStatus.EXPIRED
    assert await fetch_logs() == []


@pytest.mark.asyncio
async def test_failures_are_reported_and_sweep_continues(expiration, engine, make_subscription):
    today = date.today()
    first = await make_subscription(end_date=today - timedelta(days=2))
    second = await make_subscription(end_date=today - timedelta(days=1))
    real_expire = engine.expire_subscription

    async def flaky_expire(subscription_id):
        if subscription_id == first.id:
            raise PersistenceError("Storage failure; the operation was rolled back.")
        return await real_expire(subscription_id)

    engine.expire_subscription = AsyncMock(side_effect=flaky_expire)

    report = await expiration.process_expired_subscriptions(today)

    assert report.subscription_ids == [second.id]
    assert list(report.failed) == [first.id]
