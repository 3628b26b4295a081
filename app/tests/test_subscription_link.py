import pytest
from datetime import date, timedelta

from models.subscription import Subscription, SubscriptionStatus
from services.exceptions import NotFoundError
from services.subscription_link import SubscriptionLink


@pytest.mark.asyncio
async def test_set_resource_only_links_unlinked_subscription(session_factory, make_subscription, fetch):
    subscription = await make_subscription()

    async with session_factory() as session:
        async with session.begin():
            link = SubscriptionLink(session)
            assert await link.set_resource(subscription.id, "port-1", expected_port_id=None) is True
            assert await link.set_resource(subscription.id, "port-2", expected_port_id=None) is False

    assert (await fetch(Subscription, subscription.id)).assigned_port_id == "port-1"


@pytest.mark.asyncio
async def test_clear_checks_the_expected_port(session_factory, make_subscription, fetch):
    subscription = await make_subscription()

    async with session_factory() as session:
        async with session.begin():
            link = SubscriptionLink(session)
            await link.set_resource(subscription.id, "port-1")
            assert await link.set_resource(subscription.id, None, expected_port_id="port-9") is False
            assert await link.set_resource(subscription.id, None, expected_port_id="port-1") is True

    assert (await fetch(Subscription, subscription.id)).assigned_port_id is None


@pytest.mark.asyncio
async def test_list_pending_oldest_first(session_factory, make_subscription):
    older = await make_subscription(status=SubscriptionStatus.PENDING_ALLOCATION)
    await make_subscription()
    newer = await make_subscription(status=SubscriptionStatus.PENDING_ALLOCATION)

    async with session_factory() as session:
        pending = await SubscriptionLink(session).list_pending()

    assert [s.id for s in pending] == [older.id, newer.id]


@pytest.mark.asyncio
async def test_list_expired_skips_closed_and_current(session_factory, make_subscription):
    today = date.today()
    lapsed = await make_subscription(end_date=today - timedelta(days=1))
    await make_subscription(end_date=today)
    await make_subscription(status=SubscriptionStatus.CANCELLED, end_date=today - timedelta(days=3))

    async with session_factory() as session:
        expired = await SubscriptionLink(session).list_expired(today)

    assert [s.id for s in expired] == [lapsed.id]


@pytest.mark.asyncio
async def test_get_or_raise(session_factory):
    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await SubscriptionLink(session).get_or_raise("missing")
