"""
Unit tests for the PortPool repository (services/port_pool.py).

Tests cover:
- Free-port selection order and exclusion of lost candidates
- Compare-and-set assignment and release
- Operator status changes and deletes
"""

import pytest
from datetime import datetime, timezone

from models.port import Port, PortStatus
from services.exceptions import DuplicateError, NotFoundError, PortStateError
from services.port_pool import PortPool


NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class TestFindAvailable:

    @pytest.mark.asyncio
    async def test_returns_oldest_available_first(self, session_factory, make_port):
        first = await make_port()
        await make_port(status=PortStatus.RESERVED)
        await make_port(status=PortStatus.DISABLED)
        third = await make_port()

        async with session_factory() as session:
            ports = await PortPool(session).find_available(limit=10)

        assert [p.id for p in ports] == [first.id, third.id]

    @pytest.mark.asyncio
    async def test_excludes_given_ids(self, session_factory, make_port):
        first = await make_port()
        second = await make_port()

        async with session_factory() as session:
            ports = await PortPool(session).find_available(exclude_ids=[first.id], limit=1)

        assert [p.id for p in ports] == [second.id]

    @pytest.mark.asyncio
    async def test_count_available(self, session_factory, make_port):
        await make_port()
        await make_port()
        await make_port(status=PortStatus.RESERVED)

        async with session_factory() as session:
            assert await PortPool(session).count_available() == 2


class TestAssign:

    @pytest.mark.asyncio
    async def test_assign_sets_all_assignment_fields(self, session_factory, make_port, fetch):
        port = await make_port()

        async with session_factory() as session:
            async with session.begin():
                assert await PortPool(session).assign(port.id, "sub-1", "cust-1", NOW) is True

        stored = await fetch(Port, port.id)
        assert stored.status == PortStatus.ASSIGNED
        assert stored.assigned_subscription_id == "sub-1"
        assert stored.assigned_customer_id == "cust-1"
        assert stored.assigned_at is not None

    @pytest.mark.asyncio
    async def test_second_assign_loses_the_race(self, session_factory, make_port, fetch):
        port = await make_port()

        async with session_factory() as session:
            async with session.begin():
                pool = PortPool(session)
                assert await pool.assign(port.id, "sub-1", "cust-1", NOW) is True
                assert await pool.assign(port.id, "sub-2", "cust-2", NOW) is False

        stored = await fetch(Port, port.id)
        assert stored.assigned_subscription_id == "sub-1"

    @pytest.mark.asyncio
    async def test_reserved_port_is_not_matched_by_default(self, session_factory, make_port):
        port = await make_port(status=PortStatus.RESERVED)

        async with session_factory() as session:
            async with session.begin():
                assert await PortPool(session).assign(port.id, "sub-1", "cust-1", NOW) is False

    @pytest.mark.asyncio
    async def test_reassign_requires_expected_holder(self, session_factory, make_port, fetch):
        port = await make_port()

        async with session_factory() as session:
            async with session.begin():
                pool = PortPool(session)
                await pool.assign(port.id, "sub-1", "cust-1", NOW)
                stale = await pool.assign(
                    port.id, "sub-3", "cust-3", NOW,
                    expected_status=PortStatus.ASSIGNED, expected_subscription_id="sub-2",
                )
                moved = await pool.assign(
                    port.id, "sub-3", "cust-3", NOW,
                    expected_status=PortStatus.ASSIGNED, expected_subscription_id="sub-1",
                )

        assert stale is False
        assert moved is True
        assert (await fetch(Port, port.id)).assigned_subscription_id == "sub-3"


class TestRelease:

    @pytest.mark.asyncio
    async def test_release_clears_assignment(self, session_factory, make_port, fetch):
        port = await make_port()

        async with session_factory() as session:
            async with session.begin():
                pool = PortPool(session)
                await pool.assign(port.id, "sub-1", "cust-1", NOW)
                assert await pool.release(port.id, expected_subscription_id="sub-1") is True

        stored = await fetch(Port, port.id)
        assert stored.status == PortStatus.AVAILABLE
        assert stored.assigned_subscription_id is None
        assert stored.assigned_customer_id is None
        assert stored.assigned_at is None

    @pytest.mark.asyncio
    async def test_release_does_not_touch_disabled_port(self, session_factory, make_port, fetch):
        port = await make_port(status=PortStatus.DISABLED)

        async with session_factory() as session:
            async with session.begin():
                assert await PortPool(session).release(port.id) is False

        assert (await fetch(Port, port.id)).status == PortStatus.DISABLED


class TestOperatorWrites:

    @pytest.mark.asyncio
    async def test_create_rejects_duplicate_instance_url(self, session_factory, make_port):
        await make_port(instance_url="https://dup.example.com")

        async with session_factory() as session:
            with pytest.raises(DuplicateError):
                await PortPool(session).create({"instance_url": "https://dup.example.com"})

    @pytest.mark.asyncio
    async def test_create_rejects_assigned_status(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(PortStateError):
                await PortPool(session).create({"instance_url": "https://a.example.com", "status": PortStatus.ASSIGNED})

    @pytest.mark.asyncio
    async def test_set_status_refuses_assigned(self, session_factory, make_port):
        port = await make_port()

        async with session_factory() as session:
            with pytest.raises(PortStateError):
                await PortPool(session).set_status(port.id, PortStatus.ASSIGNED, expected_status=PortStatus.AVAILABLE)

    @pytest.mark.asyncio
    async def test_set_status_is_conditional(self, session_factory, make_port, fetch):
        port = await make_port()

        async with session_factory() as session:
            async with session.begin():
                pool = PortPool(session)
                assert await pool.set_status(port.id, PortStatus.DISABLED, expected_status=PortStatus.RESERVED) is False
                assert await pool.set_status(port.id, PortStatus.DISABLED, expected_status=PortStatus.AVAILABLE) is True

        assert (await fetch(Port, port.id)).status == PortStatus.DISABLED

    @pytest.mark.asyncio
    async def test_delete_assigned_port_is_refused(self, session_factory, make_port):
        port = await make_port()

        async with session_factory() as session:
            async with session.begin():
                pool = PortPool(session)
                await pool.assign(port.id, "sub-1", "cust-1", NOW)
                with pytest.raises(PortStateError):
                    await pool.delete(port.id)

    @pytest.mark.asyncio
    async def test_get_or_raise_unknown_port(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await PortPool(session).get_or_raise("missing")
