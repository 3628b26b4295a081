from datetime import date
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.subscription import Subscription, SubscriptionStatus
from services.exceptions import NotFoundError

# Sentinel: "don't check the current link"
_ANY = object()


class SubscriptionLink:
    """
    Subscription-side view used by allocation code.

    Only two columns are ever written from here: the port reference and the
    status. Every other subscription field belongs to the billing flow.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, subscription_id: str) -> Optional[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.id == subscription_id)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get_or_raise(self, subscription_id: str) -> Subscription:
        subscription = await self.get(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription {subscription_id} not found.")
        return subscription

    async def find_by_order(self, order_id: str) -> Optional[Subscription]:
        stmt = select(Subscription).where(Subscription.order_id == order_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def list_pending(self, limit: int = 50) -> List[Subscription]:
        """PENDING_ALLOCATION subscriptions, oldest first."""
        stmt = (
            select(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.PENDING_ALLOCATION,
                Subscription.assigned_port_id.is_(None),
            )
            .order_by(Subscription.created_at, Subscription.id)
            .limit(limit)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def list_expired(self, today: date) -> List[Subscription]:
        """Open subscriptions whose end date has passed."""
        stmt = (
            select(Subscription)
            .where(
                Subscription.status.in_([SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING_ALLOCATION]),
                Subscription.end_date.is_not(None),
                Subscription.end_date < today,
            )
            .order_by(Subscription.end_date, Subscription.id)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def set_resource(self, subscription_id: str, port_id: Optional[str], expected_port_id=_ANY) -> bool:
        """
        Points the subscription at `port_id` (or clears it with None).

        With `expected_port_id` the write only happens while the current
        link still equals it, e.g. None when linking a fresh allocation.
        """
        stmt = (
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .values(assigned_port_id=port_id)
            .execution_options(synchronize_session=False)
        )
        if expected_port_id is None:
            stmt = stmt.where(Subscription.assigned_port_id.is_(None))
        elif expected_port_id is not _ANY:
            stmt = stmt.where(Subscription.assigned_port_id == expected_port_id)

        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def set_status(self, subscription_id: str, status: SubscriptionStatus) -> bool:
        stmt = (
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1
