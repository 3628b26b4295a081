import logging
from datetime import date, timedelta
from typing import Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.retry import async_retry
from models.order import Order, OrderStatus
from models.subscription import Subscription, SubscriptionStatus
from schemas.allocation import PaymentConfirmationResult
from services.allocation_engine import AllocationEngine
from services.exceptions import NotFoundError, OrderStateError
from services.subscription_link import SubscriptionLink
from services.transactions import transaction

logger = logging.getLogger(__name__)


class PaymentConfirmation:
    """
    Payment webhook flow: order SUCCESS, subscription, port.

    Webhooks are delivered at least once, so the whole flow is idempotent per
    order. The subscription is created in its own transaction before allocation;
    a confirmed payment is never rolled back because the pool ran dry.
    Transient failures (lost races, storage hiccups) are retried with backoff.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AllocationEngine,
        max_attempts: int = 3,
        base_delay: float = 0.5,
    ):
        self.session_factory = session_factory
        self.engine = engine
        self._confirm = async_retry(max_attempts=max_attempts, base_delay=base_delay)(self._confirm_once)

    async def confirm_payment(self, order_id: str) -> PaymentConfirmationResult:
        """
        Raises:
            NotFoundError: order does not exist
            OrderStateError: order already FAILED
            ConflictRetryableError / PersistenceError: after retries are exhausted
        """
        result = await self._confirm(order_id)
        logger.info(
            "Payment confirmed",
            extra={
                'order_id': order_id,
                'subscription_id': result.subscription_id,
                'already_processed': result.already_processed,
                'outcome': result.allocation.outcome.value,
            }
        )
        return result

    async def _confirm_once(self, order_id: str) -> PaymentConfirmationResult:
        subscription_id, already_processed = await self._ensure_subscription(order_id)
        allocation = await self.engine.allocate_for_subscription(subscription_id)
        return PaymentConfirmationResult(
            order_id=order_id,
            subscription_id=subscription_id,
            already_processed=already_processed,
            allocation=allocation,
        )

    async def _ensure_subscription(self, order_id: str) -> Tuple[str, bool]:
        async with transaction(self.session_factory) as session:
            order = await session.get(Order, order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found.")
            if order.status == OrderStatus.FAILED:
                raise OrderStateError(f"Order {order_id} failed and cannot be confirmed.")

            existing = await SubscriptionLink(session).find_by_order(order_id)
            if existing is not None:
                return existing.id, True

            order.status = OrderStatus.SUCCESS
            start = date.today()
            subscription = Subscription(
                customer_id=order.customer_id,
                plan_id=order.plan_id,
                order_id=order.id,
                status=SubscriptionStatus.ACTIVE,
                start_date=start,
                end_date=start + timedelta(days=order.duration_days),
            )
            session.add(subscription)
            await session.flush()
            return subscription.id, False
