import logging
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.db import utc_now
from core.environment import get_max_allocation_candidates
from core.metrics import track_performance
from core.prometheus_metrics import prometheus_collector
from models.order import Order, OrderStatus
from models.port import Port, PortStatus
from models.subscription import CLOSED_STATUSES, Subscription, SubscriptionStatus
from schemas.allocation import (
    AllocationOutcome,
    AllocationResult,
    PendingAllocationReport,
    ReassignResult,
    ReleaseResult,
)
from schemas.port import PortOut
from services.allocation_log import AllocationLog
from services.exceptions import (
    AllocationDomainError,
    AlreadyAssignedError,
    ConflictRetryableError,
    NotFoundError,
    OrderStateError,
    PersistenceError,
    PortStateError,
    SubscriptionStateError,
)
from services.notifications import LoggingNotifier, Notifier
from services.port_pool import PortPool
from services.subscription_link import SubscriptionLink
from services.transactions import transaction

logger = logging.getLogger(__name__)


class AllocationEngine:
    """
    Orchestrates port assignment, reassignment and release.

    This is the only writer allowed to change a port's assignment together
    with the subscription that points at it. Every public operation runs in
    its own session and a single transaction:

    - The port write, the subscription write(s) and the audit entry commit
      together or not at all.
    - Port assignment is a compare-and-set (`UPDATE ... WHERE status = ...`)
      whose row count is checked; losing a race means trying the next free
      port, never a double assignment.
    - Storage failures surface as `PersistenceError` after rollback. The
      engine does not retry; callers such as the payment webhook decide.

    Running out of ports is a normal outcome: the subscription moves to
    PENDING_ALLOCATION, the change is committed, and operators are notified
    on a best-effort basis once the transaction is closed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Optional[Notifier] = None,
        max_candidates: Optional[int] = None,
    ):
        """
        Args:
            session_factory: Factory producing the sessions each operation runs in
            notifier: Operator alerting collaborator (defaults to a log-based one)
            max_candidates: How many free ports one allocation may try when it
                            keeps losing compare-and-set races
        """
        self.session_factory = session_factory
        self.notifier = notifier or LoggingNotifier()
        self.max_candidates = max_candidates or get_max_allocation_candidates()

    # Allocation

    @track_performance(service_name="AllocationEngine", include_metadata=True)
    async def allocate_for_subscription(self, subscription_id: str) -> AllocationResult:
        """
        Assigns a free port to a subscription.

        Safe to call repeatedly: a subscription that already holds a port gets
        that port back with outcome ALREADY_ASSIGNED and nothing is written.

        Returns:
            AllocationResult with outcome ASSIGNED, ALREADY_ASSIGNED or
            NO_AVAILABLE_RESOURCES

        Raises:
            NotFoundError: subscription does not exist
            SubscriptionStateError: subscription is EXPIRED or CANCELLED
            ConflictRetryableError: a concurrent call linked this subscription first
            PersistenceError: storage failure (rolled back)
        """
        return await self._allocate(subscription_id, notify=True)

    async def _allocate(self, subscription_id: str, notify: bool) -> AllocationResult:
        lost: List[str] = []

        async with transaction(self.session_factory) as session:
            pool = PortPool(session)
            link = SubscriptionLink(session)

            subscription = await link.get_or_raise(subscription_id)
            customer_id = subscription.customer_id

            if subscription.status in CLOSED_STATUSES:
                raise SubscriptionStateError(
                    f"Subscription {subscription_id} is {subscription.status.value} and cannot receive a port."
                )

            existing = None
            if subscription.assigned_port_id is not None:
                existing = await pool.get(subscription.assigned_port_id)
                if existing is None or existing.assigned_subscription_id != subscription.id:
                    await self._drop_dangling_link(link, subscription)
                    existing = None

            if existing is not None:
                result = AllocationResult(
                    outcome=AllocationOutcome.ALREADY_ASSIGNED,
                    subscription_id=subscription.id,
                    subscription_status=subscription.status,
                    port=PortOut.from_model(existing),
                    message="Subscription already has an assigned port.",
                )
            else:
                port = await self._claim_free_port(pool, subscription, lost)
                if port is None:
                    await link.set_status(subscription.id, SubscriptionStatus.PENDING_ALLOCATION)
                    result = AllocationResult(
                        outcome=AllocationOutcome.NO_AVAILABLE_RESOURCES,
                        subscription_id=subscription.id,
                        subscription_status=SubscriptionStatus.PENDING_ALLOCATION,
                        message="No available ports. Subscription marked as PENDING_ALLOCATION.",
                    )
                else:
                    result = await self._link_assignment(session, port, subscription)

        prometheus_collector.record_allocation_outcome(result.outcome.value, lost_races=len(lost))

        if result.outcome == AllocationOutcome.NO_AVAILABLE_RESOURCES:
            logger.warning(
                "No available ports for subscription",
                extra={'subscription_id': subscription_id, 'lost_races': len(lost)}
            )
            if notify:
                await self._notify_no_ports(subscription_id, customer_id)
        elif result.outcome == AllocationOutcome.ASSIGNED:
            logger.info(
                "Port allocated",
                extra={'subscription_id': subscription_id, 'port_id': result.port.id}
            )

        return result

    async def _drop_dangling_link(self, link: SubscriptionLink, subscription: Subscription) -> None:
        """Unlinks a subscription from a port that is gone or held by someone else."""
        port_id = subscription.assigned_port_id
        logger.warning(
            "Subscription linked to a port it does not hold",
            extra={'subscription_id': subscription.id, 'port_id': port_id}
        )
        if not await link.set_resource(subscription.id, None, expected_port_id=port_id):
            raise ConflictRetryableError(
                f"Subscription {subscription.id} was relinked concurrently; retry to read it."
            )

    async def _claim_free_port(self, pool: PortPool, subscription: Subscription, lost: List[str]) -> Optional[Port]:
        """Walks free ports in creation order until one compare-and-set succeeds."""
        assigned_at = utc_now()
        for _ in range(self.max_candidates):
            candidates = await pool.find_available(exclude_ids=lost, limit=1)
            if not candidates:
                return None

            candidate = candidates[0]
            if await pool.assign(candidate.id, subscription.id, subscription.customer_id, assigned_at):
                return candidate

            # Lost the row to a concurrent allocator → try next
            lost.append(candidate.id)
            logger.info(
                "Lost port to a concurrent allocation, trying next candidate",
                extra={'port_id': candidate.id, 'subscription_id': subscription.id}
            )
        return None

    async def _link_assignment(self, session: AsyncSession, port: Port, subscription: Subscription) -> AllocationResult:
        pool = PortPool(session)
        link = SubscriptionLink(session)

        if not await link.set_resource(subscription.id, port.id, expected_port_id=None):
            raise ConflictRetryableError(
                f"Subscription {subscription.id} was linked to a port concurrently; retry to read it."
            )

        status = subscription.status
        if status == SubscriptionStatus.PENDING_ALLOCATION:
            await link.set_status(subscription.id, SubscriptionStatus.ACTIVE)
            status = SubscriptionStatus.ACTIVE

        await AllocationLog(session).log_assignment(port.id, subscription.id, subscription.customer_id)

        assigned = await pool.get(port.id)
        return AllocationResult(
            outcome=AllocationOutcome.ASSIGNED,
            subscription_id=subscription.id,
            subscription_status=status,
            port=PortOut.from_model(assigned),
            message="Port allocated successfully.",
        )

    async def _notify_no_ports(self, subscription_id: str, customer_id: str):
        try:
            await self.notifier.notify_no_available_ports(subscription_id, customer_id)
        except Exception:
            # Alerting must never undo or fail an allocation outcome
            logger.exception("Operator notification failed", extra={'subscription_id': subscription_id})

    @track_performance(service_name="AllocationEngine", include_metadata=True)
    async def allocate_for_order(self, order_id: str) -> AllocationResult:
        """Allocates for the subscription created from a paid order."""
        async with transaction(self.session_factory) as session:
            order = await session.get(Order, order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found.")
            if order.status != OrderStatus.SUCCESS:
                raise OrderStateError("Order status must be SUCCESS for port allocation.")

            subscription = await SubscriptionLink(session).find_by_order(order_id)
            if subscription is None:
                raise NotFoundError(f"No subscription found for order {order_id}.")
            subscription_id = subscription.id

        return await self.allocate_for_subscription(subscription_id)

    @track_performance(service_name="AllocationEngine")
    async def allocate_pending(self, limit: int = 50) -> PendingAllocationReport:
        """
        Retries allocation for PENDING_ALLOCATION subscriptions, oldest first.

        Each subscription is its own transaction. The sweep stops at the
        first NO_AVAILABLE_RESOURCES since later ones cannot fare better.
        Conflicts and storage failures leave a subscription pending; other
        domain errors skip it and are reported in `skipped`.
        """
        async with transaction(self.session_factory) as session:
            pending_ids = [s.id for s in await SubscriptionLink(session).list_pending(limit)]

        allocated: List[str] = []
        still_pending: List[str] = []
        skipped: Dict[str, str] = {}
        for index, subscription_id in enumerate(pending_ids):
            try:
                result = await self._allocate(subscription_id, notify=False)
            except (ConflictRetryableError, PersistenceError) as e:
                logger.warning(
                    "Pending allocation deferred",
                    extra={'subscription_id': subscription_id, 'error': e.message}
                )
                still_pending.append(subscription_id)
                continue
            except AllocationDomainError as e:
                # Cancelled, expired or deleted since it was listed
                logger.warning(
                    "Pending subscription skipped",
                    extra={'subscription_id': subscription_id, 'error': e.message}
                )
                skipped[subscription_id] = e.message
                continue

            if result.outcome == AllocationOutcome.NO_AVAILABLE_RESOURCES:
                still_pending.extend(pending_ids[index:])
                break
            allocated.append(subscription_id)

        return PendingAllocationReport(
            attempted=len(pending_ids),
            allocated=allocated,
            still_pending=still_pending,
            skipped=skipped,
        )

    # Operator actions

    @track_performance(service_name="AllocationEngine")
    async def reassign_resource(self, port_id: str, new_subscription_id: str, operator_id: str) -> ReassignResult:
        """
        Moves a port to another subscription on behalf of an operator.

        The port write, the old and new subscription links and the REASSIGN
        entry commit in one transaction. A target that already holds a port
        is rejected before anything is written.

        Raises:
            ValueError: operator_id missing
            NotFoundError: port or subscription does not exist
            AlreadyAssignedError: target subscription already holds a port
            PortStateError: port is DISABLED
            SubscriptionStateError: target subscription is EXPIRED or CANCELLED
            ConflictRetryableError: port or target changed concurrently
            PersistenceError: storage failure (rolled back)
        """
        if not operator_id:
            raise ValueError("Reassignment requires an operator id.")

        async with transaction(self.session_factory) as session:
            pool = PortPool(session)
            link = SubscriptionLink(session)

            port = await pool.get_or_raise(port_id)
            new_subscription = await link.get_or_raise(new_subscription_id)

            if new_subscription.assigned_port_id is not None:
                raise AlreadyAssignedError(
                    f"Subscription {new_subscription_id} already has an assigned port."
                )
            if new_subscription.status in CLOSED_STATUSES:
                raise SubscriptionStateError(
                    f"Subscription {new_subscription_id} is {new_subscription.status.value} and cannot receive a port."
                )
            if port.status == PortStatus.DISABLED:
                raise PortStateError("Disabled ports must be re-enabled before they can be assigned.")

            old_subscription_id = port.assigned_subscription_id

            assigned = await pool.assign(
                port.id,
                new_subscription.id,
                new_subscription.customer_id,
                utc_now(),
                expected_status=port.status,
                expected_subscription_id=old_subscription_id,
            )
            if not assigned:
                raise ConflictRetryableError(f"Port {port_id} changed concurrently; retry the reassignment.")

            if old_subscription_id is not None:
                cleared = await link.set_resource(old_subscription_id, None, expected_port_id=port.id)
                if not cleared:
                    logger.warning(
                        "Previous holder was not linked to the port it held",
                        extra={'port_id': port.id, 'subscription_id': old_subscription_id}
                    )

            if not await link.set_resource(new_subscription.id, port.id, expected_port_id=None):
                raise ConflictRetryableError(
                    f"Subscription {new_subscription_id} was linked to a port concurrently."
                )
            if new_subscription.status == SubscriptionStatus.PENDING_ALLOCATION:
                await link.set_status(new_subscription.id, SubscriptionStatus.ACTIVE)

            await AllocationLog(session).log_reassignment(
                port.id, new_subscription.id, new_subscription.customer_id, operator_id
            )
            result = ReassignResult(
                port=PortOut.from_model(await pool.get(port.id)),
                old_subscription_id=old_subscription_id,
                new_subscription_id=new_subscription.id,
            )

        logger.info(
            "Port reassigned",
            extra={
                'port_id': port_id,
                'old_subscription_id': old_subscription_id,
                'new_subscription_id': new_subscription_id,
                'operator_id': operator_id,
            }
        )
        return result

    @track_performance(service_name="AllocationEngine")
    async def release_resource(self, port_id: str, operator_id: Optional[str] = None) -> ReleaseResult:
        """
        Returns a port to the pool and unlinks its subscription.

        `operator_id` is None for automatic releases (expiry). Releasing a
        port without an assignment succeeds without writing anything.
        """
        async with transaction(self.session_factory) as session:
            pool = PortPool(session)
            port = await pool.get_or_raise(port_id)

            subscription_id = port.assigned_subscription_id
            if subscription_id is None:
                return ReleaseResult(
                    port_id=port_id,
                    released=False,
                    message="Port has no assignment; nothing to release.",
                )

            await self._release_assigned(session, port, operator_id)

        logger.info(
            "Port released",
            extra={'port_id': port_id, 'subscription_id': subscription_id, 'operator_id': operator_id}
        )
        return ReleaseResult(
            port_id=port_id,
            released=True,
            subscription_id=subscription_id,
            message="Port released.",
        )

    async def _release_assigned(self, session: AsyncSession, port: Port, operator_id: Optional[str]):
        subscription_id = port.assigned_subscription_id
        customer_id = port.assigned_customer_id

        if not await PortPool(session).release(port.id, expected_subscription_id=subscription_id):
            raise ConflictRetryableError(f"Port {port.id} changed concurrently; retry the release.")

        await SubscriptionLink(session).set_resource(subscription_id, None, expected_port_id=port.id)
        await AllocationLog(session).log_release(port.id, subscription_id, customer_id, operator_id)

    @track_performance(service_name="AllocationEngine")
    async def expire_subscription(self, subscription_id: str) -> Optional[str]:
        """
        Marks a subscription EXPIRED and releases its port in one transaction.

        Returns:
            The released port id, or None when the subscription held no port
        """
        async with transaction(self.session_factory) as session:
            pool = PortPool(session)
            link = SubscriptionLink(session)

            subscription = await link.get_or_raise(subscription_id)
            if subscription.status in CLOSED_STATUSES:
                return None

            await link.set_status(subscription.id, SubscriptionStatus.EXPIRED)

            port_id = subscription.assigned_port_id
            if port_id is None:
                return None

            port = await pool.get(port_id)
            if port is None or port.assigned_subscription_id != subscription.id:
                # Dangling link: drop it, there is no port state to undo
                logger.warning(
                    "Subscription linked to a port it does not hold",
                    extra={'subscription_id': subscription.id, 'port_id': port_id}
                )
                await link.set_resource(subscription.id, None, expected_port_id=port_id)
                return None

            await self._release_assigned(session, port, operator_id=None)

        return port_id
