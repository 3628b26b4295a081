import logging
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.metrics import track_performance
from schemas.allocation import ExpirationReport
from services.allocation_engine import AllocationEngine
from services.exceptions import AllocationDomainError
from services.subscription_link import SubscriptionLink
from services.transactions import transaction

logger = logging.getLogger(__name__)


class ExpirationService:
    """Expires lapsed subscriptions and hands their ports back to the pool."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], engine: AllocationEngine):
        self.session_factory = session_factory
        self.engine = engine

    @track_performance(service_name="ExpirationService")
    async def process_expired_subscriptions(self, today: Optional[date] = None) -> ExpirationReport:
        """
        Expires every open subscription whose end date is before `today`.

        Each subscription is handled in its own transaction; a failure is
        recorded in the report and the sweep moves on.
        """
        today = today or date.today()
        async with transaction(self.session_factory) as session:
            expired_ids = [s.id for s in await SubscriptionLink(session).list_expired(today)]

        processed: List[str] = []
        released: Dict[str, str] = {}
        failed: Dict[str, str] = {}

        for subscription_id in expired_ids:
            try:
                port_id = await self.engine.expire_subscription(subscription_id)
            except AllocationDomainError as e:
                logger.error(
                    "Failed to expire subscription",
                    extra={'subscription_id': subscription_id, 'error': e.message}
                )
                failed[subscription_id] = e.message
                continue

            processed.append(subscription_id)
            if port_id is not None:
                released[subscription_id] = port_id

        logger.info(
            "Expired subscriptions processed",
            extra={'count': len(processed), 'released': len(released), 'failed': len(failed)}
        )
        return ExpirationReport(
            count=len(processed),
            subscription_ids=processed,
            released_ports=released,
            failed=failed,
        )
